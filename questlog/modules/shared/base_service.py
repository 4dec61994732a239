"""
Base Service Foundation

Purpose
-------
Provides the foundational class for questlog domain services. Services
implement business logic, own their unit of work, enforce progression rules
and emit domain events after their transaction commits.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access patterns
- Event emission helpers
- Validation helpers that raise domain `ValidationError`

What this class does NOT do:
- Manage database sessions (that's DatabaseService's job)
- Contain progression formulas (see `questlog.modules.progression.curves`)

Usage
-----
    class TaskService(BaseService):
        def __init__(self, grant_service, recalculation_service,
                     config_manager, event_bus, logger):
            super().__init__(config_manager, event_bus, logger)
            self.grants = grant_service

        async def complete_task(self, user_id: str, task_id: str):
            # Service logic here, using self.log, self.get_config, self.emit_event
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from questlog.core.validation.input_validator import InputValidator

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Tunable configuration (ConfigManager class or compatible)
        event_bus: Event bus for cross-module communication
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Safely retrieve configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        from questlog.core.exceptions import ConfigurationError

        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(
                key, f"Required configuration key '{key}' is missing"
            )
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Emit a domain event for cross-module communication.

        Call only after the owning transaction has committed.
        """
        await self._events.publish(event_type, {**data, **(context or {})})

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(
        self,
        operation: str,
        error: Exception,
        **context: Any,
    ) -> None:
        self.log.error(
            f"Service error during {operation}: {str(error)}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )

    # =========================================================================
    # VALIDATION HELPERS
    # =========================================================================

    def validate_user_id(self, user_id: Any) -> str:
        """User ids are opaque, already-authenticated strings."""
        return InputValidator.validate_string(
            user_id, "user_id", min_length=1, max_length=64
        )

    def validate_entity_id(self, value: Any, name: str = "entity_id") -> str:
        return InputValidator.validate_uuid(value, name)

    def validate_name(self, value: Any, name: str = "name", max_length: int = 200) -> str:
        return InputValidator.validate_string(
            value, name, min_length=1, max_length=max_length
        )

    def validate_pagination(self, limit: Any, offset: Any) -> tuple[int, int]:
        max_limit = int(self.get_config("xp.history.max_limit", 200))
        return InputValidator.validate_pagination(limit, offset, max_limit)
