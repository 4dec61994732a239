"""
Service Container
=================

Purpose
-------
Centralized dependency injection container for all questlog domain services.
Provides singleton instances of services with proper dependency management.

Responsibilities
----------------
- Initialize all domain services with required dependencies
- Wire the ledger services into the source handlers that use them
- Manage service lifecycle (initialization, shutdown)
- Provide easy access to services throughout the application

Non-Responsibilities
--------------------
- Database lifecycle (see `initialize_questlog` below / DatabaseService)
- Request handling

Architecture Notes
------------------
- Every domain service follows the constructor pattern
  `(config_manager, event_bus, logger)`; source handlers additionally take
  the grant and recalculation services they share with the container.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from questlog.core.config.config import Config
from questlog.core.config.manager import ConfigManager
from questlog.core.database.service import DatabaseService
from questlog.core.event.bus import EventBus
from questlog.core.logging.logger import (
    get_logger,
    get_logging_health,
    setup_logging,
    shutdown_logging,
)
from questlog.modules.family.service import FamilyService
from questlog.modules.journal.service import JournalService
from questlog.modules.progression.service import LevelUpService
from questlog.modules.quests.service import QuestService
from questlog.modules.stats.service import CharacterStatService
from questlog.modules.tasks.service import TaskService
from questlog.modules.xp.grant_service import XpGrantService
from questlog.modules.xp.history_service import XpHistoryService
from questlog.modules.xp.recalculation_service import XpRecalculationService

if TYPE_CHECKING:
    from logging import Logger

logger = get_logger(__name__)

_NOT_INITIALIZED = "ServiceContainer not initialized. Call initialize() first."


class ServiceContainer:
    """
    Dependency injection container for all domain services.

    Usage:
        container = ServiceContainer(ConfigManager, event_bus, logger)
        await container.initialize()

        result = await container.grants.grant_xp(...)
        await container.level_up.level_up(...)
    """

    SERVICE_COUNT = 9

    def __init__(
        self,
        config_manager: Any,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._logger = logger

        # Ledger services
        self._grants: Optional[XpGrantService] = None
        self._recalculation: Optional[XpRecalculationService] = None
        self._history: Optional[XpHistoryService] = None
        self._level_up: Optional[LevelUpService] = None

        # Source handlers
        self._stats: Optional[CharacterStatService] = None
        self._family: Optional[FamilyService] = None
        self._journal: Optional[JournalService] = None
        self._tasks: Optional[TaskService] = None
        self._quests: Optional[QuestService] = None

        self._initialized = False

        self._service_init_times: Dict[str, float] = {}
        self._init_start: Optional[float] = None
        self._init_end: Optional[float] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        """
        Initialize all services.

        Call this after ConfigManager and DatabaseService are ready.
        """
        if self._initialized:
            self._logger.warning("ServiceContainer already initialized")
            return

        self._init_start = time.perf_counter()
        self._logger.info("Service container initialization starting...")

        try:
            self._grants = self._create_service("grants", XpGrantService)
            self._recalculation = self._create_service("recalculation", XpRecalculationService)
            self._history = self._create_service("history", XpHistoryService)
            self._level_up = self._create_service("level_up", LevelUpService)

            self._stats = self._create_service(
                "stats", CharacterStatService, grant_service=self._grants
            )
            ledger = {
                "grant_service": self._grants,
                "recalculation_service": self._recalculation,
            }
            self._family = self._create_service("family", FamilyService, **ledger)
            self._journal = self._create_service("journal", JournalService, **ledger)
            self._tasks = self._create_service("tasks", TaskService, **ledger)
            self._quests = self._create_service("quests", QuestService, **ledger)

            self._initialized = True
            self._init_end = time.perf_counter()

            self._logger.info(
                "Service container initialized successfully",
                extra={
                    "service_count": len(self._service_init_times),
                    "total_init_time_seconds": round(self._init_end - self._init_start, 3),
                },
            )

        except Exception as e:
            self._logger.critical(
                "Service container initialization failed",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise

    def _create_service(self, name: str, cls: type, **dependencies: Any) -> Any:
        start = time.perf_counter()

        try:
            instance = cls(
                **dependencies,
                config_manager=self._config_manager,
                event_bus=self._event_bus,
                logger=get_logger(f"{cls.__module__}.{cls.__name__}"),
            )
        except Exception:
            self._logger.error(f"Failed to initialize {name}", exc_info=True)
            raise

        duration = time.perf_counter() - start
        self._service_init_times[name] = duration
        self._logger.debug(f"Initialized {name} in {duration:.3f}s")

        return instance

    async def shutdown(self) -> None:
        """Drain background event listeners and mark the container closed."""
        if not self._initialized:
            return

        self._logger.info("Shutting down service container...")
        await self._event_bus.drain()

        self._initialized = False
        self._logger.info("Service container shut down")

    async def health_check(self) -> Dict[str, Any]:
        logging_health = get_logging_health()
        return {
            "initialized": self._initialized,
            "service_count": len(self._service_init_times),
            "total_init_time_seconds": (
                round(self._init_end - self._init_start, 3)
                if self._init_start and self._init_end
                else None
            ),
            "all_services_available": self._initialized
            and len(self._service_init_times) == self.SERVICE_COUNT,
            "database_healthy": await DatabaseService.health_check()
            if DatabaseService.is_initialized()
            else False,
            "logging_healthy": logging_health.initialized
            and logging_health.listener_errors == 0,
            "log_records_dropped": logging_health.records_dropped,
        }

    # ========================================================================
    # Accessors
    # ========================================================================

    def _require(self, service: Optional[Any]) -> Any:
        if not self._initialized or service is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return service

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def grants(self) -> XpGrantService:
        return self._require(self._grants)

    @property
    def recalculation(self) -> XpRecalculationService:
        return self._require(self._recalculation)

    @property
    def history(self) -> XpHistoryService:
        return self._require(self._history)

    @property
    def level_up(self) -> LevelUpService:
        return self._require(self._level_up)

    @property
    def stats(self) -> CharacterStatService:
        return self._require(self._stats)

    @property
    def family(self) -> FamilyService:
        return self._require(self._family)

    @property
    def journal(self) -> JournalService:
        return self._require(self._journal)

    @property
    def tasks(self) -> TaskService:
        return self._require(self._tasks)

    @property
    def quests(self) -> QuestService:
        return self._require(self._quests)

    @property
    def is_initialized(self) -> bool:
        return self._initialized


# ============================================================================
# Application bootstrap
# ============================================================================

_container: Optional[ServiceContainer] = None


async def initialize_questlog(
    database_url: Optional[str] = None,
    config_dir: Optional[Union[str, Path]] = None,
    create_schema: bool = False,
    event_bus: Optional[EventBus] = None,
) -> ServiceContainer:
    """
    Bring up config, logging, the database and the service container.

    Args:
        database_url: Overrides `DATABASE_URL`
        config_dir: Overrides `CONFIG_DIR` for the YAML tunables
        create_schema: Run `Base.metadata.create_all` (local and tests)
        event_bus: Bus to wire into services; a new one is created if omitted
    """
    global _container
    if _container is not None and _container.is_initialized:
        return _container

    Config.validate()
    setup_logging()
    logger.info("Configuration loaded", extra={"config": Config.get_config_summary()})

    ConfigManager.initialize(Path(config_dir) if config_dir else None)
    logger.info("Config manager initialized")

    await DatabaseService.initialize(database_url)
    if create_schema:
        await DatabaseService.create_schema()
    logger.info("Database service initialized")

    container = ServiceContainer(
        config_manager=ConfigManager,
        event_bus=event_bus or EventBus(ConfigManager),
        logger=get_logger("questlog.core.services.container"),
    )
    await container.initialize()

    _container = container
    return container


def get_service_container() -> ServiceContainer:
    if _container is None:
        raise RuntimeError("questlog is not initialized. Call initialize_questlog() first.")
    return _container


async def shutdown_questlog() -> None:
    """Shut down the container, the database and logging, in that order."""
    global _container

    if _container is not None:
        await _container.shutdown()
        _container = None

    await DatabaseService.shutdown()
    logger.info("questlog shut down")
    shutdown_logging()
