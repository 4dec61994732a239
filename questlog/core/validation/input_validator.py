"""
Input validation for questlog service calls.

Ids, names, type choices and pagination windows are checked here before a
service opens a transaction. XP amounts have their own rules in
`XpGrantService.validate_amount`, and ownership is checked by the entity
adapters.

Every rejection is logged at DEBUG with the field name and the raw value.
"""

from __future__ import annotations

import uuid
from typing import Any, NoReturn, Optional, Sequence, Tuple

from questlog.core.logging.logger import get_logger
from questlog.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)


def _reject(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Input validation failed",
        extra={"field_name": field_name, "raw_value": repr(value), "reason": message},
    )
    raise ValidationError(field_name, message)


class InputValidator:
    """Stateless validators; each returns the normalized value or raises ValidationError."""

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
    ) -> int:
        """
        Coerce to int within inclusive bounds.

        `"25"` and `25.0` pass; booleans and `2.5` do not.
        """
        if value is None:
            _reject(field_name, value, "Value is required")
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            _reject(field_name, value, f"Must be a whole number, got '{value}'")
        try:
            number = int(value)
        except (ValueError, TypeError):
            _reject(field_name, value, f"Must be a whole number, got '{value}'")

        if min_value is not None and number < min_value:
            _reject(field_name, number, f"Must be at least {min_value}, got {number}")
        if max_value is not None and number > max_value:
            _reject(field_name, number, f"Cannot exceed {max_value}, got {number}")
        return number

    @staticmethod
    def validate_non_negative_integer(
        value: Any, field_name: str, max_value: Optional[int] = None
    ) -> int:
        return InputValidator.validate_integer(value, field_name, 0, max_value)

    @staticmethod
    def validate_uuid(value: Any, field_name: str = "id") -> str:
        """Return the canonical lowercase form of a UUID string."""
        if value is None:
            _reject(field_name, value, "Value is required")
        try:
            return str(uuid.UUID(str(value)))
        except (ValueError, TypeError, AttributeError):
            _reject(field_name, value, "Must be a valid UUID")

    @staticmethod
    def validate_string(
        value: Any,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
    ) -> str:
        """Strip, then check the length bounds."""
        if value is None:
            _reject(field_name, value, "Value is required")
        text = str(value).strip()
        if min_length is not None and len(text) < min_length:
            _reject(field_name, text, f"Must be at least {min_length} characters")
        if max_length is not None and len(text) > max_length:
            _reject(field_name, text, f"Cannot exceed {max_length} characters")
        return text

    @staticmethod
    def validate_choice(value: Any, field_name: str, valid_choices: Sequence[str]) -> str:
        """Case-insensitive membership check; returns the lowercased value."""
        choice = str(value).lower().strip()
        if choice not in {option.lower() for option in valid_choices}:
            _reject(
                field_name,
                value,
                f"Invalid choice '{value}'. Must be one of: {', '.join(sorted(valid_choices))}",
            )
        return choice

    @staticmethod
    def validate_pagination(limit: Any, offset: Any, max_limit: int) -> Tuple[int, int]:
        """`limit` in 1..max_limit, `offset` >= 0."""
        return (
            InputValidator.validate_integer(limit, "limit", min_value=1, max_value=max_limit),
            InputValidator.validate_non_negative_integer(offset, "offset"),
        )
