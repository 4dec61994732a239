"""
Validation primitives for questlog.

Re-exports `InputValidator`, the static validators used by services before
any input reaches the ledger.
"""

from questlog.core.validation.input_validator import InputValidator

__all__ = [
    "InputValidator",
]
