"""questlog: XP ledger, leveling and stat progression for a life-tracking journal."""

__version__ = "1.0.0"
