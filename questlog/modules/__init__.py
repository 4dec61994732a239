"""Domain modules: XP ledger, progression and the XP source handlers."""
