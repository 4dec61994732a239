"""
Configuration subsystem for questlog.

- **config.py**: static settings from environment variables (python-dotenv)
- **manager.py**: tunable progression values from YAML files

`ConfigManager` is imported from `questlog.core.config.manager` directly so
that the logging module can depend on `Config` without a cycle.
"""

from questlog.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
