"""
Tunable progression configuration backed by YAML files.

Features:
- Hierarchical config access with dot notation (e.g., 'progression.curves.family_member')
- YAML defaults loaded recursively from the config directory
- In-memory overrides for live tuning and tests
- Performance metrics tracking

Static process settings (database URL, pool sizes, log level) live in
`Config`; this manager only holds values a service reads at call time:
curve selection, XP step, interaction awards and history page limits.
"""

from __future__ import annotations

import copy
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from questlog.core.config.config import Config
from questlog.core.logging.logger import get_logger

logger = get_logger(__name__)

_MISSING = object()


class ConfigManager:
    """
    Dot-notation access to YAML-defined tunables.

    Values are read from `*.yaml` / `*.yml` files under `Config.CONFIG_DIR`.
    Files are deep-merged in sorted path order; overrides applied with `set`
    win over file values until `reset` is called.
    """

    _defaults: Dict[str, Any] = {}
    _overrides: Dict[str, Any] = {}
    _initialized: bool = False
    _config_dir: Optional[Path] = None

    _metrics = {
        "gets": 0,
        "sets": 0,
        "cache_hits": 0,
        "cache_misses": 0,
        "files_loaded": 0,
        "errors": 0,
        "total_get_time_ms": 0.0,
    }

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    @classmethod
    def _deep_merge(cls, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                cls._deep_merge(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> None:
        """
        Recursively load all YAML config files from the config directory.

        Raises:
            ConfigurationError: If a file exists but cannot be parsed
        """
        from questlog.core.exceptions import ConfigurationError

        if not config_dir.exists():
            logger.warning(
                "Config directory not found, using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        yaml_files = sorted(
            list(config_dir.rglob("*.yaml")) + list(config_dir.rglob("*.yml"))
        )

        loaded_count = 0
        for yaml_file in yaml_files:
            try:
                with open(yaml_file, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                cls._metrics["errors"] += 1
                raise ConfigurationError(
                    str(yaml_file.relative_to(config_dir)), f"Invalid YAML: {e}"
                ) from e

            if data:
                cls._deep_merge(cls._defaults, data)
                loaded_count += 1
                logger.debug(
                    f"Loaded YAML config: {yaml_file.relative_to(config_dir)}"
                )

        cls._metrics["files_loaded"] = loaded_count
        logger.info(
            f"Loaded {loaded_count} YAML config files",
            extra={"yaml_count": loaded_count, "config_dir": str(config_dir)},
        )

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """
        Load YAML tunables. Idempotent unless a different directory is given.

        Args:
            config_dir: Directory to scan; defaults to Config.CONFIG_DIR
        """
        target = Path(config_dir) if config_dir else Path(Config.CONFIG_DIR)
        if cls._initialized and cls._config_dir == target:
            return

        cls._defaults = {}
        cls._load_yaml_configs(target)
        cls._config_dir = target
        cls._initialized = True

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    @classmethod
    def _lookup(cls, source: Dict[str, Any], key: str) -> Any:
        value: Any = source
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return _MISSING
            value = value[part]
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve config value by dot notation path.

        Args:
            key: Dot-notation config path (e.g., 'xp.interaction.base')
            default: Default value if key not found

        Returns:
            Config value or default

        Example:
            >>> ConfigManager.get('xp.interaction.base', 10)
            10
        """
        start_time = time.perf_counter()
        cls._metrics["gets"] += 1

        if not cls._initialized:
            cls.initialize()

        value = cls._overrides.get(key, _MISSING)
        if value is _MISSING:
            value = cls._lookup(cls._defaults, key)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        cls._metrics["total_get_time_ms"] += elapsed_ms

        if value is _MISSING or value is None:
            cls._metrics["cache_misses"] += 1
            return default

        cls._metrics["cache_hits"] += 1
        return value

    @classmethod
    def set(cls, key: str, value: Any, modified_by: str = "system") -> None:
        """
        Override a value in memory (not persisted).

        Example:
            >>> ConfigManager.set('progression.curves.family_member', 'cumulative_threshold')
        """
        cls._metrics["sets"] += 1
        cls._overrides[key] = value
        logger.info(
            f"ConfigManager updated: key={key} by={modified_by}",
            extra={"config_key": key, "modified_by": modified_by},
        )

    @classmethod
    def reset(cls) -> None:
        """Drop overrides and loaded files; next `get` reloads from disk."""
        cls._overrides.clear()
        cls._defaults = {}
        cls._initialized = False
        cls._config_dir = None

    @classmethod
    def get_all_keys(cls) -> List[str]:
        """Get list of all top-level config keys."""
        return sorted(set(cls._defaults) | {k.split(".")[0] for k in cls._overrides})

    # =========================================================================
    # METRICS
    # =========================================================================

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        total_gets = cls._metrics["gets"]
        hit_rate = (cls._metrics["cache_hits"] / total_gets * 100) if total_gets else 0.0
        avg_get = (cls._metrics["total_get_time_ms"] / total_gets) if total_gets else 0.0
        return {
            "gets": total_gets,
            "sets": cls._metrics["sets"],
            "cache_hits": cls._metrics["cache_hits"],
            "cache_misses": cls._metrics["cache_misses"],
            "cache_hit_rate": round(hit_rate, 2),
            "files_loaded": cls._metrics["files_loaded"],
            "errors": cls._metrics["errors"],
            "avg_get_time_ms": round(avg_get, 4),
            "initialized": cls._initialized,
            "overrides": len(cls._overrides),
        }

    @classmethod
    def reset_metrics(cls) -> None:
        for key in cls._metrics:
            cls._metrics[key] = 0.0 if key.endswith("_ms") else 0
