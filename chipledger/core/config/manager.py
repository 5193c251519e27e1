"""
ConfigManager: dot-notation access to ChipLedger tunables.

Values come from three layers, highest first:

1. Process overrides set with `ConfigManager.set()` (operators, tests)
2. YAML files under ``Config.CONFIG_DIR``, deep-merged in sorted order
3. `_BUILTIN_DEFAULTS`

Environment settings (URLs, log level, backend) belong to `Config`, not here.
Overrides are never written back to disk.
"""

from __future__ import annotations

import asyncio
import copy
from pathlib import Path
from typing import Any, Dict, Iterator, MutableMapping, Optional

import yaml

from chipledger.core.config.config import Config
from chipledger.core.logging.logger import get_logger

logger = get_logger(__name__)

_MISSING = object()

_BUILTIN_DEFAULTS: Dict[str, Any] = {
    "cache": {
        "expiry_seconds": 8 * 60 * 60,
        "persistent": {"key_prefix": "chipledger:query"},
    },
    "ranking": {
        "default_limit": 20,
        "snapshot_limit": 50,
        "auto_recalc": {
            "interactive_threshold_seconds": 12 * 60 * 60,
            "dashboard_threshold_seconds": 60 * 60,
        },
    },
    "ledger": {
        "timezone": "UTC",
        "history_limit": 10,
        "summary_days": 7,
        "recent_changes_limit": 10,
    },
    "core": {
        "event": {
            "listener_timeout": {"critical_seconds": 5.0, "high_seconds": 5.0},
        },
        "redis": {"default_ttl_seconds": 8 * 60 * 60},
    },
}


class ConfigManagerError(RuntimeError):
    pass


def _merge_into(target: MutableMapping[str, Any], overlay: MutableMapping[str, Any]) -> None:
    for key, value in overlay.items():
        current = target.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            _merge_into(current, value)
        else:
            target[key] = value


def _lookup(tree: Dict[str, Any], dotted: str) -> Any:
    node: Any = tree
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _yaml_files(config_dir: Path) -> Iterator[Path]:
    for pattern in ("*.yaml", "*.yml"):
        yield from sorted(config_dir.rglob(pattern))


class ConfigManager:
    """
    >>> await ConfigManager.initialize()
    >>> ConfigManager.get("ranking.snapshot_limit")
    50
    >>> ConfigManager.set("ranking.snapshot_limit", 10)
    """

    _tree: Dict[str, Any] = {}
    _overrides: Dict[str, Any] = {}
    _initialized: bool = False
    _lock: asyncio.Lock = asyncio.Lock()

    _reads: int = 0
    _fallbacks: int = 0

    # =========================================================================
    # LOADING
    # =========================================================================

    @classmethod
    def _read_file(cls, path: Path) -> bool:
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning(
                "Skipping unreadable YAML config",
                extra={"file": str(path), "error_type": type(exc).__name__},
                exc_info=True,
            )
            return False

        if data is None:
            return False
        if not isinstance(data, dict):
            logger.warning(
                "Skipping YAML config whose root is not a mapping",
                extra={"file": str(path), "root_type": type(data).__name__},
            )
            return False

        _merge_into(cls._tree, data)
        logger.debug("Merged YAML config", extra={"file": str(path)})
        return True

    @classmethod
    def _load(cls, config_dir: Optional[Path] = None) -> int:
        directory = Path(config_dir or Config.CONFIG_DIR)
        cls._tree = copy.deepcopy(_BUILTIN_DEFAULTS)
        cls._initialized = True
        if not directory.is_dir():
            logger.warning(
                "Config directory missing, built-in defaults only",
                extra={"config_dir": str(directory)},
            )
            return 0
        return sum(cls._read_file(path) for path in _yaml_files(directory))

    @classmethod
    async def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """Load defaults and YAML once. Later calls are no-ops."""
        async with cls._lock:
            if cls._initialized:
                return
            merged = cls._load(config_dir)
            logger.info(
                "ConfigManager initialized",
                extra={"yaml_files": merged, "sections": sorted(cls._tree)},
            )

    @classmethod
    def reset(cls) -> None:
        """Forget everything, including overrides and counters."""
        cls._tree = {}
        cls._overrides = {}
        cls._initialized = False
        cls._reads = 0
        cls._fallbacks = 0

    # =========================================================================
    # ACCESS
    # =========================================================================

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        >>> ConfigManager.get("cache.expiry_seconds")
        28800
        >>> ConfigManager.get("ranking.missing", 5)
        5
        """
        if not cls._initialized:
            # Reads can happen before startup, e.g. from module-level code
            cls._load()

        cls._reads += 1
        if key in cls._overrides:
            return cls._overrides[key]

        value = _lookup(cls._tree, key)
        if value is _MISSING or value is None:
            cls._fallbacks += 1
            return default
        return value

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        if not key:
            raise ConfigManagerError("Config key must be a non-empty string")
        before = cls._overrides.get(key, _lookup(cls._tree, key))
        cls._overrides[key] = value
        logger.info(
            "Configuration override applied",
            extra={
                "config_key": key,
                "old_value": None if before is _MISSING else before,
                "new_value": value,
            },
        )

    @classmethod
    def health_snapshot(cls) -> Dict[str, Any]:
        return {
            "initialized": cls._initialized,
            "reads": cls._reads,
            "fallbacks_to_default": cls._fallbacks,
            "override_count": len(cls._overrides),
        }
