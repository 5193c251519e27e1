"""
Configuration subsystem for ChipLedger.

- **config.py**: static configuration from environment variables (.env)
- **manager.py**: layered YAML tunables with dot-notation reads

`ConfigManager` is imported from `chipledger.core.config.manager` directly;
the logging subsystem depends on this package, and the manager depends on
logging.

Usage
-----
>>> from chipledger.core.config import Config
>>> from chipledger.core.config.manager import ConfigManager
>>> ConfigManager.get("cache.expiry_seconds")
28800
"""

from chipledger.core.config.config import Config, Environment, StoreBackend

__all__ = [
    "Config",
    "Environment",
    "StoreBackend",
]
