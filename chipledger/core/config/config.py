"""
Static configuration for ChipLedger.

Process-lifetime settings read from the environment (and a ``.env`` file):
connection URLs, directories, logging flags and the store backend. Tunable
ledger, cache and ranking values live in YAML and are read through
`ConfigManager`.

Environment Variables
---------------------
- STORE_BACKEND: ``memory`` (default) or ``sql``
- DATABASE_URL: SQLAlchemy async URL (default: local SQLite file)
- DATABASE_ECHO, DATABASE_POOL_SIZE, DATABASE_MAX_OVERFLOW, DATABASE_POOL_RECYCLE
- REDIS_URL, REDIS_SOCKET_TIMEOUT, REDIS_MAX_CONNECTIONS
- ENVIRONMENT: development / testing / staging / production
- LOG_LEVEL (default INFO), LOG_JSON (default: production only)
- LOGS_DIR, CONFIG_DIR

Malformed or out-of-range values fall back to their default and are kept in
``Config._validation_errors`` so `validate()` can report them at startup.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

_TRUE = frozenset({"true", "yes", "1", "on"})
_FALSE = frozenset({"false", "no", "0", "off"})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./chipledger.db"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"


class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> "Environment":
        """Unknown names fall back to DEVELOPMENT."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            # Logging is not configured this early
            logging.warning("Unknown ENVIRONMENT %r, using development", value)
            return cls.DEVELOPMENT


class StoreBackend(Enum):
    MEMORY = "memory"
    SQL = "sql"


class Config:
    """
    Class-level settings, never instantiated.

    >>> if Config.store_backend() is StoreBackend.SQL:
    ...     await DatabaseService.initialize(Config.DATABASE_URL)
    """

    _validation_errors: Dict[str, str] = {}

    PROJECT_ROOT = Path(__file__).resolve().parents[3]

    STORE_BACKEND: str = StoreBackend.MEMORY.value

    DATABASE_URL: str = DEFAULT_DATABASE_URL
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_POOL_RECYCLE: int = 3600

    REDIS_URL: str = DEFAULT_REDIS_URL
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_MAX_CONNECTIONS: int = 20

    ENVIRONMENT: str = Environment.DEVELOPMENT.value
    LOG_LEVEL: str = "INFO"
    LOG_JSON: Optional[bool] = None

    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    CONFIG_DIR: Path = PROJECT_ROOT / "config"

    # ========================================================================
    # PARSERS
    # ========================================================================

    @classmethod
    def _reject(cls, key: str, problem: str) -> None:
        cls._validation_errors[key] = problem

    @classmethod
    def _safe_int(
        cls, key: str, default: int, low: Optional[int] = None, high: Optional[int] = None
    ) -> int:
        raw = os.getenv(key)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            cls._reject(key, f"{raw!r} is not an integer, using {default}")
            return default
        if (low is not None and value < low) or (high is not None and value > high):
            cls._reject(key, f"{value} outside [{low}, {high}], using {default}")
            return default
        return value

    @classmethod
    def _safe_bool(cls, key: str, default: Optional[bool]) -> Optional[bool]:
        raw = os.getenv(key)
        if raw is None:
            return default
        word = raw.strip().lower()
        if word in _TRUE:
            return True
        if word in _FALSE:
            return False
        cls._reject(key, f"{raw!r} is not a boolean, using {default}")
        return default

    @classmethod
    def _safe_str(cls, key: str, default: str) -> str:
        raw = os.getenv(key)
        if raw is None or not raw.strip():
            return default
        return raw.strip()

    @classmethod
    def _safe_path(cls, key: str, default: Path) -> Path:
        raw = os.getenv(key)
        return Path(raw).expanduser().resolve() if raw else default

    # ========================================================================
    # LOAD / VALIDATE
    # ========================================================================

    @classmethod
    def load(cls) -> None:
        """Re-read the environment. Runs on import and again at startup."""
        cls._validation_errors = {}

        cls.STORE_BACKEND = cls._safe_str("STORE_BACKEND", StoreBackend.MEMORY.value).lower()

        cls.DATABASE_URL = cls._safe_str("DATABASE_URL", DEFAULT_DATABASE_URL)
        cls.DATABASE_ECHO = bool(cls._safe_bool("DATABASE_ECHO", False))
        cls.DATABASE_POOL_SIZE = cls._safe_int("DATABASE_POOL_SIZE", 10, 1, 200)
        cls.DATABASE_MAX_OVERFLOW = cls._safe_int("DATABASE_MAX_OVERFLOW", 10, 0, 200)
        cls.DATABASE_POOL_RECYCLE = cls._safe_int("DATABASE_POOL_RECYCLE", 3600, 60)

        cls.REDIS_URL = cls._safe_str("REDIS_URL", DEFAULT_REDIS_URL)
        cls.REDIS_SOCKET_TIMEOUT = cls._safe_int("REDIS_SOCKET_TIMEOUT", 5, 1, 60)
        cls.REDIS_MAX_CONNECTIONS = cls._safe_int("REDIS_MAX_CONNECTIONS", 20, 1, 500)

        cls.ENVIRONMENT = cls._safe_str("ENVIRONMENT", Environment.DEVELOPMENT.value)
        cls.LOG_LEVEL = cls._safe_str("LOG_LEVEL", "INFO").upper()
        if cls.LOG_LEVEL not in _LOG_LEVELS:
            cls._reject("LOG_LEVEL", f"{cls.LOG_LEVEL!r} is not a level, using INFO")
            cls.LOG_LEVEL = "INFO"
        cls.LOG_JSON = cls._safe_bool("LOG_JSON", None)

        cls.LOGS_DIR = cls._safe_path("LOGS_DIR", cls.PROJECT_ROOT / "logs")
        cls.CONFIG_DIR = cls._safe_path("CONFIG_DIR", cls.PROJECT_ROOT / "config")

    @classmethod
    def validate(cls) -> None:
        """
        Check the loaded values before anything connects.

        Raises:
            ValueError: Unknown store backend
        """
        backends = [backend.value for backend in StoreBackend]
        if cls.STORE_BACKEND not in backends:
            raise ValueError(f"STORE_BACKEND must be one of {backends}, got {cls.STORE_BACKEND!r}")

        logger = logging.getLogger(__name__)
        if cls.is_production() and cls.DATABASE_URL.startswith("sqlite"):
            logger.warning("Production environment is configured with a SQLite database")
        if cls._validation_errors:
            logger.warning(
                "Environment values replaced by defaults",
                extra={"validation_errors": dict(cls._validation_errors)},
            )
        cls.LOGS_DIR.mkdir(parents=True, exist_ok=True)

    # ========================================================================
    # ACCESSORS
    # ========================================================================

    @classmethod
    def environment(cls) -> Environment:
        return Environment.from_string(cls.ENVIRONMENT)

    @classmethod
    def is_production(cls) -> bool:
        return cls.environment() is Environment.PRODUCTION

    @classmethod
    def is_testing(cls) -> bool:
        return cls.environment() is Environment.TESTING

    @classmethod
    def store_backend(cls) -> StoreBackend:
        return StoreBackend(cls.STORE_BACKEND)

    @classmethod
    def get_config_summary(cls) -> Dict[str, Any]:
        """Startup summary without credentials."""
        return {
            "environment": cls.ENVIRONMENT,
            "log_level": cls.LOG_LEVEL,
            "store_backend": cls.STORE_BACKEND,
            "database_url_scheme": cls.DATABASE_URL.split(":", 1)[0],
            "redis_configured": bool(cls.REDIS_URL),
            "config_dir": str(cls.CONFIG_DIR),
        }


Config.load()
