"""
Base Service Foundation
=======================

Common plumbing for the ledger, user and ranking services: config access,
the injected clock and ledger timezone, event emission and structured
logging. Subclasses receive their store and cache explicitly; infrastructure
errors are never swallowed here.
"""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Any, Dict, Optional

from chipledger.core.exceptions import (
    ConfigurationError,
    ErrorSeverity,
    get_error_severity,
    is_transient_error,
    should_alert,
)
from chipledger.core.time_utils import Clock, SystemClock, resolve_timezone

if TYPE_CHECKING:
    from logging import Logger

    from chipledger.core.config.manager import ConfigManager
    from chipledger.core.event.bus import EventBus

_LOG_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class BaseService:
    """
    Args:
        config_manager: ConfigManager class (class-level singleton)
        event_bus: Bus for cross-module effects
        logger: Module logger of the subclass
        clock: Time source; the system clock when omitted
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self._clock = clock or SystemClock()
        self.log = logger

    # ========================================================================
    # CONFIG
    # ========================================================================

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Raises:
            ConfigurationError: If required=True and the key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(key, "required key is missing")
        return value

    def get_config_int(self, key: str, default: int) -> int:
        value = self._config.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.log.warning(
                "Non-numeric config value, using default",
                extra={"config_key": key, "value": value, "default": default},
            )
            return default
        return int(value)

    # ========================================================================
    # TIME
    # ========================================================================

    def now(self) -> datetime:
        return self._clock.now()

    def ledger_timezone(self) -> tzinfo:
        """Zone used for period (``YYYY-MM``) and day (``YYYY-MM-DD``) keys."""
        return resolve_timezone(self.get_config("ledger.timezone", "UTC"))

    # ========================================================================
    # EVENTS & LOGGING
    # ========================================================================

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._events.publish(event_type, {**data, **(context or {})})

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(operation, extra={"operation": operation, **context})

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        """Log a caught failure at the level its severity calls for."""
        self.log.log(
            _LOG_LEVELS[get_error_severity(error)],
            f"{operation} failed: {error}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "retryable": is_transient_error(error),
                "alert": should_alert(error),
                **context,
            },
            exc_info=(type(error), error, error.__traceback__),
        )
