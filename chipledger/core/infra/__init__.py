"""Application lifecycle orchestration."""

from chipledger.core.infra.application_context import ApplicationContext

__all__ = ["ApplicationContext"]
