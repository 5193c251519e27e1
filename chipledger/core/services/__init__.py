"""Dependency container for the domain services."""

from chipledger.core.services.container import ServiceContainer

__all__ = ["ServiceContainer"]
