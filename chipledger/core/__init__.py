"""
Core infrastructure layer for ChipLedger.

- Configuration (Config, ConfigManager)
- Logging (structured logging, LogContext)
- Document stores (in-memory, SQL) and the tiered read cache
- Database and Redis services
- Event bus
- Infrastructure exceptions

Import from the submodules directly; this package has no re-exports so that
importing `chipledger.core.config` never pulls in the database stack.
"""
