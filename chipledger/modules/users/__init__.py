"""User registry and user-record migrations."""

from chipledger.modules.users.migration import backfill_monthly_totals
from chipledger.modules.users.service import UserService

__all__ = ["UserService", "backfill_monthly_totals"]
