"""
UserService: user registry for the chip ledger.

Purpose
-------
Register players, look them up through the tiered read cache and edit their
profile fields. Balances and totals are never written here except for the
initial chips granted at registration; all later changes go through
`LedgerService.apply_delta`.

Cache keys
----------
- ``user_{username}`` : single-user lookup
- ``all_users``       : every user ordered by username

Error policy
------------
Invalid input, duplicates and unknown users return ``None`` / ``False`` /
empty lists. `StoreError` propagates.
"""

from __future__ import annotations

from typing import List, Optional

from chipledger.core.cache.service import TieredReadCache
from chipledger.core.logging.logger import LogContext, get_logger
from chipledger.core.store.base import SERVER_TIMESTAMP, DocumentStore, Filter, OrderBy
from chipledger.core.time_utils import period_key
from chipledger.domain.models.ledger import ChipDirection
from chipledger.domain.models.user import (
    DEFAULT_ROLE,
    USERS_COLLECTION,
    UserRecord,
    sorted_by_username,
)
from chipledger.modules.ledger.journal import LedgerJournal
from chipledger.modules.ledger.service import ALL_USERS_CACHE_KEY, user_cache_key
from chipledger.modules.shared.base_service import BaseService
from chipledger.modules.shared.exceptions import DuplicateUsernameError, ValidationError
from chipledger.modules.shared.validators import (
    validate_identifier,
    validate_limit,
    validate_non_negative,
    validate_text,
)

INITIAL_CHIPS_REASON = "initial chips"
SYSTEM_ACTOR = "system"


class UserService(BaseService):
    def __init__(
        self,
        store: DocumentStore,
        cache: TieredReadCache,
        config_manager,
        event_bus,
        clock=None,
        journal: Optional[LedgerJournal] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, get_logger(__name__), clock)
        self._store = store
        self._cache = cache
        self._journal = journal or LedgerJournal(store, self.log)

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    async def create_user(
        self,
        username: str,
        display_name: Optional[str] = None,
        initial_chips: int = 0,
        notes: str = "",
        actor: str = SYSTEM_ACTOR,
    ) -> Optional[UserRecord]:
        """
        Register a user. Returns None for an empty or already used username
        or a negative initial balance.

        Positive initial chips count as this period's first earnings and get
        a history entry and a daily summary like any other credit.
        """
        try:
            username = validate_text(username, "username")
            initial_chips = validate_non_negative(initial_chips, "initial_chips")
            if await self.find_by_username(username, force_refresh=True) is not None:
                raise DuplicateUsernameError(username)
        except (ValidationError, DuplicateUsernameError) as exc:
            self.log.info(
                "User registration rejected",
                extra={"username": username, "error_code": exc.error_code},
            )
            return None

        moment = self.now()
        tz = self.ledger_timezone()
        period = period_key(moment, tz)
        display = (display_name or "").strip() or username

        async with LogContext(actor=actor, operation="create_user"):
            user_id = await self._store.add(
                USERS_COLLECTION,
                {
                    "username": username,
                    "displayName": display,
                    "chips": initial_chips,
                    "totalEarnings": initial_chips,
                    "totalLosses": 0,
                    "monthlyTotals": {period: initial_chips} if initial_chips > 0 else {},
                    "lastUpdated": SERVER_TIMESTAMP,
                    "createdAt": SERVER_TIMESTAMP,
                    "notes": notes or "",
                    "role": DEFAULT_ROLE,
                },
            )
            self.log_operation(
                "create_user", user_id=user_id, username=username, initial_chips=initial_chips
            )

            if initial_chips > 0:
                try:
                    await self._journal.append_history(
                        user_id=user_id,
                        username=username,
                        previous_amount=0,
                        new_amount=initial_chips,
                        requested_amount=initial_chips,
                        direction=ChipDirection.ADD,
                        reason=INITIAL_CHIPS_REASON,
                        staff_email=SYSTEM_ACTOR,
                        moment=moment,
                        tz=tz,
                    )
                    await self._journal.upsert_daily_summary(
                        user_id=user_id,
                        username=username,
                        start_chips=0,
                        end_chips=initial_chips,
                        net_change=initial_chips,
                        moment=moment,
                        tz=tz,
                    )
                except Exception as exc:
                    self.log_error("record_initial_chips", exc, user_id=user_id)

        self._cache.clear(ALL_USERS_CACHE_KEY)
        self._cache.clear(user_cache_key(username))

        return UserRecord(
            id=user_id,
            username=username,
            display_name=display,
            chips=initial_chips,
            total_earnings=initial_chips,
            total_losses=0,
            monthly_totals={period: initial_chips} if initial_chips > 0 else {},
            last_updated=moment,
            created_at=moment,
            notes=notes or "",
            role=DEFAULT_ROLE,
        )

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        try:
            user_id = validate_identifier(user_id, "user_id")
        except ValidationError:
            return None
        document = await self._store.get(USERS_COLLECTION, user_id)
        if document is None:
            return None
        return UserRecord.from_document(document, clock=self._clock)

    async def find_by_username(
        self, username: str, force_refresh: bool = False
    ) -> Optional[UserRecord]:
        try:
            username = validate_text(username, "username")
        except ValidationError:
            return None
        result = await self._cache.get(
            USERS_COLLECTION,
            [Filter("username", "==", username)],
            user_cache_key(username),
            force_refresh=force_refresh,
        )
        if not result.documents:
            return None
        return UserRecord.from_document(result.documents[0], clock=self._clock)

    async def list_users(self, force_refresh: bool = False) -> List[UserRecord]:
        result = await self._cache.get(
            USERS_COLLECTION, (), ALL_USERS_CACHE_KEY, force_refresh=force_refresh
        )
        self.log.debug(
            "Listed users",
            extra={"count": len(result.documents), "source": result.source.value},
        )
        return sorted_by_username(
            UserRecord.from_document(doc, clock=self._clock) for doc in result.documents
        )

    async def top_by_balance(self, limit: int = 10) -> List[UserRecord]:
        """Users with the largest current balance, straight from the server."""
        try:
            limit = validate_limit(limit)
        except ValidationError:
            return []
        documents = await self._store.query_from_server(
            USERS_COLLECTION,
            order_by=OrderBy("chips", descending=True),
            limit=limit,
        )
        return [UserRecord.from_document(doc, clock=self._clock) for doc in documents]

    # ========================================================================
    # PROFILE
    # ========================================================================

    async def update_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> bool:
        """Edit display name and notes. Returns False for an unknown user."""
        try:
            user_id = validate_identifier(user_id, "user_id")
        except ValidationError:
            return False

        changes = {}
        if display_name is not None:
            changes["displayName"] = display_name.strip()
        if notes is not None:
            changes["notes"] = notes
        if not changes:
            return False

        document = await self._store.get(USERS_COLLECTION, user_id)
        if document is None:
            return False

        changes["lastUpdated"] = SERVER_TIMESTAMP
        await self._store.update(USERS_COLLECTION, user_id, changes)

        user = UserRecord.from_document(document, clock=self._clock)
        self._cache.clear(user_cache_key(user.username))
        self._cache.clear(ALL_USERS_CACHE_KEY)
        self.log_operation("update_profile", user_id=user_id, fields=sorted(changes))
        return True
