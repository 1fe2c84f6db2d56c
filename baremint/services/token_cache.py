"""
Database-backed token balance cache for access checks.

Entries are fresh for 60 seconds. Stale or missing entries are refreshed on
demand from the balance source and upserted in place. Concurrent refreshes of
the same key may race; the last write wins, and every competing write is a
real observation from the source.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from baremint.db.database import (
    as_utc,
    get_balance_cache_entry,
    upsert_balance_cache,
    utc_now,
)
from baremint.services.balance_source import BalanceSourceAdapter
from baremint.utils.logging import LoggerMixin

BALANCE_CACHE_TTL = timedelta(seconds=60)

Clock = Callable[[], datetime]


class TokenBalanceCache(LoggerMixin):
    """Answers (wallet, mint) balance queries with bounded staleness."""

    def __init__(
        self,
        source: BalanceSourceAdapter,
        clock: Clock = utc_now,
        ttl: timedelta = BALANCE_CACHE_TTL,
    ):
        self._source = source
        self._clock = clock
        self._ttl = ttl

    async def get_cached(self, wallet_address: str, mint_address: str) -> Optional[int]:
        """Return the cached balance if still fresh, else None. Never calls the source."""
        entry = await get_balance_cache_entry(wallet_address, mint_address)
        if entry is None:
            return None

        age = self._clock() - as_utc(entry.checked_at)
        if age < self._ttl:
            return int(entry.balance)
        return None

    async def get(self, wallet_address: str, mint_address: str) -> int:
        """
        Get the raw token balance for a wallet+mint pair.

        Source errors propagate unchanged; nothing is written and no zero is
        substituted.
        """
        cached = await self.get_cached(wallet_address, mint_address)
        if cached is not None:
            return cached

        fresh = await self._source.get_token_balance(wallet_address, mint_address)
        checked_at = self._clock()

        await upsert_balance_cache(wallet_address, mint_address, fresh, checked_at)

        self.log.debug(
            "Token balance refreshed",
            wallet=wallet_address,
            mint=mint_address,
            balance=str(fresh),
        )
        return fresh
