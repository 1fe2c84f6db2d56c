"""
Tests for the token balance cache.
"""

import pytest

from baremint.db.database import get_balance_cache_entry, get_session
from baremint.db.models import TokenBalanceCache as CacheRow
from baremint.errors import ConfigurationError, ExternalServiceError
from baremint.services.token_cache import TokenBalanceCache
from sqlalchemy import func, select


@pytest.fixture
def cache(database, balance_source, clock) -> TokenBalanceCache:
    return TokenBalanceCache(balance_source, clock=clock)


async def count_rows() -> int:
    async with get_session() as session:
        result = await session.execute(select(func.count(CacheRow.id)))
        return int(result.scalar_one())


class TestFreshness:
    """Test the 60 second freshness window."""

    async def test_hit_within_window(self, cache, balance_source, clock):
        """Two reads within 60s return the same value with one source call."""
        balance_source.set("W1", "M1", 1500)
        assert await cache.get("W1", "M1") == 1500

        balance_source.set("W1", "M1", 500)
        clock.advance(10)
        assert await cache.get("W1", "M1") == 1500

        clock.advance(49.9)
        assert await cache.get("W1", "M1") == 1500

        assert len(balance_source.calls) == 1

    async def test_refresh_at_window_edge(self, cache, balance_source, clock):
        """An entry exactly 60s old is stale."""
        balance_source.set("W1", "M1", 1500)
        await cache.get("W1", "M1")

        balance_source.set("W1", "M1", 500)
        clock.advance(60)
        assert await cache.get("W1", "M1") == 500
        assert len(balance_source.calls) == 2

    async def test_refresh_after_failed_attempts(self, cache, balance_source, clock):
        """After expiry, one successful fetch repopulates regardless of earlier failures."""
        balance_source.set("W1", "M1", 100)
        await cache.get("W1", "M1")

        clock.advance(61)
        balance_source.error = ExternalServiceError("timed out", "helius")
        with pytest.raises(ExternalServiceError):
            await cache.get("W1", "M1")
        with pytest.raises(ExternalServiceError):
            await cache.get("W1", "M1")

        balance_source.error = None
        balance_source.set("W1", "M1", 250)
        clock.advance(1)
        calls_before = len(balance_source.calls)

        assert await cache.get("W1", "M1") == 250
        assert len(balance_source.calls) == calls_before + 1

        clock.advance(5)
        assert await cache.get("W1", "M1") == 250
        assert len(balance_source.calls) == calls_before + 1

    async def test_keys_are_independent(self, cache, balance_source):
        """Entries are per (wallet, mint)."""
        balance_source.set("W1", "M1", 1)
        balance_source.set("W1", "M2", 2)
        balance_source.set("W2", "M1", 3)

        assert await cache.get("W1", "M1") == 1
        assert await cache.get("W1", "M2") == 2
        assert await cache.get("W2", "M1") == 3
        assert len(balance_source.calls) == 3

    async def test_get_cached_never_calls_source(self, cache, balance_source, clock):
        """get_cached only reads the table."""
        assert await cache.get_cached("W1", "M1") is None

        balance_source.set("W1", "M1", 42)
        await cache.get("W1", "M1")
        assert await cache.get_cached("W1", "M1") == 42

        clock.advance(120)
        assert await cache.get_cached("W1", "M1") is None
        assert len(balance_source.calls) == 1


class TestPersistence:
    """Test the upsert behaviour."""

    async def test_upsert_keeps_one_row(self, cache, balance_source, clock):
        """Refreshes overwrite the same row."""
        for value in (10, 20, 30):
            balance_source.set("W1", "M1", value)
            await cache.get("W1", "M1")
            clock.advance(61)

        assert await count_rows() == 1
        entry = await get_balance_cache_entry("W1", "M1")
        assert entry.balance == "30"

    async def test_large_balance_is_exact(self, cache, balance_source):
        """Balances beyond 64 bits round-trip exactly."""
        big = 2**70 + 3
        balance_source.set("W1", "M1", big)

        assert await cache.get("W1", "M1") == big
        entry = await get_balance_cache_entry("W1", "M1")
        assert entry.balance == str(big)

    async def test_source_error_propagates_without_write(self, cache, balance_source):
        """Failures are never cached and never turned into zero."""
        balance_source.error = ExternalServiceError("HTTP 500", "helius", status_code=500)

        with pytest.raises(ExternalServiceError):
            await cache.get("W1", "M1")
        assert await count_rows() == 0

    async def test_configuration_error_propagates(self, cache, balance_source):
        """A missing endpoint surfaces to the caller."""
        balance_source.error = ConfigurationError("HELIUS_RPC_URL is not configured")

        with pytest.raises(ConfigurationError):
            await cache.get("W1", "M1")

    async def test_stale_entry_survives_failed_refresh(self, cache, balance_source, clock):
        """A failed refresh leaves the old row untouched."""
        balance_source.set("W1", "M1", 700)
        await cache.get("W1", "M1")

        clock.advance(90)
        balance_source.error = ExternalServiceError("timed out", "helius")
        with pytest.raises(ExternalServiceError):
            await cache.get("W1", "M1")

        entry = await get_balance_cache_entry("W1", "M1")
        assert entry.balance == "700"
