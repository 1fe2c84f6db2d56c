"""
Pytest configuration and fixtures.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from baremint.db.database import (
    close_db,
    create_creator_token,
    create_tables,
    create_trade,
    init_db,
    transition_pending_trade,
)
from baremint.db.models import CreatorToken, Trade, TradeStatus, TradeType


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBalanceSource:
    """In-memory balance source recording every call."""

    def __init__(self, default: int = 0):
        self.default = default
        self.balances: dict[tuple[str, str], int] = {}
        self.calls: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None
        self.sol_lamports = 0

    def set(self, wallet: str, mint: str, balance: int) -> None:
        self.balances[(wallet, mint)] = balance

    async def get_token_balance(self, wallet_address: str, mint_address: str) -> int:
        self.calls.append((wallet_address, mint_address))
        if self.error is not None:
            raise self.error
        return self.balances.get((wallet_address, mint_address), self.default)

    async def get_sol_balance(self, wallet_address: str) -> int:
        return self.sol_lamports

    async def close(self) -> None:
        pass


@pytest.fixture
async def database():
    """Fresh in-memory database per test."""
    await init_db("sqlite+aiosqlite://")
    await create_tables()
    yield
    await close_db()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def balance_source() -> FakeBalanceSource:
    return FakeBalanceSource()


@pytest.fixture
async def creator_token(database) -> CreatorToken:
    """Token M1 launched by creator 'creator-1'."""
    return await create_creator_token(
        creator_user_id="creator-1",
        mint_address="M1",
        ticker_symbol="ONE",
        token_id="token-1",
    )


@pytest.fixture
def add_trade(creator_token):
    """Create a trade for M1, optionally advancing it to a terminal status."""

    async def _add_trade(
        user_id: str,
        tx_signature: str,
        trade_type: TradeType = TradeType.BUY,
        status: TradeStatus = TradeStatus.PENDING,
    ) -> Trade:
        trade = await create_trade(
            user_id=user_id,
            creator_token_id=creator_token.id,
            mint_address=creator_token.mint_address,
            trade_type=trade_type,
            sol_amount="100000000",
            tx_signature=tx_signature,
        )
        if status != TradeStatus.PENDING:
            await transition_pending_trade(
                tx_signature, status, datetime(2026, 1, 1, tzinfo=timezone.utc)
            )
        return trade

    return _add_trade
