"""
Database connection and session management.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from baremint.db.models import (
    AccessLevel,
    Base,
    ContentUnlock,
    CreatorToken,
    Notification,
    Post,
    TokenBalanceCache,
    Trade,
    TradeStatus,
    TradeType,
)
from baremint.utils.logging import get_logger

logger = get_logger(__name__)

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

NOTIFICATION_PAGE_SIZE = 50


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def init_db(database_url: str) -> None:
    """
    Initialize database connection.

    Expects an async driver URL, see Settings.async_database_url.
    """
    global _engine, _session_factory

    if database_url.startswith("sqlite"):
        _engine = create_async_engine(
            database_url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        _engine = create_async_engine(
            database_url,
            echo=False,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    logger.info("Database connection initialized", dialect=_engine.dialect.name)


async def create_tables() -> None:
    """Create all database tables."""
    if _engine is None:
        raise RuntimeError("Database not initialized")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created")


async def close_db() -> None:
    """Close database connection."""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session (context manager for internal use)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _dialect_insert():
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if _engine is None:
        raise RuntimeError("Database not initialized")

    name = _engine.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert
    raise RuntimeError(f"Upsert not supported for dialect: {name}")


# ===================
# Creator Token / Post Operations
# ===================

async def create_creator_token(
    creator_user_id: str,
    mint_address: str,
    ticker_symbol: str,
    token_id: Optional[str] = None,
) -> CreatorToken:
    """Register a creator token."""
    async with get_session() as session:
        token = CreatorToken(
            id=token_id or generate_id(),
            creator_user_id=creator_user_id,
            mint_address=mint_address,
            ticker_symbol=ticker_symbol,
        )
        session.add(token)
        await session.flush()
        return token


async def get_creator_token(creator_token_id: str) -> Optional[CreatorToken]:
    """Get a creator token by ID."""
    async with get_session() as session:
        result = await session.execute(
            select(CreatorToken).where(CreatorToken.id == creator_token_id)
        )
        return result.scalar_one_or_none()


async def get_creator_token_by_creator(creator_user_id: str) -> Optional[CreatorToken]:
    """Get the token launched by a creator."""
    async with get_session() as session:
        result = await session.execute(
            select(CreatorToken)
            .where(CreatorToken.creator_user_id == creator_user_id)
            .limit(1)
        )
        return result.scalar_one_or_none()


async def create_post(
    access_level: AccessLevel = AccessLevel.PUBLIC,
    creator_token_id: Optional[str] = None,
    token_threshold: Optional[str] = None,
    post_id: Optional[str] = None,
) -> Post:
    """Create a post with its access policy."""
    async with get_session() as session:
        post = Post(
            id=post_id or generate_id(),
            creator_token_id=creator_token_id,
            access_level=access_level,
            token_threshold=token_threshold,
        )
        session.add(post)
        await session.flush()
        return post


async def get_post(post_id: str) -> Optional[Post]:
    """Get a post by ID."""
    async with get_session() as session:
        result = await session.execute(select(Post).where(Post.id == post_id))
        return result.scalar_one_or_none()


# ===================
# Trade Ledger Operations
# ===================

async def create_trade(
    user_id: str,
    creator_token_id: str,
    mint_address: str,
    trade_type: TradeType,
    sol_amount: str,
    tx_signature: str,
    token_amount: str = "0",
) -> Trade:
    """Record a submitted trade as pending."""
    async with get_session() as session:
        trade = Trade(
            id=generate_id(),
            user_id=user_id,
            creator_token_id=creator_token_id,
            mint_address=mint_address,
            type=trade_type,
            sol_amount=sol_amount,
            token_amount=token_amount,
            tx_signature=tx_signature,
            status=TradeStatus.PENDING,
        )
        session.add(trade)
        await session.flush()

        logger.info("Created pending trade", user_id=user_id, signature=tx_signature)
        return trade


async def get_trade_by_signature(tx_signature: str) -> Optional[Trade]:
    """Get a trade by its transaction signature, whatever its status."""
    async with get_session() as session:
        result = await session.execute(
            select(Trade).where(Trade.tx_signature == tx_signature)
        )
        return result.scalar_one_or_none()


async def get_pending_trade(tx_signature: str) -> Optional[Trade]:
    """Get a trade by signature only while it is still pending."""
    async with get_session() as session:
        result = await session.execute(
            select(Trade)
            .where(Trade.tx_signature == tx_signature)
            .where(Trade.status == TradeStatus.PENDING)
            .limit(1)
        )
        return result.scalar_one_or_none()


async def transition_pending_trade(
    tx_signature: str,
    status: TradeStatus,
    confirmed_at: datetime,
) -> bool:
    """
    Advance a pending trade to a terminal status.

    Single conditional UPDATE scoped to status='pending'; returns True only
    for the caller whose statement actually moved the row.
    """
    if status == TradeStatus.PENDING:
        raise ValueError("Target status must be terminal")

    async with get_session() as session:
        result = await session.execute(
            update(Trade)
            .where(Trade.tx_signature == tx_signature)
            .where(Trade.status == TradeStatus.PENDING)
            .values(status=status, confirmed_at=confirmed_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# ===================
# Content Unlock Operations
# ===================

async def record_content_unlock(
    user_id: str,
    post_id: str,
    tx_signature: str,
    tokens_burned: str,
) -> ContentUnlock:
    """Append a permanent burn unlock."""
    async with get_session() as session:
        unlock = ContentUnlock(
            id=generate_id(),
            user_id=user_id,
            post_id=post_id,
            tx_signature=tx_signature,
            tokens_burned=tokens_burned,
        )
        session.add(unlock)
        await session.flush()

        logger.info("Recorded content unlock", user_id=user_id, post_id=post_id)
        return unlock


async def has_content_unlock(user_id: str, post_id: str) -> bool:
    """Check whether a user holds a permanent unlock for a post."""
    async with get_session() as session:
        result = await session.execute(
            select(ContentUnlock.id)
            .where(ContentUnlock.user_id == user_id)
            .where(ContentUnlock.post_id == post_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None


# ===================
# Token Balance Cache Operations
# ===================

async def get_balance_cache_entry(
    wallet_address: str,
    mint_address: str,
) -> Optional[TokenBalanceCache]:
    """Get the cached balance row for a wallet+mint pair."""
    async with get_session() as session:
        result = await session.execute(
            select(TokenBalanceCache)
            .where(TokenBalanceCache.wallet_address == wallet_address)
            .where(TokenBalanceCache.mint_address == mint_address)
            .limit(1)
        )
        return result.scalar_one_or_none()


async def upsert_balance_cache(
    wallet_address: str,
    mint_address: str,
    balance: int,
    checked_at: datetime,
) -> None:
    """Insert or overwrite the cached balance (last write wins)."""
    dialect_insert = _dialect_insert()
    stmt = dialect_insert(TokenBalanceCache).values(
        id=generate_id(),
        wallet_address=wallet_address,
        mint_address=mint_address,
        balance=str(balance),
        checked_at=checked_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[TokenBalanceCache.wallet_address, TokenBalanceCache.mint_address],
        set_={"balance": str(balance), "checked_at": checked_at},
    )

    async with get_session() as session:
        await session.execute(stmt)


# ===================
# Notification Operations
# ===================

async def notification_exists_for_signature(tx_signature: str) -> bool:
    """Check whether any notification was already written for a trade."""
    async with get_session() as session:
        result = await session.execute(
            select(Notification.id)
            .where(Notification.tx_signature == tx_signature)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None


async def get_holder_user_ids(
    mint_address: str,
    exclude_user_id: Optional[str],
    limit: int,
) -> list[str]:
    """Distinct users with at least one confirmed buy of the mint."""
    async with get_session() as session:
        query = (
            select(Trade.user_id)
            .where(Trade.mint_address == mint_address)
            .where(Trade.type == TradeType.BUY)
            .where(Trade.status == TradeStatus.CONFIRMED)
        )
        if exclude_user_id:
            query = query.where(Trade.user_id != exclude_user_id)

        query = query.distinct().order_by(Trade.user_id).limit(limit)

        result = await session.execute(query)
        return list(result.scalars().all())


async def insert_notifications(rows: list[dict[str, Any]]) -> int:
    """Insert notification rows in one statement."""
    if not rows:
        return 0

    async with get_session() as session:
        await session.execute(insert(Notification), rows)
    return len(rows)


async def list_notifications(
    user_id: str,
    offset: int = 0,
    limit: int = NOTIFICATION_PAGE_SIZE,
) -> tuple[list[Notification], bool]:
    """Get a page of a user's notifications, newest first."""
    async with get_session() as session:
        result = await session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id)
            .offset(max(0, offset))
            .limit(limit + 1)
        )
        items = list(result.scalars().all())

    has_more = len(items) > limit
    return items[:limit], has_more


async def count_unread_notifications(user_id: str) -> int:
    """Count a user's unread notifications."""
    async with get_session() as session:
        result = await session.execute(
            select(func.count(Notification.id))
            .where(Notification.user_id == user_id)
            .where(Notification.is_read.is_(False))
        )
        return int(result.scalar_one())


async def mark_notifications_read(user_id: str, notification_ids: list[str]) -> int:
    """Mark the given notifications read, scoped to their owner."""
    async with get_session() as session:
        result = await session.execute(
            update(Notification)
            .where(Notification.user_id == user_id)
            .where(Notification.id.in_(notification_ids))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
