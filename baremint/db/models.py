"""
SQLAlchemy database models for the Baremint token-gating core.
Raw token and lamport amounts are stored as strings to keep full precision.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Enum as SQLEnum,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


# ===================
# Enums
# ===================

class TradeType(str, Enum):
    """Trade direction against a bonding curve."""
    BUY = "buy"
    SELL = "sell"


class TradeStatus(str, Enum):
    """Trade lifecycle. CONFIRMED and FAILED are terminal."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AccessLevel(str, Enum):
    """Post visibility policy."""
    PUBLIC = "public"
    HOLD_GATED = "hold_gated"
    BURN_GATED = "burn_gated"


class NotificationType(str, Enum):
    """Notification kinds written by the fan-out service."""
    TRADE_BUY = "trade_buy"
    TRADE_SELL = "trade_sell"
    NEW_CONTENT = "new_content"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# ===================
# Models
# ===================

class CreatorToken(Base):
    """A creator's launched token. Read-only to the core."""

    __tablename__ = "creator_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    creator_user_id: Mapped[str] = mapped_column(String(36), index=True)
    mint_address: Mapped[str] = mapped_column(String(64), unique=True)
    ticker_symbol: Mapped[str] = mapped_column(String(16))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )


class Post(Base):
    """Creator post with its access policy. Read-only to the core."""

    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    creator_token_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("creator_tokens.id"), nullable=True
    )
    access_level: Mapped[AccessLevel] = mapped_column(
        SQLEnum(AccessLevel, values_callable=_enum_values),
        default=AccessLevel.PUBLIC
    )
    # Raw token amount (BigInt as string), required when gated
    token_threshold: Mapped[Optional[str]] = mapped_column(String(78), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )


class Trade(Base):
    """
    Trade attempts and their confirmation lifecycle.
    Rows are created pending at submission and advanced exactly once
    by the confirmation processor.
    """

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36))
    creator_token_id: Mapped[str] = mapped_column(String(36), ForeignKey("creator_tokens.id"))
    mint_address: Mapped[str] = mapped_column(String(64))

    type: Mapped[TradeType] = mapped_column(SQLEnum(TradeType, values_callable=_enum_values))

    # Amounts (stored as string for precision)
    sol_amount: Mapped[str] = mapped_column(String(78))  # lamports
    token_amount: Mapped[str] = mapped_column(String(78), default="0")

    tx_signature: Mapped[str] = mapped_column(String(128), unique=True)
    status: Mapped[TradeStatus] = mapped_column(
        SQLEnum(TradeStatus, values_callable=_enum_values),
        default=TradeStatus.PENDING
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    __table_args__ = (
        Index("ix_trades_holders", "mint_address", "type", "status"),
    )


class Notification(Base):
    """In-app notification written by holder fan-out."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36))
    type: Mapped[str] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(String(255))
    body: Mapped[str] = mapped_column(Text)
    link_url: Mapped[str] = mapped_column(String(500))
    related_mint_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Dedup key for trade fan-out; shared by every recipient of one trade
    tx_signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_tx", "tx_signature"),
    )


class ContentUnlock(Base):
    """Permanent burn-to-unlock record. Append-only."""

    __tablename__ = "content_unlocks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36))
    post_id: Mapped[str] = mapped_column(String(36), ForeignKey("posts.id"))
    tx_signature: Mapped[str] = mapped_column(String(128))
    tokens_burned: Mapped[str] = mapped_column(String(78))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_content_unlocks_user_post", "user_id", "post_id", unique=True),
    )


class TokenBalanceCache(Base):
    """Last observed raw token balance per (wallet, mint)."""

    __tablename__ = "token_balance_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(64))
    mint_address: Mapped[str] = mapped_column(String(64))
    balance: Mapped[str] = mapped_column(String(78))  # BigInt as string
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_token_balance_cache_wallet_mint", "wallet_address", "mint_address", unique=True),
    )
