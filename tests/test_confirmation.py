"""
Tests for webhook trade confirmation.
"""

import pytest
from sqlalchemy import func, select

from baremint.db.database import as_utc, get_session, get_trade_by_signature
from baremint.db.models import Notification, TradeStatus, TradeType
from baremint.errors import MalformedInputError
from baremint.services.confirmation import (
    EventOutcome,
    PayloadShape,
    TradeConfirmationProcessor,
    parse_event,
)
from baremint.services.notifications import NotificationService


def raw_tx(signature: str, err=None) -> dict:
    return {"transaction": {"signatures": [signature]}, "meta": {"err": err}}


def enhanced_tx(signature: str, err=None) -> dict:
    return {"signature": signature, "meta": {"err": err}}


class SpyNotifications(NotificationService):
    """Records trade fan-out calls, optionally failing them."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.calls: list[str] = []
        self.fail = fail

    async def notify_trade_confirmed(self, mint_address, trade_type, actor_user_id, tx_signature):
        self.calls.append(tx_signature)
        if self.fail:
            raise RuntimeError("notification store unavailable")
        return await super().notify_trade_confirmed(mint_address, trade_type, actor_user_id, tx_signature)


@pytest.fixture
def notifications(database) -> SpyNotifications:
    return SpyNotifications()


@pytest.fixture
def processor(notifications, clock) -> TradeConfirmationProcessor:
    return TradeConfirmationProcessor(notifications, clock=clock)


async def notifications_for(signature: str) -> list[Notification]:
    async with get_session() as session:
        result = await session.execute(
            select(Notification)
            .where(Notification.tx_signature == signature)
            .order_by(Notification.user_id)
        )
        return list(result.scalars().all())


async def notification_count() -> int:
    async with get_session() as session:
        result = await session.execute(select(func.count(Notification.id)))
        return int(result.scalar_one())


class TestParseEvent:
    """Test webhook payload parsing."""

    def test_raw_shape(self):
        event = parse_event(raw_tx("sig-raw"))
        assert event.shape == PayloadShape.RAW
        assert event.signature == "sig-raw"
        assert event.succeeded is True
        assert event.target_status == TradeStatus.CONFIRMED

    def test_enhanced_shape(self):
        event = parse_event(enhanced_tx("sig-enh"))
        assert event.shape == PayloadShape.ENHANCED
        assert event.signature == "sig-enh"

    def test_raw_preferred_over_enhanced(self):
        """The nested signature wins when both shapes are present."""
        payload = {"transaction": {"signatures": ["nested"]}, "signature": "top"}
        assert parse_event(payload).signature == "nested"

    def test_empty_signature_list_falls_back(self):
        payload = {"transaction": {"signatures": []}, "signature": "top"}
        assert parse_event(payload).shape == PayloadShape.ENHANCED

    def test_error_means_failed(self):
        event = parse_event(raw_tx("sig", err={"InstructionError": [0, "Custom"]}))
        assert event.succeeded is False
        assert event.target_status == TradeStatus.FAILED

    def test_missing_meta_means_success(self):
        assert parse_event({"signature": "sig"}).succeeded is True

    def test_missing_signature(self):
        with pytest.raises(MalformedInputError):
            parse_event({"meta": {"err": None}})

    def test_not_an_object(self):
        with pytest.raises(MalformedInputError):
            parse_event("sig123")

    def test_non_string_signature(self):
        with pytest.raises(MalformedInputError):
            parse_event({"signature": 42})


class TestProcessEvent:
    """Test applying events to the trade ledger."""

    async def test_confirms_and_notifies_holders(self, processor, add_trade, clock):
        """A confirmed buy notifies every other holder once."""
        for user in ("holder-a", "holder-b", "holder-c"):
            await add_trade(user, f"hold-{user}", status=TradeStatus.CONFIRMED)
        await add_trade("buyer", "sig123")

        outcome = await processor.process_event(raw_tx("sig123"))

        trade = await get_trade_by_signature("sig123")
        assert outcome == EventOutcome.CONFIRMED
        assert trade.status == TradeStatus.CONFIRMED
        assert as_utc(trade.confirmed_at) == clock.now

        rows = await notifications_for("sig123")
        assert [n.user_id for n in rows] == ["holder-a", "holder-b", "holder-c"]
        assert {n.type for n in rows} == {"trade_buy"}

    async def test_duplicate_delivery_is_a_noop(self, processor, notifications, add_trade, clock):
        """Redelivery changes nothing and writes no new notifications."""
        await add_trade("holder-a", "hold-a", status=TradeStatus.CONFIRMED)
        await add_trade("buyer", "sig123")

        await processor.process_event(raw_tx("sig123"))
        first_confirmed_at = as_utc((await get_trade_by_signature("sig123")).confirmed_at)
        clock.advance(30)
        outcome = await processor.process_event(enhanced_tx("sig123"))

        assert outcome == EventOutcome.SKIPPED
        assert as_utc((await get_trade_by_signature("sig123")).confirmed_at) == first_confirmed_at
        assert notifications.calls == ["sig123"]
        assert len(await notifications_for("sig123")) == 1

    async def test_many_deliveries_one_fan_out(self, processor, notifications, add_trade):
        """N copies of an event in one batch transition and fan out once."""
        await add_trade("holder-a", "hold-a", status=TradeStatus.CONFIRMED)
        await add_trade("buyer", "sig123")

        result = await processor.process_batch([raw_tx("sig123")] * 5)

        assert result.confirmed == 1
        assert result.skipped == 4
        assert notifications.calls == ["sig123"]

    async def test_failed_transaction(self, processor, notifications, add_trade):
        """A failed transaction marks the trade failed without notifications."""
        await add_trade("holder-a", "hold-a", status=TradeStatus.CONFIRMED)
        await add_trade("buyer", "sig-fail")

        outcome = await processor.process_event(raw_tx("sig-fail", err={"InstructionError": []}))

        trade = await get_trade_by_signature("sig-fail")
        assert outcome == EventOutcome.FAILED
        assert trade.status == TradeStatus.FAILED
        assert trade.confirmed_at is not None
        assert notifications.calls == []
        assert await notifications_for("sig-fail") == []

    async def test_terminal_status_is_final(self, processor, add_trade):
        """A later success event cannot flip a failed trade."""
        await add_trade("buyer", "sig-x")

        await processor.process_event(raw_tx("sig-x", err="boom"))
        outcome = await processor.process_event(raw_tx("sig-x"))

        assert outcome == EventOutcome.SKIPPED
        assert (await get_trade_by_signature("sig-x")).status == TradeStatus.FAILED

    async def test_unknown_signature(self, processor, creator_token):
        """Untracked signatures are skipped without error."""
        assert await processor.process_event(raw_tx("not-ours")) == EventOutcome.SKIPPED
        assert await get_trade_by_signature("not-ours") is None

    async def test_sell_uses_sell_copy(self, processor, add_trade):
        await add_trade("holder-a", "hold-a", status=TradeStatus.CONFIRMED)
        await add_trade("seller", "sig-sell", trade_type=TradeType.SELL)

        await processor.process_event(enhanced_tx("sig-sell"))

        rows = await notifications_for("sig-sell")
        assert [(n.user_id, n.type, n.title) for n in rows] == [("holder-a", "trade_sell", "Token sold")]

    async def test_fan_out_error_keeps_transition(self, database, add_trade, clock):
        """A fan-out failure is logged; the trade stays confirmed."""
        failing = SpyNotifications(fail=True)
        processor = TradeConfirmationProcessor(failing, clock=clock)
        await add_trade("buyer", "sig123")

        outcome = await processor.process_event(raw_tx("sig123"))

        assert outcome == EventOutcome.CONFIRMED
        assert (await get_trade_by_signature("sig123")).status == TradeStatus.CONFIRMED
        assert failing.calls == ["sig123"]
        assert await notification_count() == 0


class TestProcessBatch:
    """Test batch isolation and counters."""

    async def test_bad_events_do_not_block_others(self, processor, add_trade):
        """Malformed entries are dropped; the rest are processed."""
        await add_trade("buyer-1", "sig-1")
        await add_trade("buyer-2", "sig-2")

        result = await processor.process_batch([
            {"meta": {"err": None}},
            raw_tx("sig-1"),
            "garbage",
            enhanced_tx("sig-2", err="fail"),
            raw_tx("unknown"),
        ])

        assert result.received == 5
        assert result.malformed == 2
        assert result.confirmed == 1
        assert result.failed == 1
        assert result.skipped == 1
        assert result.errors == 0
        assert result.outcomes == [
            EventOutcome.MALFORMED,
            EventOutcome.CONFIRMED,
            EventOutcome.MALFORMED,
            EventOutcome.FAILED,
            EventOutcome.SKIPPED,
        ]
        assert (await get_trade_by_signature("sig-1")).status == TradeStatus.CONFIRMED
        assert (await get_trade_by_signature("sig-2")).status == TradeStatus.FAILED

    async def test_unexpected_error_is_isolated(self, processor, add_trade, monkeypatch):
        """An exception on one event is counted and the batch continues."""
        await add_trade("buyer", "sig-ok")
        original = processor.process_event

        async def flaky(payload):
            if payload.get("signature") == "explode":
                raise RuntimeError("database hiccup")
            return await original(payload)

        monkeypatch.setattr(processor, "process_event", flaky)

        result = await processor.process_batch([{"signature": "explode"}, raw_tx("sig-ok")])

        assert result.errors == 1
        assert result.confirmed == 1

    async def test_empty_batch(self, processor):
        result = await processor.process_batch([])
        assert result.received == 0
        assert result.outcomes == []
