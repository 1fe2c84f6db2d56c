"""
Trade confirmation processing for Helius webhook deliveries.

Deliveries are at-least-once, unordered and may reference trades we do not
track. Each trade advances pending -> confirmed|failed through one conditional
UPDATE; only the delivery that moves the row fans out notifications.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from baremint.db.database import get_pending_trade, transition_pending_trade, utc_now
from baremint.db.models import TradeStatus
from baremint.errors import MalformedInputError
from baremint.services.notifications import NotificationService
from baremint.utils.logging import LoggerMixin


class PayloadShape(str, Enum):
    """Known webhook transaction shapes."""
    RAW = "raw"            # transaction.signatures[0]
    ENHANCED = "enhanced"  # top-level signature


class EventOutcome(str, Enum):
    """What processing one event did."""
    CONFIRMED = "confirmed"
    FAILED = "failed"
    SKIPPED = "skipped"
    MALFORMED = "malformed"
    ERROR = "error"


@dataclass(frozen=True)
class ConfirmationEvent:
    """A transaction notification resolved at ingestion."""
    shape: PayloadShape
    signature: str
    succeeded: bool

    @property
    def target_status(self) -> TradeStatus:
        return TradeStatus.CONFIRMED if self.succeeded else TradeStatus.FAILED


@dataclass
class BatchResult:
    """
    Per-batch counters, reported through logs only.

    outcomes keeps one entry per event for diagnostics; it is never logged.
    """
    received: int = 0
    confirmed: int = 0
    failed: int = 0
    skipped: int = 0
    malformed: int = 0
    errors: int = 0
    outcomes: list[EventOutcome] = field(default_factory=list)

    def record(self, outcome: EventOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome == EventOutcome.CONFIRMED:
            self.confirmed += 1
        elif outcome == EventOutcome.FAILED:
            self.failed += 1
        elif outcome == EventOutcome.SKIPPED:
            self.skipped += 1
        elif outcome == EventOutcome.MALFORMED:
            self.malformed += 1
        else:
            self.errors += 1


def _raw_signature(payload: dict[str, Any]) -> Optional[str]:
    inner = payload.get("transaction")
    if not isinstance(inner, dict):
        return None
    signatures = inner.get("signatures")
    if isinstance(signatures, list) and signatures and signatures[0]:
        return str(signatures[0])
    return None


def _enhanced_signature(payload: dict[str, Any]) -> Optional[str]:
    signature = payload.get("signature")
    if isinstance(signature, str) and signature:
        return signature
    return None


def _succeeded(payload: dict[str, Any]) -> bool:
    """meta.err null or absent means success."""
    meta = payload.get("meta")
    if not isinstance(meta, dict):
        return True
    return meta.get("err") is None


def parse_event(payload: Any) -> ConfirmationEvent:
    """
    Resolve a webhook transaction object into a ConfirmationEvent.

    The raw shape is tried first, then the enhanced shape.

    Raises:
        MalformedInputError: not an object, or no signature in any known shape
    """
    if not isinstance(payload, dict):
        raise MalformedInputError("Transaction payload is not an object")

    signature = _raw_signature(payload)
    if signature:
        return ConfirmationEvent(PayloadShape.RAW, signature, _succeeded(payload))

    signature = _enhanced_signature(payload)
    if signature:
        return ConfirmationEvent(PayloadShape.ENHANCED, signature, _succeeded(payload))

    raise MalformedInputError("Transaction missing signature")


class TradeConfirmationProcessor(LoggerMixin):
    """Applies confirmation events to the trade ledger idempotently."""

    def __init__(
        self,
        notifications: NotificationService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._notifications = notifications
        self._clock = clock

    async def process_batch(self, payloads: list[Any]) -> BatchResult:
        """Process every event; a failure on one never stops the others."""
        result = BatchResult(received=len(payloads))

        for index, payload in enumerate(payloads):
            try:
                outcome = await self.process_event(payload)
            except MalformedInputError as e:
                self.log.warning("Dropping webhook transaction", index=index, reason=e.message)
                outcome = EventOutcome.MALFORMED
            except Exception:
                self.log.exception("Webhook transaction processing failed", index=index)
                outcome = EventOutcome.ERROR
            result.record(outcome)

        self.log.info(
            "Webhook batch processed",
            received=result.received,
            confirmed=result.confirmed,
            failed=result.failed,
            skipped=result.skipped,
            malformed=result.malformed,
            errors=result.errors,
        )
        return result

    async def process_event(self, payload: Any) -> EventOutcome:
        """Apply one transaction notification."""
        event = parse_event(payload)

        trade = await get_pending_trade(event.signature)
        if trade is None:
            # Untracked, or already terminal from an earlier delivery
            self.log.debug("No pending trade for signature", signature=event.signature)
            return EventOutcome.SKIPPED

        status = event.target_status
        moved = await transition_pending_trade(event.signature, status, self._clock())
        if not moved:
            self.log.debug("Trade already advanced by another delivery", signature=event.signature)
            return EventOutcome.SKIPPED

        self.log.info(
            "Trade status updated",
            signature=event.signature,
            status=status.value,
            shape=event.shape.value,
        )

        if status != TradeStatus.CONFIRMED:
            return EventOutcome.FAILED

        try:
            await self._notifications.notify_trade_confirmed(
                mint_address=trade.mint_address,
                trade_type=trade.type,
                actor_user_id=trade.user_id,
                tx_signature=trade.tx_signature,
            )
        except Exception:
            self.log.exception("Notification fan-out error", signature=event.signature)

        return EventOutcome.CONFIRMED
