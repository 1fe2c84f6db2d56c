"""
Holder notification fan-out.

Notifications go to every distinct user with a confirmed buy of a token,
excluding the actor, capped at MAX_RECIPIENTS. Trade fan-out is deduplicated
by transaction signature. Delivery is best-effort.
"""

from typing import Optional

from baremint.db.database import (
    generate_id,
    get_creator_token_by_creator,
    get_holder_user_ids,
    insert_notifications,
    notification_exists_for_signature,
)
from baremint.db.models import NotificationType, TradeType
from baremint.utils.logging import LoggerMixin

MAX_RECIPIENTS = 1000

TRADE_NOTIFICATION_COPY = {
    TradeType.BUY: (NotificationType.TRADE_BUY, "New token purchase", "Someone bought tokens"),
    TradeType.SELL: (NotificationType.TRADE_SELL, "Token sold", "Someone sold tokens"),
}


def trade_link(mint_address: str) -> str:
    return f"/trade/{mint_address}"


class NotificationService(LoggerMixin):
    """Writes deduplicated notifications to token holders."""

    def __init__(self, max_recipients: int = MAX_RECIPIENTS):
        self.max_recipients = max_recipients

    async def notify_holders(
        self,
        mint_address: str,
        event_type: str,
        exclude_user_id: Optional[str],
        title: str,
        body: str,
        dedup_key: Optional[str] = None,
        link_url: Optional[str] = None,
    ) -> int:
        """
        Fan out one notification per holder of the mint.

        Args:
            mint_address: Token whose holders are notified
            event_type: Notification type stored on every row
            exclude_user_id: Actor who caused the event
            title: Notification title
            body: Notification body
            dedup_key: Triggering trade signature; skip everything if already used
            link_url: Target link (defaults to the token's trade page)

        Returns:
            Number of notifications written
        """
        if dedup_key and await notification_exists_for_signature(dedup_key):
            self.log.debug("Fan-out already done for signature", signature=dedup_key)
            return 0

        recipients = await get_holder_user_ids(
            mint_address,
            exclude_user_id=exclude_user_id,
            limit=self.max_recipients,
        )
        if not recipients:
            return 0

        link = link_url or trade_link(mint_address)
        rows = [
            {
                "id": generate_id(),
                "user_id": user_id,
                "type": event_type,
                "title": title,
                "body": body,
                "link_url": link,
                "related_mint_address": mint_address,
                "tx_signature": dedup_key,
                "is_read": False,
            }
            for user_id in recipients
        ]

        written = await insert_notifications(rows)

        if len(recipients) >= self.max_recipients:
            self.log.info("Fan-out hit recipient cap", mint=mint_address, cap=self.max_recipients)

        self.log.info(
            "Holder notifications written",
            mint=mint_address,
            type=event_type,
            count=written,
            signature=dedup_key,
        )
        return written

    async def notify_trade_confirmed(
        self,
        mint_address: str,
        trade_type: TradeType,
        actor_user_id: str,
        tx_signature: str,
    ) -> int:
        """Fan out the buy/sell notification for a confirmed trade."""
        event_type, title, body = TRADE_NOTIFICATION_COPY[TradeType(trade_type)]
        return await self.notify_holders(
            mint_address,
            event_type.value,
            actor_user_id,
            title,
            body,
            dedup_key=tx_signature,
        )

    async def notify_content_published(
        self,
        creator_user_id: str,
        title: str,
        body: str,
        link_url: str,
    ) -> int:
        """Notify holders of a creator's token about new content."""
        token = await get_creator_token_by_creator(creator_user_id)
        if token is None:
            self.log.debug("Creator has no token, skipping fan-out", creator_user_id=creator_user_id)
            return 0

        return await self.notify_holders(
            token.mint_address,
            NotificationType.NEW_CONTENT.value,
            creator_user_id,
            title,
            body,
            link_url=link_url,
        )
