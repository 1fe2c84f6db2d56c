"""
Content access evaluation for token-gated posts.
"""

from dataclasses import dataclass
from typing import Optional

from baremint.db.database import get_creator_token, has_content_unlock
from baremint.db.models import AccessLevel, Post
from baremint.services.token_cache import TokenBalanceCache
from baremint.utils.logging import LoggerMixin


@dataclass(frozen=True)
class PostAccessPolicy:
    """Access configuration of a post."""
    post_id: str
    access_level: AccessLevel
    token_threshold: Optional[str] = None  # raw token amount
    creator_token_id: Optional[str] = None

    @classmethod
    def from_post(cls, post: Post) -> "PostAccessPolicy":
        return cls(
            post_id=post.id,
            access_level=AccessLevel(post.access_level),
            token_threshold=post.token_threshold,
            creator_token_id=post.creator_token_id,
        )

    @property
    def threshold(self) -> int:
        """Threshold as an integer; absent means 0."""
        return int(self.token_threshold) if self.token_threshold else 0


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access check."""
    has_access: bool
    viewer_balance: str = "0"


class AccessEvaluator(LoggerMixin):
    """
    Decides whether a viewer may see a post.

    Rules, in order:
    - public posts are always visible
    - burn_gated posts with a permanent unlock for the viewer are visible
    - otherwise a wallet and a creator token are required, and the viewer's
      balance must be >= the threshold (integer comparison)

    Balance source failures propagate; they are never read as zero.
    """

    def __init__(self, balance_cache: TokenBalanceCache):
        self._balance_cache = balance_cache

    async def evaluate(
        self,
        policy: PostAccessPolicy,
        viewer_wallet: Optional[str] = None,
        viewer_user_id: Optional[str] = None,
    ) -> AccessDecision:
        if policy.access_level == AccessLevel.PUBLIC:
            return AccessDecision(has_access=True)

        if (
            policy.access_level == AccessLevel.BURN_GATED
            and viewer_user_id
            and await has_content_unlock(viewer_user_id, policy.post_id)
        ):
            return AccessDecision(has_access=True)

        if not viewer_wallet:
            return AccessDecision(has_access=False)

        # Gated post without a token should not exist
        if not policy.creator_token_id:
            self.log.warning("Gated post has no creator token", post_id=policy.post_id)
            return AccessDecision(has_access=False)

        token = await get_creator_token(policy.creator_token_id)
        if token is None:
            self.log.warning(
                "Creator token not found for gated post",
                post_id=policy.post_id,
                creator_token_id=policy.creator_token_id,
            )
            return AccessDecision(has_access=False)

        balance = await self._balance_cache.get(viewer_wallet, token.mint_address)

        return AccessDecision(
            has_access=balance >= policy.threshold,
            viewer_balance=str(balance),
        )
