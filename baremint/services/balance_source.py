"""
Balance source adapter over Solana RPC.

Token balances for gating come from Helius JSON-RPC (getTokenAccountsByOwner,
jsonParsed) and fail loudly. SOL balances for display come from the Solana RPC
client and degrade to zero.
"""

from decimal import Decimal
from typing import Any, Optional

import httpx
from solana.rpc.async_api import AsyncClient as SolanaClient
from solana.rpc.commitment import Confirmed
from solders.pubkey import Pubkey

from baremint.config import Settings
from baremint.errors import ConfigurationError, ExternalServiceError
from baremint.utils.logging import LoggerMixin

LAMPORTS_PER_SOL = 1_000_000_000

SERVICE_NAME = "helius"


def lamports_to_sol(lamports: int) -> Decimal:
    """Convert lamports to SOL for display."""
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def _sum_token_accounts(accounts: list[Any]) -> int:
    """Sum raw amounts over every token account returned for the mint."""
    total = 0
    for account in accounts:
        try:
            amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]["amount"]
        except (KeyError, TypeError):
            continue
        if not amount:
            continue
        # Raw amounts are integer strings; floats would lose precision
        if isinstance(amount, bool) or not isinstance(amount, (str, int)):
            raise ExternalServiceError("RPC response has unexpected shape", SERVICE_NAME)
        try:
            total += int(amount)
        except ValueError as e:
            raise ExternalServiceError("RPC response has unexpected shape", SERVICE_NAME) from e
    return total


class BalanceSourceAdapter(LoggerMixin):
    """Queries the chain indexer for wallet holdings."""

    def __init__(
        self,
        rpc_url: Optional[str],
        solana_rpc_url: str = "https://api.devnet.solana.com",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
        solana_client: Optional[SolanaClient] = None,
    ):
        self._rpc_url = rpc_url
        self._solana_rpc_url = solana_rpc_url
        self._timeout = timeout
        self._http_client = http_client
        self._solana_client = solana_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "BalanceSourceAdapter":
        return cls(
            rpc_url=settings.helius_rpc_url,
            solana_rpc_url=settings.solana_rpc_url,
            timeout=settings.balance_rpc_timeout_seconds,
        )

    async def close(self) -> None:
        """Close HTTP and RPC clients."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        if self._solana_client:
            await self._solana_client.close()
            self._solana_client = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _get_solana_client(self) -> SolanaClient:
        if self._solana_client is None:
            self._solana_client = SolanaClient(self._solana_rpc_url, timeout=self._timeout)
        return self._solana_client

    # ===================
    # Token Balances (gating path)
    # ===================

    async def get_token_balance(self, wallet_address: str, mint_address: str) -> int:
        """
        Get the raw token amount a wallet holds of a mint.

        Returns 0 when the wallet has no token account for the mint.

        Raises:
            ConfigurationError: HELIUS_RPC_URL is not set
            ExternalServiceError: timeout, non-2xx response or RPC error
        """
        if not self._rpc_url:
            raise ConfigurationError(
                "HELIUS_RPC_URL is not configured. Set HELIUS_RPC_URL environment variable."
            )

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTokenAccountsByOwner",
            "params": [
                wallet_address,
                {"mint": mint_address},
                {"encoding": "jsonParsed"},
            ],
        }

        client = self._get_http_client()
        try:
            response = await client.post(self._rpc_url, json=payload, timeout=self._timeout)
        except httpx.TimeoutException as e:
            self.log.warning("Balance RPC timed out", wallet=wallet_address, mint=mint_address)
            raise ExternalServiceError("RPC request timed out", SERVICE_NAME) from e
        except httpx.HTTPError as e:
            self.log.warning("Balance RPC transport error", wallet=wallet_address, error=str(e))
            raise ExternalServiceError(f"RPC transport error: {e}", SERVICE_NAME) from e

        if response.status_code != 200:
            raise ExternalServiceError(
                f"RPC request failed: {response.status_code} {response.reason_phrase}",
                SERVICE_NAME,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError("RPC response is not valid JSON", SERVICE_NAME) from e

        if not isinstance(body, dict):
            raise ExternalServiceError("RPC response has unexpected shape", SERVICE_NAME)

        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            raise ExternalServiceError(f"RPC error: {message or error}", SERVICE_NAME)

        result = body.get("result")
        if not isinstance(result, dict):
            raise ExternalServiceError("RPC response missing result", SERVICE_NAME)

        accounts = result.get("value") or []
        return _sum_token_accounts(accounts)

    # ===================
    # SOL Balance (display path)
    # ===================

    async def get_sol_balance(self, wallet_address: str) -> int:
        """Get SOL balance in lamports. Returns 0 on any failure."""
        try:
            pubkey = Pubkey.from_string(wallet_address)
            response = await self._get_solana_client().get_balance(pubkey, commitment=Confirmed)
            return int(response.value)
        except Exception as e:
            self.log.warning("Failed to fetch SOL balance", wallet=wallet_address, error=str(e))
            return 0
