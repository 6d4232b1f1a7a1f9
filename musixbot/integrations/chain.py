"""
Ethereum payment verification over plain JSON-RPC.

Two checks are supported:
- by proof: look up the transaction hash the user replied with and compare
  its recipient and value against the order.
- by balance delta: compare the wallet balance against the last observed
  baseline (kept in the KeyValueStore under ``balance_<address>``). The
  increase must match the order amount within the tolerance, surplus
  included. The first observation of a wallet only records the baseline.

Amounts on the order are USD; they are converted with a static ETH price
and matched within the configured relative tolerance.
"""
from decimal import Decimal
from typing import Any, Optional
import asyncio
import itertools
import aiohttp

from musixbot.config import CHAIN_SETTINGS, PAYMENT_SETTINGS
from musixbot.errors import TransportError
from musixbot.integrations.base import ChainVerifier, KeyValueStore
from musixbot.utils import get_logger
from musixbot.utils.metrics import usd_to_native, within_tolerance

WEI_PER_ETH = Decimal(10) ** 18


def wei_to_eth(value: Any) -> Decimal:
    """Convert a JSON-RPC quantity (hex string or int) in wei to ETH."""
    if isinstance(value, str):
        value = int(value, 16) if value.startswith("0x") else int(value)
    return Decimal(int(value)) / WEI_PER_ETH


class JsonRpcChainVerifier(ChainVerifier):
    """Ethereum verifier talking to any JSON-RPC endpoint (Infura, Alchemy, local node)."""

    def __init__(
        self,
        kv_store: KeyValueStore,
        *,
        rpc_url: Optional[str] = None,
        eth_price_usd: Optional[float] = None,
        tolerance_pct: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.kv_store = kv_store
        self.rpc_url = str(rpc_url if rpc_url is not None else CHAIN_SETTINGS["eth_rpc_url"])
        self.eth_price_usd = float(eth_price_usd if eth_price_usd is not None else CHAIN_SETTINGS["eth_price_usd"])  # type: ignore[arg-type]
        self.tolerance_pct = float(
            tolerance_pct if tolerance_pct is not None else PAYMENT_SETTINGS["amount_tolerance_pct"]  # type: ignore[arg-type]
        )
        self.timeout = aiohttp.ClientTimeout(
            total=float(timeout_seconds if timeout_seconds is not None else CHAIN_SETTINGS["rpc_timeout_seconds"])  # type: ignore[arg-type]
        )
        self._session = session
        self._ids = itertools.count(1)
        self.logger = get_logger("integration.chain")
        if not self.rpc_url:
            self.logger.warning("ETH_RPC_URL not configured; chain verification will fail")

    async def _rpc(self, method: str, params: list) -> Any:
        if not self.rpc_url:
            raise TransportError("ETH RPC endpoint not configured")

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        self.logger.debug("JSON-RPC request", method=method)
        try:
            if self._session is not None:
                async with self._session.post(self.rpc_url, json=payload, timeout=self.timeout) as response:
                    return self._unwrap(method, response.status, await response.json(content_type=None))
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.rpc_url, json=payload) as response:
                    return self._unwrap(method, response.status, await response.json(content_type=None))
        except aiohttp.ClientError as e:
            self.logger.error("JSON-RPC transport failure", method=method, error=str(e))
            raise TransportError(f"{method} failed: {e}") from e
        except asyncio.TimeoutError as e:
            self.logger.error("JSON-RPC timeout", method=method)
            raise TransportError(f"{method} timed out") from e

    def _unwrap(self, method: str, status: int, body: Any) -> Any:
        if status != 200:
            raise TransportError(f"{method} returned HTTP {status}")
        if not isinstance(body, dict):
            raise TransportError(f"{method} returned a malformed response")
        if body.get("error"):
            raise TransportError(f"{method} error: {body['error']}")
        return body.get("result")

    def expected_native(self, expected_amount: Decimal) -> float:
        return usd_to_native(expected_amount, self.eth_price_usd)

    async def verify_by_proof(self, proof: str, expected_address: str, expected_amount: Decimal) -> bool:
        tx = await self._rpc("eth_getTransactionByHash", [proof])
        if not tx:
            self.logger.info("Transaction not found", tx_hash=proof)
            return False

        recipient = (tx.get("to") or "").lower()
        if not expected_address or recipient != expected_address.lower():
            self.logger.info("Transaction recipient mismatch", tx_hash=proof, recipient=recipient)
            return False

        paid = wei_to_eth(tx.get("value", "0x0"))
        expected = self.expected_native(expected_amount)
        matched = within_tolerance(paid, expected, self.tolerance_pct)
        self.logger.info(
            "Transaction amount checked",
            tx_hash=proof,
            paid_eth=str(paid),
            expected_eth=round(expected, 8),
            matched=matched,
        )
        return matched

    async def verify_by_balance_delta(self, address: str, expected_amount: Decimal) -> bool:
        if not address:
            self.logger.warning("No ETH wallet configured for balance check")
            return False

        current = wei_to_eth(await self._rpc("eth_getBalance", [address, "latest"]))
        baseline_key = f"balance_{address}"
        stored = await self.kv_store.get(baseline_key)
        await self.kv_store.set(baseline_key, str(current).encode("utf-8"))
        if stored is None:
            self.logger.info("Balance baseline recorded", address=address, balance_eth=str(current))
            return False

        delta = current - Decimal(stored.decode("utf-8"))
        expected = self.expected_native(expected_amount)
        matched = within_tolerance(delta, expected, self.tolerance_pct)
        self.logger.debug(
            "Balance delta checked",
            address=address,
            delta_eth=str(delta),
            expected_eth=round(expected, 8),
            matched=matched,
        )
        return matched


__all__ = ["JsonRpcChainVerifier", "wei_to_eth"]
