"""Pytest fixtures and fakes.

External collaborators (chain, social platform, music provider) are replaced
by in-process fakes; time-dependent components get a ``FakeClock`` so expiry
and window tests never sleep.
"""
import asyncio
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

# Ensure project root on sys.path so 'musixbot' resolves when running from a checkout
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from musixbot.integrations.base import ChainVerifier, GenerationProvider, SocialClient  # noqa: E402
from musixbot.integrations.kv_store import InMemoryKeyValueStore  # noqa: E402
from musixbot.jobs.queue import TaskQueue  # noqa: E402
from musixbot.services.bot import MusixBot  # noqa: E402
from musixbot.utils.retry import RetryEngine, RetryOptions  # noqa: E402

ETH_WALLET = "0x00000000000000000000000000000000000000e1"
WALLETS = {"btc": "bc1-test", "eth": ETH_WALLET, "sol": "sol-test", "usdt": "usdt-test"}
START_TS = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = START_TS):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChainVerifier(ChainVerifier):
    """Answers from a script: ``True``/``False`` or an exception instance to raise."""

    def __init__(self, default: bool = False):
        self.default = default
        self.script: List[object] = []
        self.calls: List[Tuple[str, Optional[str]]] = []

    async def _answer(self) -> bool:
        result = self.script.pop(0) if self.script else self.default
        if isinstance(result, BaseException):
            raise result
        return bool(result)

    async def verify_by_proof(self, proof: str, expected_address: str, expected_amount: Decimal) -> bool:
        self.calls.append(("proof", proof))
        return await self._answer()

    async def verify_by_balance_delta(self, address: str, expected_amount: Decimal) -> bool:
        self.calls.append(("balance", None))
        return await self._answer()


class RecordingSocialClient(SocialClient):
    """Records replies; ``failures`` fails any call, ``media_failures`` only media posts."""

    def __init__(self, failures: int = 0, media_failures: int = 0):
        self.failures = failures
        self.media_failures = media_failures
        self.replies: List[Tuple[str, str]] = []
        self.media: List[Tuple[str, str, str]] = []

    def _maybe_fail(self) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("social platform unavailable")

    async def reply(self, post_id: str, text: str) -> None:
        self._maybe_fail()
        self.replies.append((post_id, text))

    async def reply_with_media(self, post_id: str, text: str, media_ref: str) -> None:
        self._maybe_fail()
        if self.media_failures > 0:
            self.media_failures -= 1
            raise ConnectionError("media upload failed")
        self.media.append((post_id, text, media_ref))

    def texts_for(self, post_id: str) -> List[str]:
        return [text for pid, text in self.replies if pid == post_id]


class FakeProvider(GenerationProvider):
    def __init__(self, media_ref: str = "https://cdn.test/clip.mp3", fail: bool = False):
        self.media_ref = media_ref
        self.fail = fail
        self.calls: List[Tuple[str, int]] = []

    async def generate(self, prompt: str, duration_seconds: int) -> str:
        self.calls.append((prompt, duration_seconds))
        if self.fail:
            raise RuntimeError("provider exploded")
        return self.media_ref


async def instant_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


def build_bot(
    *,
    clock: FakeClock,
    verifier: FakeChainVerifier,
    social: RecordingSocialClient,
    provider: FakeProvider,
    kv_store: Optional[InMemoryKeyValueStore] = None,
) -> MusixBot:
    bot = MusixBot(
        social=social,
        provider=provider,
        verifier=verifier,
        kv_store=kv_store or InMemoryKeyValueStore(),
        queue=TaskQueue(retry_delay_seconds=0, sleep=instant_sleep),
        retry_engine=RetryEngine(sleep=instant_sleep),
        social_retry=RetryOptions(max_attempts=3, delay=0.0, backoff=False),
        clock=clock,
    )
    bot.ledger.wallet_addresses = dict(WALLETS)
    return bot


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def verifier() -> FakeChainVerifier:
    return FakeChainVerifier()


@pytest.fixture()
def social() -> RecordingSocialClient:
    return RecordingSocialClient()


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def bot(clock, verifier, social, provider, kv_store) -> MusixBot:
    return build_bot(clock=clock, verifier=verifier, social=social, provider=provider, kv_store=kv_store)


@pytest.fixture()
def client(bot, monkeypatch):
    """TestClient whose lifespan starts the fake-wired bot instead of the configured adapters."""
    from fastapi.testclient import TestClient
    import musixbot.main as main_module

    async def _create_bot() -> MusixBot:
        return bot

    monkeypatch.setattr(main_module, "create_bot", _create_bot)
    with TestClient(main_module.app) as test_client:
        yield test_client
    main_module.app.state.bot = None  # type: ignore[attr-defined]
