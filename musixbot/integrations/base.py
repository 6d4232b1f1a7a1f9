"""Narrow interfaces to the collaborators the orchestration core depends on."""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional


class ChainVerifier(ABC):
    @abstractmethod
    async def verify_by_proof(self, proof: str, expected_address: str, expected_amount: Decimal) -> bool:
        """Check that transaction ``proof`` paid ``expected_amount`` (USD) to ``expected_address``.

        Raises TransportError when the chain cannot be queried.
        """
        pass

    @abstractmethod
    async def verify_by_balance_delta(self, address: str, expected_amount: Decimal) -> bool:
        """Check that ``address`` grew by at least ``expected_amount`` (USD) since the last baseline."""
        pass


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        pass


class SocialClient(ABC):
    @abstractmethod
    async def reply(self, post_id: str, text: str) -> None:
        pass

    @abstractmethod
    async def reply_with_media(self, post_id: str, text: str, media_ref: str) -> None:
        pass


class GenerationProvider(ABC):
    @abstractmethod
    async def generate(self, prompt: str, duration_seconds: int) -> str:
        """Produce a clip for ``prompt`` and return a reference (URL or path) to the media."""
        pass


__all__ = ["ChainVerifier", "KeyValueStore", "SocialClient", "GenerationProvider"]
