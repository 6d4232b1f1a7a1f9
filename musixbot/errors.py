"""Error taxonomy shared by the orchestration components."""
from __future__ import annotations


class MusixBotError(Exception):
    """Base class for all domain errors raised by the bot core."""


class NotFoundError(MusixBotError):
    """Unknown order id, job id or correlation id."""


class BusyError(MusixBotError):
    """Re-entrant invocation of a job that is already running."""


class PaymentExpiredError(MusixBotError):
    """Payment is past its verification window."""


class VerificationFailedError(MusixBotError):
    """On-chain check came back negative."""


class TransportError(MusixBotError):
    """An external capability (RPC, storage, provider) failed to answer."""


class ConditionNotMetError(MusixBotError):
    """Operation succeeded structurally but its result never satisfied the condition."""

    def __init__(self, message: str = "Condition not met after all attempts"):
        super().__init__(message)


__all__ = [
    "MusixBotError",
    "NotFoundError",
    "BusyError",
    "PaymentExpiredError",
    "VerificationFailedError",
    "TransportError",
    "ConditionNotMetError",
]
