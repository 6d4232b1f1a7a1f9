"""Central Enum definitions for core domain states.

These replace scattered string literals so the ledger, the request store and
the HTTP schemas agree on the same values.
"""
from __future__ import annotations
import enum


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ChainSymbol(str, enum.Enum):
    BTC = "btc"
    ETH = "eth"
    SOL = "sol"
    USDT = "usdt"


class JobEventKind(str, enum.Enum):
    START = "start"
    COMPLETE = "complete"
    ERROR = "error"


class PostKind(str, enum.Enum):
    MENTION = "mention"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PAYMENT_RECOVERY = "payment_recovery"
    IGNORED = "ignored"

__all__ = [
    "PaymentStatus",
    "ChainSymbol",
    "JobEventKind",
    "PostKind",
]
