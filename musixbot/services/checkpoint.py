"""Periodic snapshot / restart recovery of in-flight work.

A checkpoint holds every request whose payment is still pending plus the
pending payments themselves. It is written as JSON bytes under a single key
of the KeyValueStore, replacing the previous snapshot.

Neither direction raises: a failed save is logged and retried on the next
interval, and recovery treats a missing or undecodable snapshot as a fresh
start. Individual items that fail to restore are logged and skipped.
"""
from __future__ import annotations

import json
import time
from typing import Optional

from musixbot.config import CHECKPOINT_SETTINGS
from musixbot.integrations.base import KeyValueStore
from musixbot.models.schemas.checkpoint import Checkpoint, RecoveryReport
from musixbot.models.schemas.payments import PaymentRequest
from musixbot.models.schemas.requests import StoredRequest
from musixbot.services.payment_ledger import PaymentLedger
from musixbot.services.request_store import RequestStore
from musixbot.utils.logger import StructuredLogger, get_logger, log_business_event
from musixbot.utils.time import Clock


def _item_ref(item: object, field: str) -> str:
    if isinstance(item, dict):
        return str(item.get(field, "?"))
    return "?"


class CheckpointManager:
    def __init__(
        self,
        kv_store: KeyValueStore,
        store: RequestStore,
        ledger: Optional[PaymentLedger] = None,
        *,
        key: Optional[str] = None,
        clock: Clock = time.time,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.kv_store = kv_store
        self.store = store
        self.ledger = ledger
        self.key = str(key or CHECKPOINT_SETTINGS["key"])
        self._clock = clock
        self.logger = logger or get_logger(__name__)
        self.last_checkpoint_at: Optional[float] = None

    def build_checkpoint(self) -> Checkpoint:
        return Checkpoint(
            timestamp=self._clock(),
            pending_requests=self.store.get_pending_requests(),
            pending_payments=self.store.get_pending_payments(),
        )

    async def save_checkpoint(self) -> bool:
        try:
            checkpoint = self.build_checkpoint()
            await self.kv_store.set(self.key, checkpoint.model_dump_json().encode("utf-8"))
        except Exception as e:
            self.logger.error("Failed to save checkpoint", error=str(e), error_type=type(e).__name__)
            return False
        self.last_checkpoint_at = checkpoint.timestamp
        self.logger.info(
            "Checkpoint saved",
            requests=len(checkpoint.pending_requests),
            payments=len(checkpoint.pending_payments),
        )
        return True

    async def recover_from_last_checkpoint(self) -> RecoveryReport:
        report = RecoveryReport()
        try:
            raw = await self.kv_store.get(self.key)
        except Exception as e:
            self.logger.error("Failed to read checkpoint, starting fresh", error=str(e))
            return report
        if raw is None:
            self.logger.info("No checkpoint found, starting fresh")
            return report

        try:
            data = json.loads(raw)
            checkpoint_at = float(data["timestamp"])
            raw_requests = list(data.get("pending_requests") or [])
            raw_payments = list(data.get("pending_payments") or [])
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            self.logger.error("Checkpoint could not be decoded, starting fresh", error=str(e))
            return report

        for item in raw_requests:
            try:
                request = StoredRequest.model_validate(item)
                self.store.put(request)
                if self.ledger is not None:
                    self.ledger.restore_payment(request.payment)
                report.requests += 1
            except Exception as e:
                report.failures += 1
                self.logger.error("Failed to recover request", item=_item_ref(item, "correlation_id"), error=str(e))

        for item in raw_payments:
            try:
                payment = PaymentRequest.model_validate(item)
                if self.ledger is not None:
                    self.ledger.restore_payment(payment)
                self.store.update_payment_status(payment.order_id, payment.status)
                report.payments += 1
            except Exception as e:
                report.failures += 1
                self.logger.error("Failed to recover payment", item=_item_ref(item, "order_id"), error=str(e))

        self.logger.info(
            "System recovered from checkpoint",
            checkpoint_at=checkpoint_at,
            requests=report.requests,
            payments=report.payments,
            failures=report.failures,
        )
        log_business_event("checkpoint_recovered", report.model_dump())
        return report

    def snapshot(self) -> dict:
        return {"key": self.key, "last_checkpoint_at": self.last_checkpoint_at}


__all__ = ["CheckpointManager"]
