"""In-memory correlation store: social post id -> (user, prompt, payment).

Payments are copied into the store on ``store_request``; afterwards the
stored copy is kept in step with the ledger through
``update_payment_status`` (a linear scan keyed by order id; the store is
small and bounded by ``cleanup``).

Durations:
  staleness  - a pending request older than this is reported by
               ``get_expired_requests`` (default 1 hour)
  retention  - any request older than this is purged by ``cleanup``
               regardless of payment status (default 2 days)
"""
from __future__ import annotations

import time
from typing import Dict, List, Optional

from musixbot.config import STORAGE_SETTINGS
from musixbot.models.enums import PaymentStatus
from musixbot.models.schemas.payments import PaymentRequest
from musixbot.models.schemas.requests import StoredRequest
from musixbot.utils.logger import StructuredLogger, get_logger
from musixbot.utils.time import Clock


class RequestStore:
    def __init__(
        self,
        *,
        staleness_seconds: Optional[float] = None,
        retention_seconds: Optional[float] = None,
        clock: Clock = time.time,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.staleness_seconds = float(staleness_seconds if staleness_seconds is not None else STORAGE_SETTINGS["staleness_seconds"])
        self.retention_seconds = float(retention_seconds if retention_seconds is not None else STORAGE_SETTINGS["retention_seconds"])
        self._clock = clock
        self.logger = logger or get_logger(__name__)
        self._requests: Dict[str, StoredRequest] = {}

    def store_request(
        self,
        correlation_id: str,
        user_id: str,
        prompt: str,
        payment: PaymentRequest,
        *,
        created_at: Optional[float] = None,
    ) -> StoredRequest:
        request = StoredRequest(
            correlation_id=correlation_id,
            user_id=user_id,
            prompt=prompt,
            payment=payment.model_copy(),
            created_at=created_at if created_at is not None else self._clock(),
        )
        self._requests[correlation_id] = request
        self.logger.debug("Request stored", correlation_id=correlation_id, order_id=payment.order_id)
        return request

    def put(self, request: StoredRequest) -> None:
        """Insert an already-built request as-is (checkpoint recovery)."""
        self._requests[request.correlation_id] = request

    def get_request(self, correlation_id: str) -> Optional[StoredRequest]:
        return self._requests.get(correlation_id)

    def find_by_order_id(self, order_id: str) -> Optional[StoredRequest]:
        for request in self._requests.values():
            if request.payment.order_id == order_id:
                return request
        return None

    def update_payment_status(self, order_id: str, status: PaymentStatus) -> bool:
        request = self.find_by_order_id(order_id)
        if request is None:
            self.logger.debug("No stored request for order", order_id=order_id)
            return False
        request.payment.status = status
        return True

    def sync_payment(self, payment: PaymentRequest) -> bool:
        """Copy status and attempt count from the ledger's record."""
        request = self.find_by_order_id(payment.order_id)
        if request is None:
            return False
        request.payment.status = payment.status
        request.payment.verification_attempts = payment.verification_attempts
        return True

    def get_pending_requests(self) -> List[StoredRequest]:
        return [r for r in self._requests.values() if r.payment.status == PaymentStatus.PENDING]

    def get_pending_payments(self) -> List[PaymentRequest]:
        return [r.payment for r in self.get_pending_requests()]

    def get_expired_requests(self) -> List[StoredRequest]:
        now = self._clock()
        return [
            r for r in self._requests.values()
            if r.payment.status == PaymentStatus.PENDING and now - r.created_at > self.staleness_seconds
        ]

    def mark_expired(self, correlation_id: str) -> bool:
        request = self._requests.get(correlation_id)
        if request is None:
            return False
        request.expired = True
        return True

    def cleanup(self) -> int:
        now = self._clock()
        stale = [cid for cid, r in self._requests.items() if now - r.created_at > self.retention_seconds]
        for cid in stale:
            del self._requests[cid]
        if stale:
            self.logger.info("Old requests purged", removed=len(stale), remaining=len(self._requests))
        return len(stale)

    def __len__(self) -> int:
        return len(self._requests)

    def snapshot(self) -> dict:
        statuses: Dict[str, int] = {}
        for request in self._requests.values():
            key = request.payment.status.value
            statuses[key] = statuses.get(key, 0) + 1
        return {"requests": len(self._requests), "by_status": statuses}


__all__ = ["RequestStore"]
