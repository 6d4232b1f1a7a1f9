"""Payment ledger: order lifecycle and verification bookkeeping.

State machine (per order):

    pending --verify ok--------------------> completed   (terminal)
    pending --expired / attempts exhausted-> failed
    failed  --retry_failed_payment---------> pending     (attempts reset to 0)

``verify_payment`` never raises for verifier problems: a negative answer or a
transport error both count as one failed attempt and are kept in the
per-order failure record (``get_failed_payments``). Only an unknown order id
raises (``NotFoundError``).

Every status change is pushed to the RequestStore so correlation lookups see
the same state as the ledger.
"""
from __future__ import annotations

import time
from decimal import Decimal
from typing import Dict, List, Optional

from musixbot.config import PAYMENT_SETTINGS, STORAGE_SETTINGS
from musixbot.errors import NotFoundError, PaymentExpiredError, VerificationFailedError
from musixbot.integrations.base import ChainVerifier
from musixbot.models.enums import ChainSymbol, PaymentStatus
from musixbot.models.schemas.payments import PaymentFailure, PaymentRequest
from musixbot.services.request_store import RequestStore
from musixbot.utils.logger import StructuredLogger, get_logger, log_business_event
from musixbot.utils.time import Clock, epoch_ms


class PaymentLedger:
    def __init__(
        self,
        verifier: ChainVerifier,
        store: Optional[RequestStore] = None,
        *,
        amount_usd: Optional[Decimal] = None,
        wallet_addresses: Optional[Dict[str, str]] = None,
        max_verification_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        clock: Clock = time.time,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.verifier = verifier
        self.store = store
        self.amount = Decimal(amount_usd if amount_usd is not None else PAYMENT_SETTINGS["amount_usd"])  # type: ignore[arg-type]
        self.wallet_addresses: Dict[str, str] = dict(wallet_addresses or PAYMENT_SETTINGS["wallet_addresses"])  # type: ignore[arg-type]
        self.max_verification_seconds = float(
            max_verification_seconds if max_verification_seconds is not None
            else PAYMENT_SETTINGS["max_verification_seconds"]  # type: ignore[arg-type]
        )
        self.max_attempts = int(max_attempts if max_attempts is not None else PAYMENT_SETTINGS["max_attempts"])  # type: ignore[arg-type]
        self._clock = clock
        self.logger = logger or get_logger(__name__)
        self._payments: Dict[str, PaymentRequest] = {}
        self._failures: Dict[str, PaymentFailure] = {}

    # ----------------------------- creation ----------------------------- #
    def _new_order_id(self, user_id: str, now: float) -> str:
        ms = epoch_ms(now)
        suffix = user_id[-4:]
        order_id = f"PAY-{ms}-{suffix}"
        while order_id in self._payments:
            ms += 1
            order_id = f"PAY-{ms}-{suffix}"
        return order_id

    def create_payment_request(self, user_id: str, correlation_id: str) -> PaymentRequest:
        now = self._clock()
        payment = PaymentRequest(
            order_id=self._new_order_id(user_id, now),
            user_id=user_id,
            correlation_id=correlation_id,
            amount=self.amount,
            destination_addresses=dict(self.wallet_addresses),
            status=PaymentStatus.PENDING,
            created_at=now,
            verification_attempts=0,
        )
        self._payments[payment.order_id] = payment
        self.logger.info("Payment request created", order_id=payment.order_id, correlation_id=correlation_id)
        log_business_event(
            "payment_created",
            {"order_id": payment.order_id, "amount_usd": str(payment.amount)},
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return payment

    # ----------------------------- verification ----------------------------- #
    def has_expired(self, payment: PaymentRequest) -> bool:
        return self._clock() - payment.created_at > self.max_verification_seconds

    async def verify_payment(self, order_id: str, proof: Optional[str] = None) -> bool:
        payment = self._payments.get(order_id)
        if payment is None:
            raise NotFoundError(f"Payment not found: {order_id}")

        if payment.status == PaymentStatus.COMPLETED:
            return True
        if payment.status == PaymentStatus.FAILED:
            self.logger.debug("Verification skipped for failed payment", order_id=order_id)
            return False

        if self.has_expired(payment):
            self._record_failure(payment, PaymentExpiredError(f"Payment expired: {order_id}"))
            self._transition(payment, PaymentStatus.FAILED)
            self.logger.warning("Payment expired", order_id=order_id)
            return False

        if payment.verification_attempts >= self.max_attempts:
            self._transition(payment, PaymentStatus.FAILED)
            self.logger.error("Max verification attempts exceeded", order_id=order_id)
            return False

        eth_address = payment.destination_addresses.get(ChainSymbol.ETH.value, "")
        error: Optional[BaseException] = None
        try:
            if proof:
                verified = await self.verifier.verify_by_proof(proof, eth_address, payment.amount)
            else:
                verified = await self.verifier.verify_by_balance_delta(eth_address, payment.amount)
        except Exception as e:
            verified = False
            error = e

        if verified:
            self._failures.pop(order_id, None)
            self._transition(payment, PaymentStatus.COMPLETED)
            self.logger.info("Payment completed", order_id=order_id, by_proof=bool(proof))
            log_business_event(
                "payment_completed",
                {"order_id": order_id, "attempts": payment.verification_attempts + 1},
                user_id=payment.user_id,
                correlation_id=payment.correlation_id,
            )
            return True

        payment.verification_attempts += 1
        failure = self._record_failure(payment, error or VerificationFailedError("Payment verification failed"))
        self.logger.warning(
            "Payment verification failed",
            order_id=order_id,
            attempts=payment.verification_attempts,
            error=failure.error,
        )
        if payment.verification_attempts >= self.max_attempts:
            self._transition(payment, PaymentStatus.FAILED)
            self.logger.error("Max verification attempts exceeded", order_id=order_id)
        elif self.store is not None:
            self.store.sync_payment(payment)
        return False

    async def retry_failed_payment(self, order_id: str) -> bool:
        """Manual recovery: reset the attempt budget and verify again.

        Only orders with a failure record qualify. Expired orders go straight
        back to failed on the following verification.
        """
        failure = self._failures.get(order_id)
        payment = self._payments.get(order_id)
        if failure is None or payment is None:
            self.logger.warning("No failed payment found for retry", order_id=order_id)
            return False

        failure.attempts = 0
        payment.verification_attempts = 0
        if payment.status == PaymentStatus.FAILED:
            self._transition(payment, PaymentStatus.PENDING)
        elif self.store is not None:
            self.store.sync_payment(payment)
        self.logger.info("Retrying failed payment", order_id=order_id)
        return await self.verify_payment(order_id)

    # ----------------------------- queries ----------------------------- #
    def get_payment(self, order_id: str) -> Optional[PaymentRequest]:
        return self._payments.get(order_id)

    def get_payment_status(self, order_id: str) -> str:
        payment = self._payments.get(order_id)
        return payment.status.value if payment else "not_found"

    def get_failure(self, order_id: str) -> Optional[PaymentFailure]:
        return self._failures.get(order_id)

    def get_failed_payments(self) -> List[PaymentFailure]:
        return list(self._failures.values())

    def get_pending_payments(self) -> List[PaymentRequest]:
        return [p for p in self._payments.values() if p.status == PaymentStatus.PENDING]

    def restore_payment(self, payment: PaymentRequest) -> bool:
        """Re-register a payment loaded from a checkpoint. Completed records are never overwritten."""
        existing = self._payments.get(payment.order_id)
        if existing is not None and existing.status == PaymentStatus.COMPLETED:
            return False
        self._payments[payment.order_id] = payment.model_copy()
        return True

    def cleanup(self, retention_seconds: Optional[float] = None) -> List[str]:
        """Purge payments (and their failure records) older than the retention window.

        Returns the purged order ids.
        """
        retention = float(
            retention_seconds if retention_seconds is not None else STORAGE_SETTINGS["retention_seconds"]
        )
        now = self._clock()
        purged = [oid for oid, p in self._payments.items() if now - p.created_at > retention]
        for order_id in purged:
            del self._payments[order_id]
            self._failures.pop(order_id, None)
        if purged:
            self.logger.info("Old payments purged", removed=len(purged), remaining=len(self._payments))
        return purged

    def snapshot(self) -> dict:
        statuses: Dict[str, int] = {}
        for payment in self._payments.values():
            statuses[payment.status.value] = statuses.get(payment.status.value, 0) + 1
        return {"payments": len(self._payments), "by_status": statuses, "failure_records": len(self._failures)}

    # ----------------------------- internals ----------------------------- #
    def _record_failure(self, payment: PaymentRequest, error: BaseException) -> PaymentFailure:
        failure = PaymentFailure(
            order_id=payment.order_id,
            error=str(error),
            error_type=type(error).__name__,
            attempts=payment.verification_attempts,
            last_attempt_at=self._clock(),
        )
        self._failures[payment.order_id] = failure
        return failure

    def _transition(self, payment: PaymentRequest, status: PaymentStatus) -> None:
        previous = payment.status
        payment.status = status
        if status == PaymentStatus.PENDING:
            payment.verification_attempts = 0
        if self.store is not None:
            self.store.update_payment_status(payment.order_id, status)
            self.store.sync_payment(payment)
        if status == PaymentStatus.FAILED and previous != PaymentStatus.FAILED:
            log_business_event(
                "payment_failed",
                {"order_id": payment.order_id, "attempts": payment.verification_attempts},
                user_id=payment.user_id,
                correlation_id=payment.correlation_id,
            )


__all__ = ["PaymentLedger"]
