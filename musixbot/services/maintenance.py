"""Recurring maintenance jobs registered on the bot's scheduler.

Job ids and default cadences (``SCHEDULER_JOBS`` / ``CHECKPOINT_SETTINGS``):

    storage-cleanup   1h    purge old requests and payments, drop expired rate windows
    payment-check     5m    re-verify every pending payment, deliver completed,
                            notify the user when an order fails
    request-expiry   15m    flag stale requests, re-verify, notify on failure
    checkpoint        5m    snapshot pending work to the key-value store
    health-check      5m    log component snapshots

Batch jobs isolate items: one failing payment or request is logged and the
loop moves on.
"""
from __future__ import annotations

import time
from typing import TYPE_CHECKING, Dict, Optional

from musixbot.config import CHECKPOINT_SETTINGS, SCHEDULER_JOBS
from musixbot.models.enums import PaymentStatus
from musixbot.utils.logger import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from musixbot.services.bot import MusixBot

logger = get_logger(__name__)


class MaintenanceTasks:
    def __init__(self, bot: "MusixBot", intervals: Optional[Dict[str, float]] = None) -> None:
        self.bot = bot
        self.intervals: Dict[str, float] = {
            **SCHEDULER_JOBS,
            "checkpoint": float(CHECKPOINT_SETTINGS["interval_seconds"]),  # type: ignore[arg-type]
            **(intervals or {}),
        }

    def register(self) -> None:
        scheduler = self.bot.scheduler
        scheduler.register_job("storage-cleanup", "Storage Cleanup", self.intervals["storage-cleanup"], self.cleanup)
        scheduler.register_job("payment-check", "Payment Check", self.intervals["payment-check"], self.check_pending_payments)
        scheduler.register_job("request-expiry", "Request Expiry Check", self.intervals["request-expiry"], self.check_expired_requests)
        scheduler.register_job("checkpoint", "Checkpoint", self.intervals["checkpoint"], self.save_checkpoint)
        scheduler.register_job("health-check", "Health Check", self.intervals["health-check"], self.health_check)

    async def cleanup(self) -> dict:
        removed_requests = self.bot.store.cleanup()
        removed_payments = self.bot.ledger.cleanup(self.bot.store.retention_seconds)
        removed_windows = self.bot.rate_limiter.cleanup()
        removed_tracking = self.bot.prune_tracking()
        logger.info(
            "Cleanup completed",
            removed_requests=removed_requests,
            removed_payments=len(removed_payments),
            removed_windows=removed_windows,
            removed_tracking=removed_tracking,
        )
        return {
            "requests": removed_requests,
            "payments": len(removed_payments),
            "rate_windows": removed_windows,
            "tracking": removed_tracking,
        }

    async def check_pending_payments(self) -> dict:
        checked = delivered = failed = errors = 0
        for payment in self.bot.ledger.get_pending_payments():
            checked += 1
            try:
                verified = await self.bot.ledger.verify_payment(payment.order_id)
                request = self.bot.store.find_by_order_id(payment.order_id)
                if request is None:
                    continue
                if verified:
                    if await self.bot.deliver(request, request.correlation_id):
                        delivered += 1
                elif self.bot.ledger.get_payment_status(payment.order_id) == PaymentStatus.FAILED.value:
                    # this check moved the order out of pending
                    await self.bot.notify_payment_failed(request)
                    failed += 1
            except Exception as e:
                errors += 1
                logger.error("Pending payment check failed", order_id=payment.order_id, error=str(e))
        logger.info("Pending payments checked", checked=checked, delivered=delivered, failed=failed, errors=errors)
        return {"checked": checked, "delivered": delivered, "failed": failed, "errors": errors}

    async def check_expired_requests(self) -> dict:
        expired = notified = errors = 0
        for request in self.bot.store.get_expired_requests():
            expired += 1
            order_id = request.payment.order_id
            try:
                self.bot.store.mark_expired(request.correlation_id)
                if await self.bot.ledger.verify_payment(order_id):
                    await self.bot.deliver(request, request.correlation_id)
                    continue
                if self.bot.ledger.get_payment_status(order_id) == PaymentStatus.FAILED.value:
                    await self.bot.notify_payment_failed(request)
                    notified += 1
            except Exception as e:
                errors += 1
                logger.error("Expired request handling failed", correlation_id=request.correlation_id, error=str(e))
        if expired:
            logger.info("Expired requests handled", expired=expired, notified=notified, errors=errors)
        return {"expired": expired, "notified": notified, "errors": errors}

    async def save_checkpoint(self) -> bool:
        return await self.bot.checkpoint.save_checkpoint()

    async def health_check(self) -> dict:
        started = time.time()
        status = self.bot.health()
        logger.info("Health check completed", elapsed_ms=round((time.time() - started) * 1000, 2), **status)
        return status


__all__ = ["MaintenanceTasks"]
