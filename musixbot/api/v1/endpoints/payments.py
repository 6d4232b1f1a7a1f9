"""
Payment inspection and manual verification endpoints.
"""
import time
from typing import List

from fastapi import APIRouter, Depends, Request

from musixbot.api.deps import get_bot
from musixbot.errors import NotFoundError
from musixbot.models.schemas.base import ResponseBase
from musixbot.models.schemas.payments import PaymentFailure, PaymentStatusRead, PaymentVerifyRequest
from musixbot.services.bot import MusixBot
from musixbot.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/failed",
    response_model=List[PaymentFailure],
    summary="List payment failure records"
)
async def list_failed_payments(bot: MusixBot = Depends(get_bot)) -> List[PaymentFailure]:
    return bot.ledger.get_failed_payments()


@router.get(
    "/{order_id}",
    response_model=PaymentStatusRead,
    summary="Get payment status"
)
async def get_payment_status(order_id: str, bot: MusixBot = Depends(get_bot)) -> PaymentStatusRead:
    payment = bot.ledger.get_payment(order_id)
    if payment is None:
        raise NotFoundError(f"Payment not found: {order_id}")
    return PaymentStatusRead(
        order_id=order_id,
        status=payment.status.value,
        verification_attempts=payment.verification_attempts,
        failure=bot.ledger.get_failure(order_id),
    )


@router.post(
    "/{order_id}/verify",
    response_model=ResponseBase,
    summary="Verify a payment now"
)
async def verify_payment(
    order_id: str,
    body: PaymentVerifyRequest,
    request: Request,
    bot: MusixBot = Depends(get_bot)
) -> ResponseBase:
    """Run one verification attempt; delivers the clip when the payment is confirmed."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Manual verification requested", order_id=order_id, with_proof=bool(body.proof), request_id=request_id)

    verified = await bot.ledger.verify_payment(order_id, body.proof)
    delivered = False
    if verified:
        stored = bot.store.find_by_order_id(order_id)
        if stored is not None:
            delivered = await bot.deliver(stored, stored.correlation_id)

    log_performance(
        operation="verify_payment",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"order_id": order_id, "verified": verified}
    )
    return ResponseBase(
        success=verified,
        message="Payment verified" if verified else "Payment not verified",
        data={"order_id": order_id, "status": bot.ledger.get_payment_status(order_id), "delivered": delivered}
    )


@router.post(
    "/{order_id}/retry",
    response_model=ResponseBase,
    summary="Retry a failed payment"
)
async def retry_payment(order_id: str, bot: MusixBot = Depends(get_bot)) -> ResponseBase:
    verified = await bot.ledger.retry_failed_payment(order_id)
    return ResponseBase(
        success=verified,
        message="Payment verified" if verified else "Payment retry did not verify",
        data={"order_id": order_id, "status": bot.ledger.get_payment_status(order_id)}
    )
