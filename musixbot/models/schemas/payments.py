"""
Pydantic schemas for payment requests and their failure records.
"""
from decimal import Decimal
from typing import Dict, Optional
from pydantic import BaseModel, Field, ConfigDict

from musixbot.models.enums import PaymentStatus


class PaymentRequest(BaseModel):
    """
    A single order awaiting (or having received) an on-chain payment.

    ``order_id`` never changes after creation; ``status`` only moves
    pending -> completed, pending -> failed, or failed -> pending on a
    manual retry.
    """
    order_id: str = Field(min_length=1)
    user_id: str
    correlation_id: str
    amount: Decimal = Field(gt=0, description="Price in USD")
    destination_addresses: Dict[str, str] = Field(default_factory=dict)
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: float = Field(description="Epoch seconds")
    verification_attempts: int = Field(0, ge=0)

    model_config = ConfigDict(validate_assignment=True)


class PaymentFailure(BaseModel):
    order_id: str
    error: str
    error_type: Optional[str] = None
    attempts: int = Field(0, ge=0)
    last_attempt_at: float


class PaymentVerifyRequest(BaseModel):
    """Body for manual verification through the HTTP API."""
    proof: Optional[str] = Field(None, max_length=200, description="Transaction hash")


class PaymentStatusRead(BaseModel):
    order_id: str
    status: str
    verification_attempts: Optional[int] = None
    failure: Optional[PaymentFailure] = None
