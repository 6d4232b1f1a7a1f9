from .base import ResponseBase
from .payments import PaymentRequest, PaymentFailure, PaymentVerifyRequest, PaymentStatusRead
from .requests import SocialPost, StoredRequest
from .checkpoint import Checkpoint, RecoveryReport

__all__ = [
    # Base
    "ResponseBase",

    # Payments
    "PaymentRequest",
    "PaymentFailure",
    "PaymentVerifyRequest",
    "PaymentStatusRead",

    # Requests
    "SocialPost",
    "StoredRequest",

    # Checkpoints
    "Checkpoint",
    "RecoveryReport",
]
