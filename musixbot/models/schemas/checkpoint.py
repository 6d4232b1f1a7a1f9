"""
Pydantic schemas for the durable recovery snapshot.
"""
from typing import List
from pydantic import BaseModel, Field

from musixbot.models.schemas.payments import PaymentRequest
from musixbot.models.schemas.requests import StoredRequest


class Checkpoint(BaseModel):
    timestamp: float
    pending_requests: List[StoredRequest] = Field(default_factory=list)
    pending_payments: List[PaymentRequest] = Field(default_factory=list)


class RecoveryReport(BaseModel):
    requests: int = 0
    payments: int = 0
    failures: int = 0
