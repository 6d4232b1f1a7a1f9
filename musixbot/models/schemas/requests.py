"""
Pydantic schemas for inbound social posts and stored generation requests.
"""
from typing import Optional
from pydantic import BaseModel, Field

from musixbot.models.schemas.payments import PaymentRequest


class SocialPost(BaseModel):
    """Mention or reply as handed over by the social collaborator."""
    id: str = Field(min_length=1)
    author_id: str = Field(min_length=1)
    text: str = ""
    url: Optional[str] = None
    referenced_post_id: Optional[str] = Field(
        None, description="Post this one replies to (set on payment confirmations)"
    )


class StoredRequest(BaseModel):
    correlation_id: str
    user_id: str
    prompt: str
    payment: PaymentRequest
    created_at: float
    expired: bool = False
