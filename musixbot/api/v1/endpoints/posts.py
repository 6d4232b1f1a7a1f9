"""
Inbound post ingestion (mentions and replies handed over by the social poller).
"""
from fastapi import APIRouter, Depends, Request, status

from musixbot.api.deps import get_bot
from musixbot.models.enums import PostKind
from musixbot.models.schemas.base import ResponseBase
from musixbot.models.schemas.requests import SocialPost
from musixbot.services.bot import MusixBot
from musixbot.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/",
    response_model=ResponseBase,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a mention or reply"
)
async def ingest_post(
    post: SocialPost,
    request: Request,
    bot: MusixBot = Depends(get_bot)
) -> ResponseBase:
    """Classify the post and queue its handling; returns immediately."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    kind = bot.handle_post(post)
    logger.info(
        "Post ingested",
        post_id=post.id,
        author_id=post.author_id,
        kind=kind.value,
        request_id=request_id
    )
    return ResponseBase(
        success=True,
        message="Post ignored" if kind == PostKind.IGNORED else "Post queued",
        data={"post_id": post.id, "kind": kind.value, "queue_depth": bot.queue.depth()}
    )
