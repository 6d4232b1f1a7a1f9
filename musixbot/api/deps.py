"""
Dependencies shared by the API endpoints.
"""
from fastapi import HTTPException, Request, status

from musixbot.services.bot import MusixBot
from musixbot.utils import get_logger

logger = get_logger(__name__)


def get_bot(request: Request) -> MusixBot:
    """
    Resolve the running bot from application state.

    The bot is attached in the application lifespan (tests set it directly).

    Raises:
        HTTPException: 503 when the bot has not been started
    """
    bot = getattr(request.app.state, "bot", None)
    if bot is None:
        logger.warning("Bot requested before startup", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bot not available",
        )
    return bot
