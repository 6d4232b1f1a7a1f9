"""
Social platform client used when no live (browser-driven) client is wired in.

Replies are logged and kept in ``sent`` so operators and tests can inspect
what would have been posted.
"""
from dataclasses import dataclass
from typing import List, Optional

from musixbot.integrations.base import SocialClient
from musixbot.utils import get_logger


@dataclass(slots=True)
class SentReply:
    post_id: str
    text: str
    media_ref: Optional[str] = None


class DryRunSocialClient(SocialClient):
    def __init__(self):
        self.platform_name = "x"
        self.logger = get_logger(f"integration.{self.platform_name}")
        self.sent: List[SentReply] = []

    async def reply(self, post_id: str, text: str) -> None:
        self.sent.append(SentReply(post_id=post_id, text=text))
        self.logger.info("Reply (dry run)", post_id=post_id, text=text)

    async def reply_with_media(self, post_id: str, text: str, media_ref: str) -> None:
        self.sent.append(SentReply(post_id=post_id, text=text, media_ref=media_ref))
        self.logger.info("Media reply (dry run)", post_id=post_id, text=text, media_ref=media_ref)

    def replies_to(self, post_id: str) -> List[SentReply]:
        return [r for r in self.sent if r.post_id == post_id]


__all__ = ["DryRunSocialClient", "SentReply"]
