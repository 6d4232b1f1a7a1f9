"""
Music generation provider reached over HTTP.

The provider receives ``{"prompt", "duration"}`` and answers with JSON that
carries a media reference under ``url`` (or ``file_path``). Provider
internals (model choice, audio post-processing) stay on the provider side.
"""
from typing import Optional
import asyncio
import aiohttp

from musixbot.config import MUSIC_SETTINGS
from musixbot.errors import TransportError
from musixbot.integrations.base import GenerationProvider
from musixbot.utils import get_logger, log_performance


class HttpGenerationProvider(GenerationProvider):
    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_url = str(api_url if api_url is not None else MUSIC_SETTINGS["api_url"])
        self.api_key = str(api_key if api_key is not None else MUSIC_SETTINGS["api_key"])
        self.timeout = aiohttp.ClientTimeout(
            total=float(timeout_seconds if timeout_seconds is not None else MUSIC_SETTINGS["timeout_seconds"])  # type: ignore[arg-type]
        )
        self.logger = get_logger("integration.music")

    async def generate(self, prompt: str, duration_seconds: int) -> str:
        if not self.api_url:
            raise TransportError("Music API endpoint not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"prompt": prompt, "duration": duration_seconds}

        loop = asyncio.get_running_loop()
        started = loop.time()
        self.logger.info("Requesting music generation", prompt=prompt, duration=duration_seconds)
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.api_url, json=payload, headers=headers) as response:
                    if response.status != 200:
                        self.logger.error("Music API request failed", status_code=response.status)
                        raise TransportError(f"Music API returned status {response.status}")
                    data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransportError(f"Music API unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError("Music API timed out") from e

        media_ref = None
        if isinstance(data, dict):
            media_ref = data.get("url") or data.get("file_path")
        if not media_ref:
            raise TransportError("Music API response carried no media reference")

        log_performance(
            operation="music_generation",
            duration_ms=(loop.time() - started) * 1000,
            additional_data={"duration_seconds": duration_seconds},
        )
        return str(media_ref)


__all__ = ["HttpGenerationProvider"]
