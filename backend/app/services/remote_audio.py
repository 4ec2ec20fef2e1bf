"""
Remote Audio Fetcher

Downloads audio from a user-supplied HTTPS link with a timeout and a
streamed size cap.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from app.infrastructure.exceptions import ValidationError
from app.services.analysis_lifecycle import SubmittedAudio
from app.domain.analysis import SourceType


logger = logging.getLogger(__name__)

ACCEPTED_REMOTE_TYPES = ("audio/", "video/", "application/octet-stream")

FETCH_FAILED_MESSAGE = (
    "Could not fetch audio from URL. The file may be protected or unavailable. "
    "Please download it and upload directly."
)


def _storage_name_for(url: str) -> str:
    path = urlparse(url).path
    ext = path.rsplit(".", 1)[-1][:5] if "." in path.rsplit("/", 1)[-1] else ""
    return f"url_audio.{ext or 'mp3'}"


class RemoteAudioFetcher:
    def __init__(
        self,
        max_bytes: int,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._max_bytes = max_bytes
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": "ContractEar/1.0"},
        )

    async def fetch(self, url: str) -> SubmittedAudio:
        """
        Fetch ``url`` into memory.

        Raises:
            ValidationError for non-HTTPS links, unreachable or non-audio
            resources and files over the size cap
        """
        parsed = urlparse(url.strip())
        if not parsed.scheme or not parsed.netloc:
            raise ValidationError("Invalid URL format")
        if parsed.scheme != "https":
            raise ValidationError("URL must use HTTPS")

        try:
            async with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise ValidationError(
                        "Could not access the audio file. Please download it and upload directly."
                    )

                content_type = response.headers.get("content-type", "")
                if not any(kind in content_type for kind in ACCEPTED_REMOTE_TYPES):
                    raise ValidationError(
                        "URL does not point to an audio file. "
                        "Please provide a direct link to an audio file."
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self._max_bytes:
                    raise self._too_large()

                chunks = bytearray()
                async for chunk in response.aiter_bytes():
                    chunks.extend(chunk)
                    if len(chunks) > self._max_bytes:
                        raise self._too_large()
        except httpx.HTTPError as e:
            logger.info(f"Remote audio fetch failed: {e.__class__.__name__}")
            raise ValidationError(FETCH_FAILED_MESSAGE, original_error=e) from e

        return SubmittedAudio(
            data=bytes(chunks),
            file_name=url,
            content_type=content_type.split(";")[0].strip() or "audio/mpeg",
            source_type=SourceType.URL,
            storage_name=_storage_name_for(url),
        )

    def _too_large(self) -> ValidationError:
        limit_mb = self._max_bytes // (1024 * 1024)
        return ValidationError(f"File too large. Maximum size is {limit_mb}MB.")

    async def close(self) -> None:
        await self._client.aclose()
