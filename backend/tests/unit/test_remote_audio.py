"""
Unit tests for fetching audio from a user-supplied link.
"""

import httpx
import pytest

from app.domain.analysis import SourceType
from app.infrastructure.exceptions import ValidationError
from app.services.remote_audio import FETCH_FAILED_MESSAGE, RemoteAudioFetcher


MAX_BYTES = 1024 * 1024


def make_fetcher(handler, max_bytes: int = MAX_BYTES) -> RemoteAudioFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteAudioFetcher(max_bytes=max_bytes, client=client)


def audio_response(content: bytes = b"RIFF-audio", content_type: str = "audio/wav", **headers):
    return httpx.Response(
        200,
        content=content,
        headers={"content-type": content_type, **headers},
    )


class TestFetch:

    async def test_downloads_audio(self):
        fetcher = make_fetcher(lambda r: audio_response(content_type="audio/wav; charset=binary"))

        audio = await fetcher.fetch("https://cdn.example.com/calls/deal.wav")

        assert audio.data == b"RIFF-audio"
        assert audio.content_type == "audio/wav"
        assert audio.file_name == "https://cdn.example.com/calls/deal.wav"
        assert audio.source_type == SourceType.URL
        assert audio.storage_name == "url_audio.wav"

    async def test_missing_extension_defaults_to_mp3(self):
        fetcher = make_fetcher(lambda r: audio_response(content_type="application/octet-stream"))
        audio = await fetcher.fetch("https://cdn.example.com/download?id=7")
        assert audio.storage_name == "url_audio.mp3"

    async def test_video_container_is_accepted(self):
        fetcher = make_fetcher(lambda r: audio_response(content_type="video/mp4"))
        audio = await fetcher.fetch("https://cdn.example.com/meeting.mp4")
        assert audio.content_type == "video/mp4"

    @pytest.mark.parametrize("url", [
        "http://cdn.example.com/a.mp3",
        "ftp://cdn.example.com/a.mp3",
    ])
    async def test_https_only(self, url):
        fetcher = make_fetcher(lambda r: audio_response())
        with pytest.raises(ValidationError) as exc_info:
            await fetcher.fetch(url)
        assert exc_info.value.message == "URL must use HTTPS"

    async def test_malformed_url(self):
        fetcher = make_fetcher(lambda r: audio_response())
        with pytest.raises(ValidationError) as exc_info:
            await fetcher.fetch("not a url")
        assert exc_info.value.message == "Invalid URL format"

    async def test_non_audio_content_type(self):
        fetcher = make_fetcher(lambda r: audio_response(content=b"<html>", content_type="text/html"))
        with pytest.raises(ValidationError) as exc_info:
            await fetcher.fetch("https://example.com/page")
        assert "does not point to an audio file" in exc_info.value.message

    async def test_upstream_error_status(self):
        fetcher = make_fetcher(lambda r: httpx.Response(403))
        with pytest.raises(ValidationError) as exc_info:
            await fetcher.fetch("https://example.com/private.mp3")
        assert "Could not access the audio file" in exc_info.value.message

    async def test_declared_length_over_cap(self):
        fetcher = make_fetcher(
            lambda r: audio_response(content=b"x", **{"content-length": str(MAX_BYTES + 1)}),
        )
        with pytest.raises(ValidationError) as exc_info:
            await fetcher.fetch("https://example.com/huge.mp3")
        assert exc_info.value.message == "File too large. Maximum size is 1MB."

    async def test_streamed_body_over_cap(self):
        fetcher = make_fetcher(lambda r: audio_response(content=b"x" * 2048), max_bytes=1024)
        with pytest.raises(ValidationError) as exc_info:
            await fetcher.fetch("https://example.com/long.mp3")
        assert "File too large" in exc_info.value.message

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        fetcher = make_fetcher(handler)
        with pytest.raises(ValidationError) as exc_info:
            await fetcher.fetch("https://slow.example.com/a.mp3")
        assert exc_info.value.message == FETCH_FAILED_MESSAGE
