"""
Audio Object Storage

Narrow interface over the bucket that holds uploaded audio between
submission and processing. Objects are deleted once processing ends.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from supabase import create_client, Client
from supabase.lib.client_options import ClientOptions

from app.config.settings import Settings
from app.infrastructure.exceptions import ConfigurationError, StorageError


logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def build_storage_path(analysis_id: str, file_name: str) -> str:
    """``{analysis_id}/{sanitized file name}``."""
    safe_name = _UNSAFE_CHARS.sub("_", file_name.rsplit("/", 1)[-1]) or "audio"
    return f"{analysis_id}/{safe_name[:200]}"


@dataclass
class StoredAudio:
    data: bytes
    content_type: str


class AudioStorage(ABC):
    """Interface for audio object storage."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> None:
        """Store an object, raising StorageError on failure."""

    @abstractmethod
    async def get(self, path: str) -> StoredAudio:
        """Fetch an object, raising StorageError if missing."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete an object; missing objects are not an error."""


class SupabaseAudioStorage(AudioStorage):
    """
    Supabase Storage bucket backend.

    The Supabase SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, settings: Settings):
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise ConfigurationError(
                "Missing Supabase storage configuration",
                missing_keys=["SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"],
            )

        options = ClientOptions(storage_client_timeout=60)
        self._client: Client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
            options,
        )
        self._bucket = settings.audio_bucket

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                lambda: self._client.storage.from_(self._bucket).upload(
                    path, data, {"content-type": content_type}
                )
            )
        except Exception as e:
            raise StorageError("Failed to upload file", original_error=e) from e

    async def get(self, path: str) -> StoredAudio:
        try:
            data = await asyncio.to_thread(
                lambda: self._client.storage.from_(self._bucket).download(path)
            )
        except Exception as e:
            raise StorageError("Failed to download audio file", original_error=e) from e
        return StoredAudio(data=data, content_type=_guess_content_type(path))

    async def delete(self, path: str) -> None:
        try:
            await asyncio.to_thread(
                lambda: self._client.storage.from_(self._bucket).remove([path])
            )
        except Exception as e:
            raise StorageError("Failed to delete audio file", original_error=e) from e


class InMemoryAudioStorage(AudioStorage):
    """Process-local backend for development without a storage bucket."""

    def __init__(self):
        self._objects: dict[str, StoredAudio] = {}

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        self._objects[path] = StoredAudio(data=data, content_type=content_type)

    async def get(self, path: str) -> StoredAudio:
        stored = self._objects.get(path)
        if stored is None:
            raise StorageError("Failed to download audio file")
        return stored

    async def delete(self, path: str) -> None:
        self._objects.pop(path, None)

    def __contains__(self, path: str) -> bool:
        return path in self._objects


_EXTENSION_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "m4a": "audio/x-m4a",
    "mp4": "audio/mp4",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}


def _guess_content_type(path: str, default: str = "audio/mpeg") -> str:
    ext: Optional[str] = path.rsplit(".", 1)[-1].lower() if "." in path else None
    return _EXTENSION_TYPES.get(ext, default) if ext else default
