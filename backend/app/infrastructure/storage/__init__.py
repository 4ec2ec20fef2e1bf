"""Audio object storage backends."""

from app.infrastructure.storage.audio_storage import (
    AudioStorage,
    InMemoryAudioStorage,
    StoredAudio,
    SupabaseAudioStorage,
    build_storage_path,
)

__all__ = [
    "AudioStorage",
    "InMemoryAudioStorage",
    "StoredAudio",
    "SupabaseAudioStorage",
    "build_storage_path",
]
