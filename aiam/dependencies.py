"""Process-wide service instances, injected into routes with ``Depends``."""
from functools import lru_cache

from clients.storage_client import StorageClient
from services.audio_cache import AudioCache
from services.export_service import PlaylistExporter
from services.timeline_mixer import TimelineMixer
from services.voice_service import VoiceService

from .repository import FirestoreRepository


@lru_cache()
def get_repository() -> FirestoreRepository:
    return FirestoreRepository()


@lru_cache()
def get_storage() -> StorageClient:
    return StorageClient()


@lru_cache()
def get_voice_service() -> VoiceService:
    return VoiceService(get_repository())


@lru_cache()
def get_audio_cache() -> AudioCache:
    return AudioCache(get_repository(), get_storage(), get_voice_service())


@lru_cache()
def get_exporter() -> PlaylistExporter:
    return PlaylistExporter(get_repository(), get_storage(), TimelineMixer())
