"""Playlist export: validate cache completeness, fetch media, mix, name the file."""
import asyncio
import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from aiam.config import settings
from aiam.errors import (
    EmptyPlaylist,
    IncompleteAudio,
    IncompleteImages,
    InvalidRequest,
    MixTimeout,
    PlaylistNotFound,
    StorageFetchFailed,
)
from aiam.models import MixRecord, MixRequest
from aiam.readiness import missing_audio, missing_images
from services.timeline_mixer import MixResult, TimelineMixer

logger = logging.getLogger("aiam.export")

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def sanitize_name(name: Optional[str]) -> str:
    return _UNSAFE.sub("_", name or "playlist")


def download_filename(playlist_name: Optional[str], voice_id: str, with_music: bool, with_images: bool, extension: str) -> str:
    parts = [sanitize_name(playlist_name), voice_id]
    if with_music:
        parts.append("with_music")
    if with_images:
        parts.append("video")
    return "_".join(parts) + f".{extension}"


def mix_key(voice_id: str, with_music: bool) -> str:
    return f"{voice_id}_{'music' if with_music else 'plain'}"


def mix_fingerprint(voice_id: str, with_music: bool, audio_uris: Sequence[str], music_uri: Optional[str]) -> str:
    """Identity of a mix; changes whenever the ordered clips or the music asset change."""
    digest = hashlib.sha256()
    for part in (voice_id, "music" if with_music else "plain", music_uri or "", *audio_uris):
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


@dataclass
class ExportResult:
    data: bytes
    content_type: str
    filename: str
    cached: bool = False
    degraded: bool = False

    @property
    def content_disposition(self) -> str:
        return f'attachment; filename="{self.filename}"'


class PlaylistExporter:
    def __init__(
        self,
        repository,
        storage,
        mixer: Optional[TimelineMixer] = None,
        timeout: float = settings.MIX_TIMEOUT,
        music_prefix: str = settings.MUSIC_PREFIX,
        url_ttl: int = settings.SIGNED_URL_TTL,
    ):
        self.repository = repository
        self.storage = storage
        self.mixer = mixer or TimelineMixer()
        self.timeout = timeout
        self.music_prefix = music_prefix
        self.url_ttl = url_ttl

    async def export(self, request: MixRequest) -> ExportResult:
        if not (request.user_id and request.playlist_id and request.voice_id):
            raise InvalidRequest()
        user_id, voice_id = request.user_id, request.voice_id

        playlist = await self.repository.get_playlist(user_id, request.playlist_id)
        if playlist is None:
            raise PlaylistNotFound()
        if not playlist.affirmation_ids:
            raise EmptyPlaylist()

        # Preconditions are checked before any media is touched. Deleted
        # affirmations are empty slots and drop out of the playlist.
        found = await self.repository.get_affirmations(user_id, playlist.affirmation_ids)
        affirmations = [a for a in found if a is not None]
        if not affirmations:
            raise EmptyPlaylist()
        total = len(affirmations)
        missing = missing_audio(affirmations, voice_id)
        if missing:
            raise IncompleteAudio(missing_count=len(missing), total_count=total)
        if request.with_images:
            no_image = missing_images(affirmations)
            if no_image:
                raise IncompleteImages(missing_count=len(no_image), total_count=total)

        logger.info(
            "Exporting playlist %s voice=%s music=%s images=%s (%d clips)",
            playlist.id, voice_id, request.with_music, request.with_images, total,
        )
        audio_uris = [a.audio_for(voice_id) for a in affirmations]
        music_uri = await self._find_music() if request.with_music else None

        key = mix_key(voice_id, request.with_music)
        fingerprint = mix_fingerprint(voice_id, request.with_music, audio_uris, music_uri)
        if not request.with_images:
            cached = await self._cached_mix(user_id, playlist.id, key, fingerprint)
            if cached is not None:
                return ExportResult(
                    data=cached[0],
                    content_type=cached[1].content_type,
                    filename=download_filename(playlist.name, voice_id, request.with_music, False, cached[1].extension),
                    cached=True,
                )

        clips = await self._fetch_all(audio_uris)
        music = await self._download_music(music_uri) if music_uri else None

        if request.with_images:
            images = await self._fetch_all([a.image_url for a in affirmations])
            result = await self._run(self.mixer.render_video, clips, images, music)
        else:
            result = await self._run(self.mixer.mix_audio, clips, music, request.with_music)
            if not result.degraded:
                await self._store_mix(user_id, playlist.id, key, fingerprint, result)

        filename = download_filename(
            playlist.name, voice_id, request.with_music, request.with_images, result.extension
        )
        logger.info("Export of %s ready: %s (%d bytes, degraded=%s)", playlist.id, filename, len(result.data), result.degraded)
        return ExportResult(
            data=result.data,
            content_type=result.content_type,
            filename=filename,
            degraded=result.degraded,
        )

    async def _run(self, fn, *args) -> MixResult:
        # the worker gets the same budget so its ffmpeg children stop with it
        deadline = time.monotonic() + self.timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, deadline=deadline), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise MixTimeout() from e

    async def _fetch_all(self, uris: Sequence[str]) -> List[bytes]:
        """Fetch every URI concurrently; results keep the input order."""
        urls = await asyncio.gather(*(self.storage.resolve_to_fetchable_url(u, self.url_ttl) for u in uris))
        return list(await asyncio.gather(*(self.storage.fetch(u) for u in urls)))

    async def _find_music(self) -> Optional[str]:
        try:
            found = await self.storage.list(self.music_prefix, max_results=1)
        except Exception as e:
            logger.warning("Listing background music failed [StorageFetchFailed]: %s", e)
            return None
        if not found:
            logger.warning("No background music found under %s", self.music_prefix)
            return None
        return found[0]

    async def _download_music(self, uri: str) -> Optional[bytes]:
        try:
            return await self.storage.download(uri)
        except StorageFetchFailed as e:
            logger.warning("Background music download failed [%s]: %s", e.label, e.message)
            return None

    async def _cached_mix(self, user_id: str, playlist_id: str, key: str, fingerprint: str):
        record = await self.repository.get_mix_record(user_id, playlist_id, key)
        if record is None or record.fingerprint != fingerprint:
            return None
        try:
            data = await self.storage.download(record.uri)
        except StorageFetchFailed as e:
            logger.warning("Cached mix %s unreadable, remixing: %s", record.uri, e.message)
            return None
        logger.info("Serving cached mix for playlist %s (%s)", playlist_id, key)
        return data, record

    async def _store_mix(self, user_id: str, playlist_id: str, key: str, fingerprint: str, result: MixResult) -> None:
        path = f"users/{user_id}/playlists/{playlist_id}/mixes/{key}.{result.extension}"
        try:
            uri = await self.storage.upload(path, result.data, content_type=result.content_type)
            await self.repository.save_mix_record(
                user_id, playlist_id, key,
                MixRecord(fingerprint=fingerprint, uri=uri, content_type=result.content_type, extension=result.extension),
            )
        except Exception:
            logger.exception("Failed to cache mix for playlist %s (%s)", playlist_id, key)
