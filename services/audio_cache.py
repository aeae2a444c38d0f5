"""Per-(affirmation, voice) narration cache backed by Firestore + Storage.

A present ``audioUrls[voiceId]`` entry on the affirmation is the cache hit. On a
miss the narration is synthesized once, uploaded, recorded on the affirmation and
(for a personal voice) paid for. Concurrent requests for the same key share one
in-flight synthesis, and only the caller that actually writes the entry is charged.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from aiam.models import Affirmation, UserProfile

logger = logging.getLogger("aiam.cache")

CacheKey = Tuple[str, str, str]


def audio_path(user_id: str, affirmation_id: str, voice_id: str) -> str:
    return f"users/{user_id}/affirmations/{affirmation_id}/audio/{voice_id}.mp3"


@dataclass
class EnsuredAudio:
    uri: str
    generated: bool


class AudioCache:
    def __init__(self, repository, storage, voice_service):
        self.repository = repository
        self.storage = storage
        self.voice_service = voice_service
        self._inflight: Dict[CacheKey, asyncio.Future] = {}
        self._locks: Dict[CacheKey, asyncio.Lock] = {}

    async def resolve(self, user_id: str, affirmation_id: str, voice_id: str) -> Optional[str]:
        affirmation = await self.repository.get_affirmation(user_id, affirmation_id)
        if affirmation is None:
            return None
        return affirmation.audio_for(voice_id)

    async def generate(self, profile: UserProfile, affirmation: Affirmation, voice_id: str) -> bytes:
        """Synthesize narration, joining an identical request already in flight."""
        key = (profile.uid, affirmation.id, voice_id)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self.voice_service.synthesize(affirmation.text, voice_id, profile)
            )
            self._inflight[key] = task

            def _forget(done, key=key):
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            task.add_done_callback(_forget)
        else:
            logger.debug("Joining in-flight synthesis for %s", key)
        # one caller giving up must not cancel the shared synthesis
        return await asyncio.shield(task)

    async def store(self, profile: UserProfile, affirmation_id: str, voice_id: str, audio: bytes) -> Tuple[str, bool]:
        """Persist ``audio`` and record it; returns (uri, written).

        When another writer already stored this key, its URI is returned and
        nothing is written or charged.
        """
        key = (profile.uid, affirmation_id, voice_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            existing = await self.resolve(profile.uid, affirmation_id, voice_id)
            if existing:
                return existing, False
            uri = await self.storage.upload(
                audio_path(profile.uid, affirmation_id, voice_id), audio, content_type="audio/mpeg"
            )
            await self.repository.set_affirmation_audio(profile.uid, affirmation_id, voice_id, uri)
            try:
                await self.voice_service.charge(profile, voice_id)
            except Exception:
                logger.exception("Cached %s but failed to deduct credits for %s", affirmation_id, profile.uid)
        if not lock.locked():
            self._locks.pop(key, None)
        return uri, True

    async def ensure(self, profile: UserProfile, affirmation: Affirmation, voice_id: str) -> EnsuredAudio:
        cached = await self.resolve(profile.uid, affirmation.id, voice_id)
        if cached:
            return EnsuredAudio(uri=cached, generated=False)
        audio = await self.generate(profile, affirmation, voice_id)
        uri, written = await self.store(profile, affirmation.id, voice_id, audio)
        return EnsuredAudio(uri=uri, generated=written)
