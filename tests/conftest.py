import asyncio
from typing import Dict, List, Optional

import numpy as np
import pytest

from aiam.errors import StorageFetchFailed
from aiam.models import Affirmation, MixRecord, Playlist, UserProfile
from services.audio_codec import PcmAudio, encode_wav
from services.playback_engine import AudioPlayer, Clip

SAMPLE_RATE = 44100
BUCKET = "test-bucket"


def make_wav(seconds: float, value: int = 1000, channels: int = 2, sample_rate: int = SAMPLE_RATE) -> bytes:
    frames = int(round(seconds * sample_rate))
    samples = np.full((frames, channels), value, dtype=np.int16)
    return encode_wav(PcmAudio(samples=samples, sample_rate=sample_rate))


class InMemoryRepository:
    def __init__(self):
        self.profiles: Dict[str, UserProfile] = {}
        self.playlists: Dict[tuple, Playlist] = {}
        self.affirmations: Dict[tuple, Affirmation] = {}
        self.mixes: Dict[tuple, MixRecord] = {}
        self.deductions: List[tuple] = []

    # seeding helpers
    def add_profile(self, uid: str, **fields) -> UserProfile:
        profile = UserProfile(uid=uid, **fields)
        self.profiles[uid] = profile
        return profile

    def add_affirmation(self, uid: str, aid: str, **fields) -> Affirmation:
        fields.setdefault("text", f"I am affirmation {aid}")
        affirmation = Affirmation(id=aid, **fields)
        self.affirmations[(uid, aid)] = affirmation
        return affirmation

    def add_playlist(self, uid: str, pid: str, affirmation_ids, name: str = "playlist") -> Playlist:
        playlist = Playlist(id=pid, name=name, affirmation_ids=list(affirmation_ids))
        self.playlists[(uid, pid)] = playlist
        return playlist

    # repository interface
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        profile = self.profiles.get(user_id)
        return profile.model_copy() if profile else None

    async def get_playlist(self, user_id: str, playlist_id: str) -> Optional[Playlist]:
        return self.playlists.get((user_id, playlist_id))

    async def get_affirmation(self, user_id: str, affirmation_id: str) -> Optional[Affirmation]:
        affirmation = self.affirmations.get((user_id, affirmation_id))
        return affirmation.model_copy(deep=True) if affirmation else None

    async def get_affirmations(self, user_id: str, affirmation_ids):
        return [await self.get_affirmation(user_id, a) for a in affirmation_ids]

    async def set_affirmation_audio(self, user_id: str, affirmation_id: str, voice_id: str, uri: str) -> None:
        self.affirmations[(user_id, affirmation_id)].audio_urls[voice_id] = uri

    async def deduct_credits(self, user_id: str, cost: int) -> int:
        self.deductions.append((user_id, cost))
        profile = self.profiles[user_id]
        profile.credits = max(0, profile.credits - cost)
        return profile.credits

    async def get_mix_record(self, user_id: str, playlist_id: str, key: str) -> Optional[MixRecord]:
        return self.mixes.get((user_id, playlist_id, key))

    async def save_mix_record(self, user_id: str, playlist_id: str, key: str, record: MixRecord) -> None:
        self.mixes[(user_id, playlist_id, key)] = record


class FakeStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.fetched: List[str] = []
        self.downloaded: List[str] = []

    def put(self, path: str, data: bytes) -> str:
        self.objects[path] = data
        return f"gs://{BUCKET}/{path}"

    def _path(self, uri: str) -> str:
        for prefix in (f"gs://{BUCKET}/", "https://storage.test/"):
            if uri.startswith(prefix):
                return uri[len(prefix):]
        return uri

    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.uploads.append(path)
        return self.put(path, data)

    async def resolve_to_fetchable_url(self, uri: str, ttl_seconds: int = 900) -> str:
        if uri.startswith("gs://"):
            return f"https://storage.test/{self._path(uri)}"
        return uri

    async def list(self, prefix: str, max_results=None):
        found = [f"gs://{BUCKET}/{p}" for p in sorted(self.objects) if p.startswith(prefix)]
        return found[:max_results] if max_results else found

    async def download(self, uri: str) -> bytes:
        self.downloaded.append(uri)
        path = self._path(uri)
        if path not in self.objects:
            raise StorageFetchFailed(f"Failed to download {uri}")
        return self.objects[path]

    async def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        path = self._path(url)
        if path not in self.objects:
            raise StorageFetchFailed(f"Failed to fetch audio: {url}")
        return self.objects[path]

    async def aclose(self):
        pass


class FakeSynthesizer:
    """Stands in for the TTS provider; optionally blocks until ``gate`` is set."""

    def __init__(self, audio: bytes = None, delay: float = 0.0, error: Exception = None):
        self.audio = audio if audio is not None else make_wav(0.2)
        self.delay = delay
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def __call__(self, text, voice_id, profile):
        self.calls.append((text, voice_id, profile.name))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.audio


class FakePlayer(AudioPlayer):
    """Plays each clip for ``duration`` seconds of unpaused time."""

    TICK = 0.005

    def __init__(self, duration: float = 0.02):
        self.duration = duration
        self.played: List[Clip] = []
        self.paused = False
        self.stopped = False
        self.pause_calls = 0
        self.resume_calls = 0

    async def play(self, clip: Clip) -> None:
        self.played.append(clip)
        self.stopped = False
        remaining = self.duration
        while remaining > 0 and not self.stopped:
            await asyncio.sleep(self.TICK)
            if not self.paused:
                remaining -= self.TICK

    def pause(self) -> None:
        self.paused = True
        self.pause_calls += 1

    def resume(self) -> None:
        self.paused = False
        self.resume_calls += 1

    def stop(self) -> None:
        self.stopped = True
        self.paused = False


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def synth():
    return FakeSynthesizer()


@pytest.fixture
def no_ffmpeg(monkeypatch):
    """Force the WAV output path so mixing needs no external binary."""
    monkeypatch.setattr("services.timeline_mixer.ffmpeg_available", lambda: False)
