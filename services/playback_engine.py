"""Sequential "play all" engine.

A ``PlaybackSession`` walks a playlist in order, plays each narration to the end,
waits a short gap, then advances. Missing narrations are synthesized on demand;
playback of a fresh clip starts immediately while its upload, cache record and
credit charge run alongside, and that work is awaited before the next clip.

Pause, resume and stop are cooperative: they flip events the loop waits on at
every suspension point, so no polling is involved.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from aiam.config import settings
from aiam.errors import AiamError
from aiam.models import Affirmation, UserProfile

logger = logging.getLogger("aiam.playback")


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    ABORTED = "aborted"


class PlaybackAborted(Exception):
    pass


@dataclass
class Clip:
    affirmation_id: str
    uri: Optional[str] = None
    data: Optional[bytes] = None


class AudioPlayer:
    """Output device interface. ``play`` returns when the clip ends or ``stop`` is called."""

    async def play(self, clip: Clip) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def resume(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class PlaybackSession:
    def __init__(
        self,
        profile: UserProfile,
        cache,
        player: AudioPlayer,
        gap_seconds: float = settings.GAP_SECONDS,
        on_clip_start: Optional[Callable[[int, Affirmation], None]] = None,
    ):
        self.profile = profile
        self.cache = cache
        self.player = player
        self.gap_seconds = gap_seconds
        self.on_clip_start = on_clip_start
        self.state = PlaybackState.IDLE
        self.index = 0
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._aborted = asyncio.Event()

    # --- controls ---

    def pause(self) -> None:
        if self.state != PlaybackState.PLAYING:
            return
        self.state = PlaybackState.PAUSED
        self._resumed.clear()
        self.player.pause()

    def resume(self) -> None:
        if self.state != PlaybackState.PAUSED:
            return
        self.state = PlaybackState.PLAYING
        self._resumed.set()
        self.player.resume()

    def stop(self) -> None:
        if self.state not in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            return
        self.state = PlaybackState.ABORTED
        self._aborted.set()
        # wake anything parked on pause so it can observe the abort
        self._resumed.set()
        self.player.stop()

    abort = stop

    def skip_to(self, index: int) -> None:
        """Move the resume position (previous/next) while idle."""
        if self.state != PlaybackState.IDLE:
            raise RuntimeError("Cannot change position during playback")
        self.index = max(0, index)

    # --- loop ---

    async def _checkpoint(self) -> None:
        if self._aborted.is_set():
            raise PlaybackAborted()
        await self._resumed.wait()
        if self._aborted.is_set():
            raise PlaybackAborted()

    async def _gap(self) -> None:
        try:
            await asyncio.wait_for(self._aborted.wait(), timeout=self.gap_seconds)
        except asyncio.TimeoutError:
            pass

    async def _resolve(self, affirmation: Affirmation, voice_id: str):
        """Return (clip, pending cache write or None)."""
        uri = await self.cache.resolve(self.profile.uid, affirmation.id, voice_id)
        if uri:
            return Clip(affirmation_id=affirmation.id, uri=uri), None
        audio = await self.cache.generate(self.profile, affirmation, voice_id)
        if self._aborted.is_set():
            logger.info("Discarding narration for %s synthesized after abort", affirmation.id)
            raise PlaybackAborted()
        pending = asyncio.ensure_future(self.cache.store(self.profile, affirmation.id, voice_id, audio))
        return Clip(affirmation_id=affirmation.id, data=audio), pending

    async def _settle(self, pending: Optional[asyncio.Future], affirmation_id: str) -> None:
        if pending is None:
            return
        try:
            await pending
        except Exception:
            logger.exception("Failed to cache audio or update credits for %s", affirmation_id)

    async def start(self, affirmations: Sequence[Optional[Affirmation]], voice_id: str) -> bool:
        """Play from the current index to the end. Returns False when stopped early."""
        if self.state != PlaybackState.IDLE:
            raise RuntimeError("Playback already in progress")
        if self.index >= len(affirmations):
            self.index = 0
        self.state = PlaybackState.PLAYING
        self._aborted.clear()
        self._resumed.set()
        completed = False
        try:
            for i in range(self.index, len(affirmations)):
                self.index = i
                affirmation = affirmations[i]
                if affirmation is None:
                    continue
                await self._checkpoint()
                clip, pending = await self._resolve(affirmation, voice_id)
                try:
                    await self._checkpoint()
                    if self.on_clip_start:
                        self.on_clip_start(i, affirmation)
                    await self.player.play(clip)
                    await self._checkpoint()
                finally:
                    await self._settle(pending, affirmation.id)
                await self._gap()
            completed = True
            self.index = 0
            logger.info("Playback finished (%d affirmations)", len(affirmations))
        except PlaybackAborted:
            self.index = 0
            logger.info("Playback stopped")
        except AiamError as e:
            self.player.stop()
            logger.warning("Playback failed at index %d [%s]: %s", self.index, e.label, e.message)
            raise
        except Exception:
            self.player.stop()
            logger.exception("Playback failed at index %d", self.index)
            raise
        finally:
            self.state = PlaybackState.IDLE
            self._resumed.set()
        return completed
