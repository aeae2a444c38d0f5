"""Combine narration clips, optional images and a looping background track.

Audio-only output: clips in playlist order separated by fixed silence, with the
background looped underneath at a fixed gain. Any failure short of a timeout
degrades to byte-level concatenation of the original clips.

Video output: each image is held for the length of its clip, segments are
joined without gaps. Failures are fatal and reported without internal detail.

Both modes accept a ``deadline`` (``time.monotonic()`` value); every ffmpeg call
gets the remaining budget as its timeout, and an exhausted budget raises MixTimeout.
"""
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from aiam.config import settings
from aiam.errors import AiamError, EmptyPlaylist, IncompleteImages, MixEncodingFailed, MixTimeout
from services.audio_codec import PcmAudio, decode_audio, encode_mp3, encode_wav, ffmpeg_available, is_wav
from services.timeline import BackgroundTrack, Segment, Timeline, render_audio
from services.video_renderer import render_slideshow

logger = logging.getLogger("aiam.mixer")


@dataclass
class MixResult:
    data: bytes
    content_type: str
    extension: str
    degraded: bool = False
    duration_seconds: Optional[float] = None


def naive_concat(clips: Sequence[bytes]) -> MixResult:
    """Back-to-back original bytes: no gaps, no music, no re-encode."""
    if clips and is_wav(clips[0]):
        return MixResult(data=b"".join(clips), content_type="audio/wav", extension="wav", degraded=True)
    return MixResult(data=b"".join(clips), content_type="audio/mpeg", extension="mp3", degraded=True)


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    left = deadline - time.monotonic()
    if left <= 0:
        raise MixTimeout()
    return left


class TimelineMixer:
    def __init__(
        self,
        gap_seconds: float = settings.GAP_SECONDS,
        music_gain: float = settings.MUSIC_GAIN,
        sample_rate: int = settings.SAMPLE_RATE,
        channels: int = settings.CHANNELS,
        video_size: tuple = (settings.VIDEO_WIDTH, settings.VIDEO_HEIGHT),
        timeout: float = settings.MIX_TIMEOUT,
    ):
        self.gap_seconds = gap_seconds
        self.music_gain = music_gain
        self.sample_rate = sample_rate
        self.channels = channels
        self.video_size = video_size
        self.timeout = timeout

    def _decode(self, data: bytes, deadline: Optional[float] = None) -> PcmAudio:
        return decode_audio(data, self.sample_rate, self.channels, timeout=_remaining(deadline))

    def build_timeline(
        self,
        clips: Sequence[bytes],
        music: Optional[bytes] = None,
        images: Optional[Sequence[bytes]] = None,
        gapless: bool = False,
        deadline: Optional[float] = None,
    ) -> Timeline:
        segments: List[Segment] = []
        for i, clip in enumerate(clips):
            audio = self._decode(clip, deadline)
            if images is not None:
                segments.append(Segment(kind="imageAudio", audio=audio, image=images[i]))
            else:
                segments.append(Segment(kind="audio", audio=audio))
        background = None
        if music is not None:
            background = BackgroundTrack(audio=self._decode(music, deadline), gain=self.music_gain)
        return Timeline(
            segments=segments,
            gap_seconds=0.0 if gapless else self.gap_seconds,
            background=background,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )

    def encode_audio(self, audio: PcmAudio, deadline: Optional[float] = None) -> MixResult:
        if not ffmpeg_available():
            return MixResult(
                data=encode_wav(audio), content_type="audio/wav", extension="wav",
                duration_seconds=audio.duration_seconds,
            )
        return MixResult(
            data=encode_mp3(audio, timeout=_remaining(deadline)), content_type="audio/mpeg", extension="mp3",
            duration_seconds=audio.duration_seconds,
        )

    def mix_audio(
        self,
        clips: Sequence[bytes],
        music: Optional[bytes] = None,
        with_music: bool = False,
        deadline: Optional[float] = None,
    ) -> MixResult:
        if not clips:
            raise EmptyPlaylist()
        try:
            if with_music and not music:
                raise MixEncodingFailed("Background music asset is missing")
            timeline = self.build_timeline(clips, music if with_music else None, deadline=deadline)
            result = self.encode_audio(render_audio(timeline), deadline)
            logger.info(
                "Mixed %d clips into %.2fs of audio (music=%s)",
                len(clips), result.duration_seconds or 0.0, timeline.background is not None,
            )
            return result
        except MixTimeout:
            raise
        except Exception as e:
            label = e.label if isinstance(e, AiamError) else "MixEncodingFailed"
            logger.warning("Audio mix degraded to naive concatenation [%s]: %s", label, e)
            return naive_concat(clips)

    def render_video(
        self,
        clips: Sequence[bytes],
        images: Sequence[Optional[bytes]],
        music: Optional[bytes] = None,
        deadline: Optional[float] = None,
    ) -> MixResult:
        if not clips:
            raise EmptyPlaylist()
        missing = sum(1 for img in images if not img) + max(0, len(clips) - len(images))
        if missing:
            raise IncompleteImages(missing_count=missing, total_count=len(clips))

        try:
            timeline = self.build_timeline(clips, music, images=list(images), gapless=True, deadline=deadline)
            audio = render_audio(timeline)
            data = render_slideshow(
                [s.image for s in timeline.segments],
                [s.duration_seconds for s in timeline.segments],
                audio,
                width=self.video_size[0],
                height=self.video_size[1],
                timeout=_remaining(deadline) or self.timeout,
            )
        except (MixEncodingFailed, OSError) as e:
            logger.exception("Video render failed [MixEncodingFailed]: %s", e)
            raise MixEncodingFailed() from e
        return MixResult(
            data=data, content_type="video/mp4", extension="mp4",
            duration_seconds=audio.duration_seconds,
        )
