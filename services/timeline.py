"""Timeline model: ordered segments plus an optional looping background track."""
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from services.audio_codec import INT16_MAX, INT16_MIN, PcmAudio, silence, to_channels


@dataclass
class Segment:
    kind: str  # "audio" or "imageAudio"
    audio: PcmAudio
    image: Optional[bytes] = None

    @property
    def duration_seconds(self) -> float:
        return self.audio.duration_seconds


@dataclass
class BackgroundTrack:
    audio: PcmAudio
    gain: float = 0.2
    loop: bool = True


@dataclass
class Timeline:
    segments: List[Segment] = field(default_factory=list)
    gap_seconds: float = 0.0
    background: Optional[BackgroundTrack] = None
    sample_rate: int = 44100
    channels: int = 2

    @property
    def gap_frames(self) -> int:
        return int(round(self.gap_seconds * self.sample_rate))

    @property
    def total_frames(self) -> int:
        if not self.segments:
            return 0
        body = sum(s.audio.frames for s in self.segments)
        return body + self.gap_frames * (len(self.segments) - 1)

    @property
    def duration_seconds(self) -> float:
        return self.total_frames / float(self.sample_rate)

    def offsets(self) -> List[float]:
        """Start time of each segment in seconds."""
        starts, cursor = [], 0
        for s in self.segments:
            starts.append(cursor / float(self.sample_rate))
            cursor += s.audio.frames + self.gap_frames
        return starts


def concat_with_gaps(clips: List[np.ndarray], gap_frames: int, channels: int) -> np.ndarray:
    """Join clips in order with ``gap_frames`` of silence between consecutive clips."""
    parts: List[np.ndarray] = []
    for i, clip in enumerate(clips):
        if i > 0 and gap_frames > 0:
            parts.append(silence(gap_frames, channels))
        parts.append(to_channels(clip, channels))
    if not parts:
        return silence(0, channels)
    return np.concatenate(parts, axis=0)


def overlay_loop(narration: np.ndarray, music: np.ndarray, gain: float, loop: bool = True) -> np.ndarray:
    """Add ``music`` looped by sample index (``i % len(music)``) at ``gain`` under ``narration``.

    Narration keeps unit gain; each channel is summed independently and the result
    is clamped to the int16 range.
    """
    frames, channels = narration.shape
    if frames == 0 or len(music) == 0:
        return narration.copy()
    music = to_channels(music, channels)
    if loop:
        looped = music[np.arange(frames) % len(music)]
    else:
        looped = np.concatenate([music[:frames], silence(frames - min(frames, len(music)), channels)], axis=0)
    mixed = narration.astype(np.int32) + np.rint(looped.astype(np.float64) * gain).astype(np.int32)
    return np.clip(mixed, INT16_MIN, INT16_MAX).astype(np.int16)


def render_audio(timeline: Timeline) -> PcmAudio:
    narration = concat_with_gaps(
        [s.audio.samples for s in timeline.segments], timeline.gap_frames, timeline.channels
    )
    background = timeline.background
    if background is not None:
        narration = overlay_loop(narration, background.audio.samples, background.gain, background.loop)
    return PcmAudio(samples=narration, sample_rate=timeline.sample_rate)
