"""PCM decoding/encoding helpers.

Everything the mixer touches is 16-bit signed PCM held as an ``int16`` numpy array
of shape ``(frames, channels)``. Compressed inputs are decoded with ffmpeg; WAV
files already at the mix sample rate are read directly.
"""
import logging
import shutil
import struct
import subprocess
from dataclasses import dataclass

import numpy as np

from aiam.config import settings
from aiam.errors import MixEncodingFailed, MixTimeout

logger = logging.getLogger("aiam.mixer")

SAMPLE_WIDTH = 2  # bytes, 16-bit PCM
WAV_HEADER_SIZE = 44
INT16_MIN = -32768
INT16_MAX = 32767


@dataclass
class PcmAudio:
    samples: np.ndarray
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_seconds(self) -> float:
        return self.frames / float(self.sample_rate)


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


def silence(frames: int, channels: int) -> np.ndarray:
    return np.zeros((max(frames, 0), channels), dtype=np.int16)


def to_channels(samples: np.ndarray, channels: int) -> np.ndarray:
    """Conform a ``(frames, n)`` buffer to ``channels``; mono is duplicated from channel 0."""
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    current = samples.shape[1]
    if current == channels:
        return samples
    if current == 1:
        return np.repeat(samples, channels, axis=1)
    if channels == 1:
        return samples[:, :1]
    if current > channels:
        return samples[:, :channels]
    pad = np.repeat(samples[:, :1], channels - current, axis=1)
    return np.concatenate([samples, pad], axis=1)


# --- WAV ---

def wav_header(frames: int, sample_rate: int, channels: int) -> bytes:
    """Canonical 44-byte RIFF/WAVE header for 16-bit PCM."""
    block_align = channels * SAMPLE_WIDTH
    byte_rate = sample_rate * block_align
    data_size = frames * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        SAMPLE_WIDTH * 8,
        b"data",
        data_size,
    )


def encode_wav(audio: PcmAudio) -> bytes:
    samples = np.ascontiguousarray(audio.samples, dtype="<i2")
    return wav_header(audio.frames, audio.sample_rate, audio.channels) + samples.tobytes()


def is_wav(data: bytes) -> bool:
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def parse_wav(data: bytes) -> PcmAudio:
    """Read a 16-bit PCM WAV file, walking chunks so extra chunks are tolerated."""
    if not is_wav(data):
        raise MixEncodingFailed("Not a WAV file")
    offset = 12
    fmt = None
    while offset + 8 <= len(data):
        chunk_id, chunk_size = struct.unpack_from("<4sI", data, offset)
        body = offset + 8
        if chunk_id == b"fmt ":
            audio_format, channels, sample_rate, _, _, bits = struct.unpack_from("<HHIIHH", data, body)
            fmt = (audio_format, channels, sample_rate, bits)
        elif chunk_id == b"data":
            if fmt is None:
                raise MixEncodingFailed("WAV data chunk before fmt chunk")
            audio_format, channels, sample_rate, bits = fmt
            if audio_format != 1 or bits != 16:
                raise MixEncodingFailed(f"Unsupported WAV encoding (format={audio_format}, bits={bits})")
            raw = data[body:body + chunk_size]
            usable = len(raw) - (len(raw) % (channels * SAMPLE_WIDTH))
            samples = np.frombuffer(raw[:usable], dtype="<i2").astype(np.int16).reshape(-1, channels)
            return PcmAudio(samples=samples, sample_rate=sample_rate)
        offset = body + chunk_size + (chunk_size & 1)
    raise MixEncodingFailed("WAV file has no data chunk")


# --- FFMPEG helpers ---

def run_ffmpeg(cmd: list, input_bytes: bytes = None, timeout: float = None) -> bytes:
    if timeout is not None and timeout <= 0:
        raise MixTimeout()
    try:
        result = subprocess.run(
            cmd,
            input=input_bytes,
            capture_output=True,
            check=True,
            timeout=settings.MIX_TIMEOUT if timeout is None else timeout,
        )
        return result.stdout
    except subprocess.TimeoutExpired as e:
        raise MixTimeout() from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode("utf-8", "replace")
        logger.error("FFMPEG ERROR: %s", stderr[-800:])
        raise MixEncodingFailed(f"ffmpeg failed: {stderr[-200:].strip()}") from e
    except FileNotFoundError as e:
        raise MixEncodingFailed("ffmpeg is not installed") from e


def decode_audio(data: bytes, sample_rate: int = None, channels: int = None, timeout: float = None) -> PcmAudio:
    """Decode any supported container into PCM at the mix format."""
    sample_rate = sample_rate or settings.SAMPLE_RATE
    channels = channels or settings.CHANNELS
    if not data:
        raise MixEncodingFailed("Empty audio clip")
    if is_wav(data):
        pcm = parse_wav(data)
        if pcm.sample_rate == sample_rate:
            return PcmAudio(samples=to_channels(pcm.samples, channels), sample_rate=sample_rate)
    raw = run_ffmpeg([
        "ffmpeg", "-v", "error", "-i", "pipe:0",
        "-f", "s16le", "-acodec", "pcm_s16le",
        "-ar", str(sample_rate), "-ac", str(channels),
        "pipe:1",
    ], input_bytes=data, timeout=timeout)
    usable = len(raw) - (len(raw) % (channels * SAMPLE_WIDTH))
    samples = np.frombuffer(raw[:usable], dtype="<i2").astype(np.int16).reshape(-1, channels)
    return PcmAudio(samples=samples, sample_rate=sample_rate)


def encode_mp3(audio: PcmAudio, bitrate: str = None, timeout: float = None) -> bytes:
    samples = np.ascontiguousarray(audio.samples, dtype="<i2")
    return run_ffmpeg([
        "ffmpeg", "-v", "error",
        "-f", "s16le", "-ar", str(audio.sample_rate), "-ac", str(audio.channels),
        "-i", "pipe:0",
        "-c:a", "libmp3lame", "-b:a", bitrate or settings.MP3_BITRATE,
        "-f", "mp3", "pipe:1",
    ], input_bytes=samples.tobytes(), timeout=timeout)
