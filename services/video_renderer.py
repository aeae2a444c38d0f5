"""Slideshow video: each image is held for exactly the length of its narration clip."""
import io
import logging
import shutil
import tempfile
from pathlib import Path
from typing import List, Sequence, Tuple

from PIL import Image

from aiam.config import settings
from aiam.errors import MixEncodingFailed
from services.audio_codec import PcmAudio, encode_wav, run_ffmpeg

logger = logging.getLogger("aiam.mixer")

VIDEO_FPS = 25


def letterbox(image_bytes: bytes, width: int, height: int) -> Image.Image:
    """Scale to fit inside ``width``x``height`` keeping aspect ratio, pad the rest with black."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if img.mode != "RGB":
                img = img.convert("RGB")
            scale = min(width / img.width, height / img.height)
            size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
            resized = img.resize(size, Image.Resampling.LANCZOS)
    except (OSError, ValueError) as e:
        raise MixEncodingFailed(f"Unable to decode image: {e}") from e
    canvas = Image.new("RGB", (width, height), (0, 0, 0))
    canvas.paste(resized, ((width - size[0]) // 2, (height - size[1]) // 2))
    return canvas


def build_concat_script(frames: Sequence[Tuple[Path, float]]) -> str:
    """ffconcat list showing each frame for its duration.

    The concat demuxer ignores the duration of the final entry unless the file is
    listed once more afterwards.
    """
    lines = ["ffconcat version 1.0"]
    for path, duration in frames:
        lines.append(f"file '{path.resolve()}'")
        lines.append(f"duration {duration:.6f}")
    if frames:
        lines.append(f"file '{frames[-1][0].resolve()}'")
    return "\n".join(lines) + "\n"


def render_slideshow(
    images: List[bytes],
    durations: List[float],
    audio_track: PcmAudio,
    width: int = None,
    height: int = None,
    timeout: float = None,
) -> bytes:
    """Encode an H.264/AAC MP4 with the moov atom at the front."""
    width = width or settings.VIDEO_WIDTH
    height = height or settings.VIDEO_HEIGHT
    if len(images) != len(durations):
        raise MixEncodingFailed("Every image needs a matching narration clip")

    temp_dir = Path(tempfile.mkdtemp(prefix="aiam_video_"))
    try:
        frames = []
        for i, (image, duration) in enumerate(zip(images, durations)):
            frame_path = temp_dir / f"frame_{i}.jpg"
            letterbox(image, width, height).save(frame_path, "JPEG", quality=90)
            frames.append((frame_path, duration))

        concat_path = temp_dir / "frames.ffconcat"
        concat_path.write_text(build_concat_script(frames))
        audio_path = temp_dir / "narration.wav"
        audio_path.write_bytes(encode_wav(audio_track))
        output_path = temp_dir / "output.mp4"

        cmd = [
            "ffmpeg", "-y", "-v", "error",
            "-f", "concat", "-safe", "0", "-i", str(concat_path),
            "-i", str(audio_path),
            "-map", "0:v", "-map", "1:a",
            "-vf", f"fps={VIDEO_FPS},format=yuv420p",
            "-c:v", "libx264", "-preset", "fast", "-crf", "23",
            "-c:a", "aac", "-b:a", "128k",
            "-shortest",
            "-movflags", "+faststart",
            str(output_path),
        ]
        logger.info("Creating video with FFmpeg (%d segments, %.2fs)", len(frames), audio_track.duration_seconds)
        run_ffmpeg(cmd, timeout=timeout)
        return output_path.read_bytes()
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)
