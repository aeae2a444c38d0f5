import os
from pathlib import Path
from dotenv import load_dotenv
from typing import Optional

# Load .env robustly (try project root and CWD)
_ROOT = Path(__file__).resolve().parent.parent
_candidates = [
    _ROOT / ".env",
    Path.cwd() / ".env",
]
for p in _candidates:
    try:
        if p.exists():
            load_dotenv(p, override=False)
    except Exception:
        pass


def _clean_private_key(raw: Optional[str]) -> Optional[str]:
    """Strip surrounding quotes and unescape newlines from a pasted service-account key."""
    if not raw:
        return None
    key = raw.strip().strip("'\"")
    return key.replace("\\n", "\n")


class Settings:
    # Firebase (service account; falls back to application default credentials)
    FIREBASE_PROJECT_ID: Optional[str] = os.getenv("FIREBASE_PROJECT_ID")
    FIREBASE_CLIENT_EMAIL: Optional[str] = os.getenv("FIREBASE_CLIENT_EMAIL")
    FIREBASE_PRIVATE_KEY: Optional[str] = _clean_private_key(os.getenv("FIREBASE_PRIVATE_KEY"))
    FIREBASE_STORAGE_BUCKET: Optional[str] = os.getenv("FIREBASE_STORAGE_BUCKET")

    # ElevenLabs
    ELEVENLABS_API_KEY: Optional[str] = os.getenv("ELEVENLABS_API_KEY")
    ELEVENLABS_MODEL_ID: str = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")
    ELEVENLABS_OUTPUT_FORMAT: str = os.getenv("ELEVENLABS_OUTPUT_FORMAT", "mp3_44100_128")
    ELEVENLABS_BASE_URL: str = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io")
    DEFAULT_VOICE_ID: str = os.getenv("DEFAULT_VOICE_ID", "EXAVITQu4vr4xnSDxMaL")

    # Credits
    VOICE_CLONE_COST: int = int(os.getenv("VOICE_CLONE_COST", "5"))

    # Mixing
    GAP_SECONDS: float = float(os.getenv("AIAM_GAP_SECONDS", "0.5"))
    MUSIC_GAIN: float = float(os.getenv("AIAM_MUSIC_GAIN", "0.2"))
    MUSIC_PREFIX: str = os.getenv("AIAM_MUSIC_PREFIX", "music/")
    SAMPLE_RATE: int = int(os.getenv("AIAM_SAMPLE_RATE", "44100"))
    CHANNELS: int = int(os.getenv("AIAM_CHANNELS", "2"))
    MP3_BITRATE: str = os.getenv("AIAM_MP3_BITRATE", "128k")
    VIDEO_WIDTH: int = int(os.getenv("AIAM_VIDEO_WIDTH", "1920"))
    VIDEO_HEIGHT: int = int(os.getenv("AIAM_VIDEO_HEIGHT", "1080"))

    # Timeouts
    SIGNED_URL_TTL: int = max(900, int(os.getenv("AIAM_SIGNED_URL_TTL", "900")))  # at least 15 minutes
    MIX_TIMEOUT: float = float(os.getenv("AIAM_MIX_TIMEOUT", "300"))
    FETCH_TIMEOUT: float = float(os.getenv("AIAM_FETCH_TIMEOUT", "60"))

    LOG_LEVEL: str = os.getenv("AIAM_LOG_LEVEL", "INFO")

settings = Settings()
