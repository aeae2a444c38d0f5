import logging
from typing import Any, List, Optional

import httpx
from elevenlabs.client import AsyncElevenLabs
from elevenlabs.core.api_error import ApiError

from aiam.config import settings
from aiam.errors import SynthesisFailed, SynthesisRateLimited
from aiam.models import VoiceItem
from services.tts_models import CALM, DeliveryProfile

logger = logging.getLogger("aiam.voice")

# ElevenLabs limit is around 5000 characters per request
MAX_TEXT_LENGTH = 4500

UNUSUAL_ACTIVITY_STATUS = "detected_unusual_activity"

_client: Optional[AsyncElevenLabs] = None


def _get_client() -> AsyncElevenLabs:
    global _client
    if _client is None:
        if not settings.ELEVENLABS_API_KEY:
            raise SynthesisFailed("ElevenLabs API key is not configured.")
        _client = AsyncElevenLabs(api_key=settings.ELEVENLABS_API_KEY)
    return _client


def _find_status(body: Any) -> Optional[str]:
    """Dig the provider status code out of nested ``detail`` payloads."""
    if isinstance(body, dict):
        status = body.get("status")
        if isinstance(status, str):
            return status
        for value in body.values():
            found = _find_status(value)
            if found:
                return found
    return None


def classify_provider_error(status_code: Optional[int], body: Any):
    """Map a provider failure to SynthesisRateLimited or SynthesisFailed."""
    if status_code == 429 or _find_status(body) == UNUSUAL_ACTIVITY_STATUS:
        return SynthesisRateLimited()
    detail = body if isinstance(body, str) else str(body or "")
    return SynthesisFailed(detail=detail[:500] or None, providerStatus=status_code)


async def generate_elevenlabs_tts(text: str, voice_id: str, profile: DeliveryProfile = CALM) -> bytes:
    """Generates MP3 audio for ``text`` with the given ElevenLabs voice."""
    if len(text) > MAX_TEXT_LENGTH:
        raise SynthesisFailed(f"Text exceeds {MAX_TEXT_LENGTH} characters.")
    client = _get_client()
    try:
        audio_stream = client.text_to_speech.convert(
            text=text,
            voice_id=voice_id,
            model_id=settings.ELEVENLABS_MODEL_ID,
            voice_settings=profile.voice_settings(),
            output_format=settings.ELEVENLABS_OUTPUT_FORMAT,
        )
        audio_bytes = b""
        async for chunk in audio_stream:
            audio_bytes += chunk
    except ApiError as e:
        logger.warning("ElevenLabs TTS failed (status=%s): %s", e.status_code, e.body)
        raise classify_provider_error(e.status_code, e.body) from e
    except httpx.HTTPError as e:
        logger.warning("ElevenLabs TTS transport error: %s", e)
        raise SynthesisFailed(detail=str(e)) from e

    if not audio_bytes:
        raise SynthesisFailed("TTS generation failed, no audio data produced.")
    return audio_bytes


async def list_voices() -> List[VoiceItem]:
    """Stock voices from the provider catalog."""
    if not settings.ELEVENLABS_API_KEY:
        raise SynthesisFailed("ElevenLabs API key is not configured.")
    try:
        async with httpx.AsyncClient(timeout=settings.FETCH_TIMEOUT) as http:
            response = await http.get(
                f"{settings.ELEVENLABS_BASE_URL}/v1/voices",
                headers={"xi-api-key": settings.ELEVENLABS_API_KEY},
            )
    except httpx.HTTPError as e:
        raise SynthesisFailed("Failed to fetch voices from ElevenLabs.", detail=str(e)) from e
    if response.status_code >= 400:
        raise SynthesisFailed("Failed to fetch voices from ElevenLabs.", detail=response.text[:500])
    voices = response.json().get("voices") or []
    return [
        VoiceItem(voice_id=v["voice_id"], name=v.get("name") or v["voice_id"], category=v.get("category"))
        for v in voices
        if v.get("voice_id")
    ]
