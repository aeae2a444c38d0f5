from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from typing import Optional
import logging

from services import tts_service

from ..dependencies import get_repository, get_voice_service
from ..models import TextToSpeechRequest, VoiceItem, VoicesResponse

router = APIRouter()
logger = logging.getLogger("aiam.voice")


@router.post("/text-to-speech")
async def text_to_speech(
    body: TextToSpeechRequest,
    repository = Depends(get_repository),
    voices = Depends(get_voice_service),
):
    """
    Speak one piece of text and return the MP3.

    Personal-voice requests are credit-checked but not charged; charging happens
    when a narration is cached.
    """
    profile = await repository.get_profile(body.user_id) if body.user_id else None
    audio = await voices.synthesize(body.text, body.voice_id, profile=profile, delivery=body.profile)
    logger.info("TTS %d chars voice=%s profile=%s -> %d bytes", len(body.text), body.voice_id, body.profile, len(audio))
    return Response(content=audio, media_type="audio/mpeg")


@router.get("/voices", response_model=VoicesResponse)
async def get_voices(
    user_id: Optional[str] = Query(None, alias="userId"),
    repository = Depends(get_repository),
):
    """Stock voices; the caller's cloned voice comes first when they have one."""
    catalog = await tts_service.list_voices()
    if user_id:
        profile = await repository.get_profile(user_id)
        if profile and profile.voice_clone_id:
            clone = VoiceItem(
                voice_id=profile.voice_clone_id,
                name=profile.voice_clone_name or "My voice",
                category="cloned",
            )
            catalog = [clone] + [v for v in catalog if v.voice_id != clone.voice_id]
    return VoicesResponse(voices=catalog)
