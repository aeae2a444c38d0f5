from fastapi import APIRouter, Depends
import logging

from ..dependencies import get_audio_cache, get_repository
from ..errors import AffirmationNotFound, InvalidRequest
from ..models import EnsureAudioRequest, EnsureAudioResponse, UserProfile

router = APIRouter()
logger = logging.getLogger("aiam.cache")


@router.post("/{affirmation_id}/audio", response_model=EnsureAudioResponse)
async def ensure_affirmation_audio(
    affirmation_id: str,
    body: EnsureAudioRequest,
    repository = Depends(get_repository),
    cache = Depends(get_audio_cache),
):
    """Return the cached narration for a voice, generating and storing it on a miss."""
    if not (body.user_id and body.voice_id):
        raise InvalidRequest()
    affirmation = await repository.get_affirmation(body.user_id, affirmation_id)
    if affirmation is None:
        raise AffirmationNotFound()
    profile = await repository.get_profile(body.user_id) or UserProfile(uid=body.user_id)
    result = await cache.ensure(profile, affirmation, body.voice_id)
    if result.generated:
        logger.info("Generated narration for %s voice=%s", affirmation_id, body.voice_id)
    return EnsureAudioResponse(audio_url=result.uri, generated=result.generated)
