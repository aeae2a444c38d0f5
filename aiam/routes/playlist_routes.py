from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
import logging

from ..dependencies import get_exporter, get_repository
from ..errors import AiamError, InvalidRequest, MixEncodingFailed, PlaylistNotFound
from ..models import MixRequest, ReadinessResponse
from ..readiness import readiness_report

router = APIRouter()
logger = logging.getLogger("aiam.export")


@router.post("/download")
async def download_playlist(
    body: MixRequest,
    exporter = Depends(get_exporter),
):
    """
    Download a playlist as one file.

    Body: { userId, playlistId, voiceId, withMusic, withImages }
      - audio only: narrations joined with short silences (MP3, or WAV without ffmpeg)
      - withMusic: background music looped underneath at low volume
      - withImages: MP4 slideshow, each image held for its narration
    """
    try:
        result = await exporter.export(body)
    except AiamError:
        raise
    except Exception as e:
        logger.exception("Playlist download failed [MixEncodingFailed]: %s", e)
        raise MixEncodingFailed() from e
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={
            "Content-Disposition": result.content_disposition,
            "X-Aiam-Mix-Cached": "1" if result.cached else "0",
            "X-Aiam-Mix-Degraded": "1" if result.degraded else "0",
        },
    )


@router.get("/readiness", response_model=ReadinessResponse)
async def playlist_readiness(
    user_id: str = Query(..., alias="userId"),
    playlist_id: str = Query(..., alias="playlistId"),
    voice_id: str = Query(..., alias="voiceId"),
    with_images: bool = Query(False, alias="withImages"),
    repository = Depends(get_repository),
):
    """Whether every affirmation has cached audio for the voice (and images, if asked)."""
    if not voice_id:
        raise InvalidRequest()
    playlist = await repository.get_playlist(user_id, playlist_id)
    if playlist is None:
        raise PlaylistNotFound()
    affirmations = await repository.get_affirmations(user_id, playlist.affirmation_ids)
    return readiness_report(affirmations, voice_id, with_images=with_images)
