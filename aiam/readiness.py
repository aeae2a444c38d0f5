"""Readiness checks run before mixing or bulk download.

A playlist slot whose affirmation no longer exists is an empty slot: it is
skipped, never counted as missing, since playback skips it too.
"""
from typing import List, Optional, Sequence

from .models import Affirmation, ReadinessResponse


def present(affirmations: Sequence[Optional[Affirmation]]) -> List[Affirmation]:
    return [a for a in affirmations if a is not None]


def missing_audio(affirmations: Sequence[Optional[Affirmation]], voice_id: str) -> List[int]:
    """Indexes of existing affirmations without cached audio for ``voice_id``."""
    return [i for i, a in enumerate(affirmations) if a is not None and not a.audio_for(voice_id)]


def missing_images(affirmations: Sequence[Optional[Affirmation]]) -> List[int]:
    return [i for i, a in enumerate(affirmations) if a is not None and not a.image_url]


def is_ready(affirmations: Sequence[Optional[Affirmation]], voice_id: str) -> bool:
    return bool(present(affirmations)) and not missing_audio(affirmations, voice_id)


def readiness_report(
    affirmations: Sequence[Optional[Affirmation]],
    voice_id: str,
    with_images: bool = False,
) -> ReadinessResponse:
    total = len(present(affirmations))
    missing = len(missing_audio(affirmations, voice_id))
    images = len(missing_images(affirmations)) if with_images else 0
    return ReadinessResponse(
        ready=missing == 0 and images == 0 and total > 0,
        missing_count=missing,
        total_count=total,
        missing_images=images,
    )
