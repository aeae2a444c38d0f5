"""Voice resolution: stock voices are free, the user's cloned voice costs credits."""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from aiam.config import settings
from aiam.errors import InsufficientCredits, InvalidRequest
from aiam.models import UserProfile, VoiceItem
from services import tts_service
from services.tts_models import DeliveryProfile, get_profile

logger = logging.getLogger("aiam.voice")

Synthesizer = Callable[[str, str, DeliveryProfile], Awaitable[bytes]]


@dataclass
class CreditCheck:
    personal: bool
    cost: int = 0
    remaining_uses: Optional[int] = None

    @property
    def running_low(self) -> bool:
        return self.personal and self.remaining_uses == 1


def default_voice(profile: Optional[UserProfile], catalog: Sequence[VoiceItem] = ()) -> str:
    if profile and profile.voice_clone_id:
        return profile.voice_clone_id
    if catalog:
        return catalog[0].voice_id
    return settings.DEFAULT_VOICE_ID


class VoiceService:
    def __init__(
        self,
        repository,
        synthesize: Synthesizer = tts_service.generate_elevenlabs_tts,
        clone_cost: int = settings.VOICE_CLONE_COST,
    ):
        self.repository = repository
        self._synthesize = synthesize
        self.clone_cost = clone_cost

    def check_credits(self, profile: Optional[UserProfile], voice_id: str) -> CreditCheck:
        """Raise InsufficientCredits when a personal-voice generation can't be paid for."""
        if profile is None or not profile.is_personal_voice(voice_id):
            return CreditCheck(personal=False)
        if profile.credits < self.clone_cost:
            raise InsufficientCredits(required=self.clone_cost, available=profile.credits)
        check = CreditCheck(
            personal=True,
            cost=self.clone_cost,
            remaining_uses=profile.credits // self.clone_cost,
        )
        if check.running_low:
            logger.warning("User %s has credits for one more voice playback", profile.uid)
        return check

    async def synthesize(
        self,
        text: str,
        voice_id: str,
        profile: Optional[UserProfile] = None,
        delivery: str = "calm",
    ) -> bytes:
        if not text or not text.strip():
            raise InvalidRequest("Text is required to generate speech.")
        if not voice_id:
            raise InvalidRequest("A valid voiceId is required.")
        self.check_credits(profile, voice_id)
        return await self._synthesize(text, voice_id, get_profile(delivery))

    async def charge(self, profile: Optional[UserProfile], voice_id: str) -> Optional[int]:
        """Deduct the clone cost for one newly generated clip. Stock voices are free."""
        if profile is None or not profile.is_personal_voice(voice_id):
            return None
        remaining = await self.repository.deduct_credits(profile.uid, self.clone_cost)
        profile.credits = remaining
        return remaining
