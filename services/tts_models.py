from pydantic import BaseModel, Field
from typing import Dict, Literal

# --- Pydantic Models for TTS Configuration ---

class DeliveryProfile(BaseModel):
    """ElevenLabs voice settings for one style of delivery."""
    name: str
    stability: float = Field(0.75, ge=0.0, le=1.0, description="Higher = more consistent, calmer delivery")
    similarity_boost: float = Field(0.75, ge=0.0, le=1.0, description="Voice clarity/similarity")
    style: float = Field(0.15, ge=0.0, le=1.0, description="Lower = more natural, less dramatic")
    use_speaker_boost: bool = True

    def voice_settings(self) -> dict:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


# Calm narration for meditative playback
CALM = DeliveryProfile(name="calm", stability=0.75, similarity_boost=0.75, style=0.15)
# Lower stability for a livelier read
EXPRESSIVE = DeliveryProfile(name="expressive", stability=0.5, similarity_boost=0.75, style=0.3)

DELIVERY_PROFILES: Dict[str, DeliveryProfile] = {p.name: p for p in (CALM, EXPRESSIVE)}

ProfileName = Literal["calm", "expressive"]


def get_profile(name: str) -> DeliveryProfile:
    return DELIVERY_PROFILES.get(name or "calm", CALM)
