from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict

from services.tts_models import ProfileName

# Domain records (Firestore documents)

class Affirmation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str = Field("", alias="affirmation")
    category_id: str = Field("", alias="categoryId")
    category_title: str = Field("", alias="categoryTitle")
    image_url: Optional[str] = Field(None, alias="imageUrl")
    favorite: bool = False
    audio_urls: Dict[str, str] = Field(default_factory=dict, alias="audioUrls")
    use_my_voice: bool = Field(False, alias="useMyVoice")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    def audio_for(self, voice_id: str) -> Optional[str]:
        return self.audio_urls.get(voice_id) or None


class Playlist(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = "playlist"
    affirmation_ids: List[str] = Field(default_factory=list, alias="affirmationIds")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class UserProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    credits: int = 0
    voice_clone_id: Optional[str] = Field(None, alias="voiceCloneId")
    voice_clone_name: Optional[str] = Field(None, alias="voiceCloneName")
    use_my_voice_by_default: bool = Field(False, alias="useMyVoiceByDefault")

    def is_personal_voice(self, voice_id: Optional[str]) -> bool:
        return bool(self.voice_clone_id) and voice_id == self.voice_clone_id


class MixRecord(BaseModel):
    """Cached combined output for (playlist, voice, withMusic)."""
    model_config = ConfigDict(populate_by_name=True)

    fingerprint: str
    uri: str
    content_type: str = Field(alias="contentType")
    extension: str
    created_at: Optional[datetime] = Field(None, alias="createdAt")


# API bodies

class MixRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field("", alias="userId")
    playlist_id: str = Field("", alias="playlistId")
    voice_id: str = Field("", alias="voiceId")
    with_music: bool = Field(False, alias="withMusic")
    with_images: bool = Field(False, alias="withImages")


class ReadinessResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ready: bool
    missing_count: int = Field(alias="missingCount")
    total_count: int = Field(alias="totalCount")
    missing_images: int = Field(0, alias="missingImages")


class TextToSpeechRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    voice_id: str = Field("", alias="voiceId")
    profile: ProfileName = "calm"
    user_id: Optional[str] = Field(None, alias="userId")


class EnsureAudioRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field("", alias="userId")
    voice_id: str = Field("", alias="voiceId")


class EnsureAudioResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio_url: str = Field(alias="audioUrl")
    generated: bool


class VoiceItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    voice_id: str = Field(alias="voiceId")
    name: str
    category: Optional[str] = None


class VoicesResponse(BaseModel):
    voices: List[VoiceItem]
