"""Error taxonomy for the playlist media pipeline.

Every failure that can reach a caller is an ``AiamError`` subclass carrying a
stable ``label`` (used in server logs), an HTTP status, a user-facing message and
an optional remediation ``action`` the client acts on (``top_up`` opens the credit
purchase flow, ``play_all`` starts the playback engine to fill the audio cache).
"""
from typing import Any, Dict, Optional


class AiamError(Exception):
    label: str = "AiamError"
    status_code: int = 500
    default_message: str = "Something went wrong."
    action: Optional[str] = None

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = {k: v for k, v in extra.items() if v is not None}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.label}
        if self.action:
            body["action"] = self.action
        body.update(self.extra)
        return body


class InvalidRequest(AiamError):
    label = "InvalidRequest"
    status_code = 400
    default_message = "Missing required fields"


class PlaylistNotFound(AiamError):
    label = "PlaylistNotFound"
    status_code = 404
    default_message = "Playlist not found"


class AffirmationNotFound(AiamError):
    label = "AffirmationNotFound"
    status_code = 404
    default_message = "Affirmation not found"


class EmptyPlaylist(AiamError):
    label = "EmptyPlaylist"
    status_code = 400
    default_message = "Playlist is empty"


class IncompleteAudio(AiamError):
    label = "IncompleteAudio"
    status_code = 400
    default_message = "Not all affirmations have cached audio"
    action = "play_all"

    def __init__(self, missing_count: int, total_count: int, message: Optional[str] = None):
        self.missing_count = missing_count
        self.total_count = total_count
        super().__init__(message, missingCount=missing_count, totalCount=total_count)


class IncompleteImages(AiamError):
    label = "IncompleteImages"
    status_code = 400
    default_message = "Not all affirmations have images"

    def __init__(self, missing_count: int, total_count: int, message: Optional[str] = None):
        self.missing_count = missing_count
        self.total_count = total_count
        super().__init__(message, missingCount=missing_count, totalCount=total_count)


class InsufficientCredits(AiamError):
    label = "InsufficientCredits"
    status_code = 402
    action = "top_up"

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        message = (
            f"Voice clone playback costs {required} aiams. You currently have {available}. "
            "Please top up your balance."
        )
        super().__init__(message, required=required, available=available)


class SynthesisRateLimited(AiamError):
    label = "SynthesisRateLimited"
    status_code = 429
    action = "upgrade_plan"
    default_message = (
        "ElevenLabs temporarily disabled free-tier synthesis due to unusual activity. "
        "Upgrade your ElevenLabs plan to continue using Play all."
    )


class SynthesisFailed(AiamError):
    label = "SynthesisFailed"
    status_code = 502
    action = "retry"
    default_message = "Unable to generate audio for one of your affirmations."


class StorageFetchFailed(AiamError):
    label = "StorageFetchFailed"
    status_code = 502
    action = "retry"
    default_message = "Failed to fetch one or more audio files"


class MixEncodingFailed(AiamError):
    label = "MixEncodingFailed"
    status_code = 500
    action = "retry"
    default_message = "Failed to create the playlist file"


class MixTimeout(AiamError):
    label = "MixTimeout"
    status_code = 504
    action = "retry"
    default_message = "Creating the playlist file took too long. Please try again."
