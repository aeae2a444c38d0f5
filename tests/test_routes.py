import io
import logging
import subprocess
import time

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from aiam import dependencies
from aiam.errors import SynthesisFailed
from aiam.models import VoiceItem
from main import app
from services import tts_service
from services.audio_cache import AudioCache
from services.export_service import PlaylistExporter
from services.timeline_mixer import TimelineMixer
from services.voice_service import VoiceService

from tests.conftest import FakeSynthesizer, make_wav

UID = "user-1"
VOICE = "abc123"
CLONE = "clone-voice"


@pytest.fixture
def synth():
    return FakeSynthesizer()


@pytest.fixture
def client(repo, storage, synth):
    voices = VoiceService(repo, synthesize=synth, clone_cost=5)
    overrides = {
        dependencies.get_repository: lambda: repo,
        dependencies.get_storage: lambda: storage,
        dependencies.get_voice_service: lambda: voices,
        dependencies.get_audio_cache: lambda: AudioCache(repo, storage, voices),
        dependencies.get_exporter: lambda: PlaylistExporter(
            repo, storage, mixer=TimelineMixer(sample_rate=44100, channels=2), timeout=30,
        ),
    }
    app.dependency_overrides.update(overrides)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _seed_playlist(repo, storage, count=2, missing=()):
    ids = []
    for i in range(count):
        audio = {} if i in missing else {VOICE: storage.put(f"a{i}.wav", make_wav(0.2))}
        repo.add_affirmation(UID, f"a{i}", audio_urls=audio)
        ids.append(f"a{i}")
    repo.add_playlist(UID, "p1", ids, name="Evening Calm")


def _download_body(**kwargs):
    body = {"userId": UID, "playlistId": "p1", "voiceId": VOICE, "withMusic": False, "withImages": False}
    body.update(kwargs)
    return body


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "service": "aiam-api"}
    assert client.get("/").json()["service"] == "aiam-api"


def test_download_audio(client, repo, storage, no_ffmpeg):
    _seed_playlist(repo, storage)
    response = client.post("/playlist/download", json=_download_body())
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/wav"
    assert response.headers["content-disposition"] == 'attachment; filename="Evening_Calm_abc123.wav"'
    assert response.content[:4] == b"RIFF"


def test_download_incomplete_audio(client, repo, storage):
    _seed_playlist(repo, storage, count=2, missing=(1,))
    response = client.post("/playlist/download", json=_download_body())
    assert response.status_code == 400
    assert response.json() == {
        "error": "Not all affirmations have cached audio",
        "code": "IncompleteAudio",
        "action": "play_all",
        "missingCount": 1,
        "totalCount": 2,
    }


def test_download_missing_fields(client):
    response = client.post("/playlist/download", json={"userId": UID, "playlistId": "p1"})
    assert response.status_code == 400
    assert response.json()["code"] == "InvalidRequest"


def test_download_unknown_playlist(client):
    response = client.post("/playlist/download", json=_download_body(playlistId="nope"))
    assert response.status_code == 404
    assert response.json()["code"] == "PlaylistNotFound"


def test_download_unexpected_failure_is_generic_500(client, caplog):
    class _Broken:
        async def export(self, request):
            raise RuntimeError("disk full")

    app.dependency_overrides[dependencies.get_exporter] = lambda: _Broken()
    response = client.post("/playlist/download", json=_download_body())
    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to create the playlist file",
        "code": "MixEncodingFailed",
        "action": "retry",
    }
    assert "MixEncodingFailed" in caplog.text


def test_readiness(client, repo, storage):
    _seed_playlist(repo, storage, count=3, missing=(0,))
    response = client.get(
        "/playlist/readiness",
        params={"userId": UID, "playlistId": "p1", "voiceId": VOICE, "withImages": "true"},
    )
    assert response.status_code == 200
    assert response.json() == {"ready": False, "missingCount": 1, "totalCount": 3, "missingImages": 3}


def test_ensure_audio(client, repo, synth):
    repo.add_profile(UID)
    repo.add_affirmation(UID, "a1", text="I am enough")
    first = client.post("/affirmations/a1/audio", json={"userId": UID, "voiceId": VOICE})
    second = client.post("/affirmations/a1/audio", json={"userId": UID, "voiceId": VOICE})
    assert first.status_code == 200
    assert first.json()["generated"] is True
    assert second.json() == {"audioUrl": first.json()["audioUrl"], "generated": False}
    assert len(synth.calls) == 1


def test_ensure_audio_unknown_affirmation(client):
    response = client.post("/affirmations/nope/audio", json={"userId": UID, "voiceId": VOICE})
    assert response.status_code == 404
    assert response.json()["code"] == "AffirmationNotFound"


def test_ensure_audio_insufficient_credits(client, repo):
    repo.add_profile(UID, credits=2, voice_clone_id=CLONE)
    repo.add_affirmation(UID, "a1")
    response = client.post("/affirmations/a1/audio", json={"userId": UID, "voiceId": CLONE})
    assert response.status_code == 402
    body = response.json()
    assert body["code"] == "InsufficientCredits"
    assert body["action"] == "top_up"
    assert body["required"] == 5
    assert body["available"] == 2


def test_text_to_speech(client, synth):
    response = client.post("/text-to-speech", json={"text": "Hello", "voiceId": VOICE, "profile": "expressive"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == synth.audio
    assert synth.calls == [("Hello", VOICE, "expressive")]


def test_text_to_speech_rejects_unknown_profile(client, synth):
    response = client.post("/text-to-speech", json={"text": "Hello", "voiceId": VOICE, "profile": "shouty"})
    assert response.status_code == 422
    assert synth.calls == []


def test_text_to_speech_requires_text(client):
    response = client.post("/text-to-speech", json={"text": "", "voiceId": VOICE})
    assert response.status_code == 400
    assert response.json()["code"] == "InvalidRequest"


def test_text_to_speech_rate_limited(client, synth):
    synth.error = tts_service.classify_provider_error(429, {})
    response = client.post("/text-to-speech", json={"text": "Hello", "voiceId": VOICE})
    assert response.status_code == 429
    assert response.json()["action"] == "upgrade_plan"


def test_voices_put_clone_first(client, repo, monkeypatch):
    async def _catalog():
        return [VoiceItem(voice_id="stock-1", name="Sarah", category="premade")]

    monkeypatch.setattr(tts_service, "list_voices", _catalog)
    repo.add_profile(UID, voice_clone_id=CLONE, voice_clone_name="Me")

    plain = client.get("/voices").json()
    assert plain == {"voices": [{"voiceId": "stock-1", "name": "Sarah", "category": "premade"}]}

    mine = client.get("/voices", params={"userId": UID}).json()
    assert [v["voiceId"] for v in mine["voices"]] == [CLONE, "stock-1"]
    assert mine["voices"][0]["name"] == "Me"


def test_voices_provider_failure(client, monkeypatch):
    async def _down():
        raise SynthesisFailed("Failed to fetch voices from ElevenLabs.")

    monkeypatch.setattr(tts_service, "list_voices", _down)
    response = client.get("/voices")
    assert response.status_code == 502
    assert response.json()["code"] == "SynthesisFailed"


def _png():
    buf = io.BytesIO()
    Image.new("RGB", (32, 32), (200, 50, 50)).save(buf, "PNG")
    return buf.getvalue()


def test_download_video_failure_hides_encoder_output(client, repo, storage, monkeypatch, caplog):
    _seed_playlist(repo, storage)
    for i in range(2):
        repo.affirmations[(UID, f"a{i}")].image_url = storage.put(f"img/a{i}.png", _png())

    def _ffmpeg_crash(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr=b"/tmp/aiam_video_x/frames.ffconcat: secret internal path")

    monkeypatch.setattr("services.audio_codec.subprocess.run", _ffmpeg_crash)
    with caplog.at_level(logging.ERROR, logger="aiam.mixer"):
        response = client.post("/playlist/download", json=_download_body(withImages=True))

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to create the playlist file",
        "code": "MixEncodingFailed",
        "action": "retry",
    }
    assert "secret" not in response.text
    assert any(r.exc_info for r in caplog.records if "Video render failed" in r.getMessage())


def test_download_timeout(client, repo, storage):
    class _Stalled(TimelineMixer):
        def mix_audio(self, clips, music=None, with_music=False, deadline=None):
            time.sleep(0.3)
            raise AssertionError("mix outlived its budget")

    _seed_playlist(repo, storage)
    app.dependency_overrides[dependencies.get_exporter] = lambda: PlaylistExporter(
        repo, storage, mixer=_Stalled(sample_rate=44100, channels=2), timeout=0.05,
    )
    response = client.post("/playlist/download", json=_download_body())
    assert response.status_code == 504
    assert response.json()["code"] == "MixTimeout"


def test_readiness_skips_deleted_affirmations(client, repo, storage):
    _seed_playlist(repo, storage, count=2)
    repo.playlists[(UID, "p1")].affirmation_ids.append("deleted")
    response = client.get("/playlist/readiness", params={"userId": UID, "playlistId": "p1", "voiceId": VOICE})
    assert response.json() == {"ready": True, "missingCount": 0, "totalCount": 2, "missingImages": 0}
