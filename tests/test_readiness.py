from aiam.models import Affirmation
from aiam.readiness import is_ready, missing_audio, missing_images, readiness_report


def _aff(aid, voices=(), image=None):
    return Affirmation(id=aid, text=aid, audio_urls={v: f"gs://b/{aid}/{v}.mp3" for v in voices}, image_url=image)


def test_missing_audio_is_per_voice():
    affs = [_aff("a", ["v1"]), _aff("b", ["v2"]), _aff("c", ["v1", "v2"])]
    assert missing_audio(affs, "v1") == [1]
    assert missing_audio(affs, "v2") == [0]
    assert is_ready(affs, "v1") is False


def test_deleted_affirmation_is_skipped():
    affs = [_aff("a", ["v1"]), None]
    assert missing_audio(affs, "v1") == []
    assert missing_images(affs) == [0]
    assert is_ready(affs, "v1") is True
    report = readiness_report(affs, "v1")
    assert (report.ready, report.missing_count, report.total_count) == (True, 0, 1)


def test_only_deleted_affirmations_is_not_ready():
    assert is_ready([None, None], "v1") is False
    report = readiness_report([None], "v1")
    assert (report.ready, report.total_count) == (False, 0)


def test_empty_audio_url_is_missing():
    affs = [Affirmation(id="a", audio_urls={"v1": ""})]
    assert missing_audio(affs, "v1") == [0]


def test_report_counts():
    affs = [_aff("a", ["v1"], image="https://img/a.jpg"), _aff("b", ["v1"]), _aff("c"), _aff("d", ["v1"])]
    report = readiness_report(affs, "v1", with_images=True)
    assert report.ready is False
    assert report.missing_count == 1
    assert report.total_count == 4
    assert report.missing_images == 3
    assert report.model_dump(by_alias=True) == {
        "ready": False, "missingCount": 1, "totalCount": 4, "missingImages": 3,
    }


def test_report_ready_without_images():
    affs = [_aff("a", ["v1"]), _aff("b", ["v1"])]
    report = readiness_report(affs, "v1")
    assert report.ready is True
    assert report.missing_images == 0


def test_empty_playlist_is_not_ready():
    assert readiness_report([], "v1").ready is False
