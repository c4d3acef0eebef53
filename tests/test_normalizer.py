import pytest

from cinegen.jobs.models import GenerationKind, GenerationStatus
from cinegen.leonardo.normalizer import (
    classify_token,
    extract_asset_id,
    extract_job_id,
    extract_variation_id,
    list_elements,
    normalize,
    probe,
)


def test_image_complete_with_url():
    body = {
        "generations_by_pk": {
            "status": "COMPLETE",
            "generated_images": [{"url": "https://cdn/x.png"}],
        }
    }
    result = normalize(GenerationKind.IMAGE, body)
    assert result.status == GenerationStatus.COMPLETED
    assert result.result_url == "https://cdn/x.png"
    assert result.status_token == "COMPLETE"


def test_image_generations_list_shape():
    body = {"generations": [{"status": "complete", "generated_images": [{"url": "u"}]}]}
    result = normalize(GenerationKind.IMAGE, body)
    assert result.status == GenerationStatus.COMPLETED
    assert result.result_url == "u"


def test_motion_pending_then_complete():
    pending = normalize(
        GenerationKind.VIDEO_MOTION, {"motionSvdGenerationJob": {"status": "PENDING"}}
    )
    assert pending.status == GenerationStatus.PROCESSING
    assert pending.result_url is None

    done = normalize(
        GenerationKind.VIDEO_MOTION,
        {"motionSvdGenerationJob": {"status": "COMPLETE", "motionMP4URL": "https://v.mp4"}},
    )
    assert done.status == GenerationStatus.COMPLETED
    assert done.result_url == "https://v.mp4"


def test_motion_prefers_generations_by_pk_url():
    body = {
        "generations_by_pk": {
            "status": "COMPLETE",
            "generated_images": [{"motionMP4URL": "first"}],
        },
        "url": "last",
    }
    assert normalize(GenerationKind.VIDEO_MOTION, body).result_url == "first"


def test_text_to_video_failed():
    result = normalize(
        GenerationKind.VIDEO_TEXT_TO_VIDEO, {"textToVideoGenerationJob": {"status": "FAILED"}}
    )
    assert result.status == GenerationStatus.FAILED
    assert result.result_url is None


def test_image_to_video_url_fallbacks():
    body = {"status": "SUCCEEDED", "videoUrl": "https://v/clip.mp4"}
    result = normalize(GenerationKind.VIDEO_IMAGE_TO_VIDEO, body)
    assert result.status == GenerationStatus.COMPLETED
    assert result.result_url == "https://v/clip.mp4"


def test_completed_without_url_has_no_url():
    result = normalize(GenerationKind.VIDEO_UPSCALE, {"status": "completed"})
    assert result.status == GenerationStatus.COMPLETED
    assert result.result_url is None


@pytest.mark.parametrize("token", ["complete", "Completed", "SUCCEEDED"])
def test_completed_tokens_case_insensitive(token):
    assert classify_token(token) == GenerationStatus.COMPLETED


@pytest.mark.parametrize("token", ["failed", "ERROR"])
def test_failed_tokens(token):
    assert classify_token(token) == GenerationStatus.FAILED


@pytest.mark.parametrize("token", [None, "PENDING", "IN_PROGRESS", "queued", ""])
def test_unknown_tokens_are_processing(token):
    assert classify_token(token) == GenerationStatus.PROCESSING


@pytest.mark.parametrize("kind", list(GenerationKind))
def test_empty_body_is_processing_for_every_kind(kind):
    result = normalize(kind, {})
    assert result.status == GenerationStatus.PROCESSING
    assert result.result_url is None
    assert result.status_token is None


def test_url_never_reported_unless_completed():
    body = {"status": "PENDING", "url": "https://cdn/early.png"}
    assert normalize(GenerationKind.IMAGE, body).result_url is None


def test_non_string_status_is_ignored():
    assert normalize(GenerationKind.IMAGE, {"status": 3}).status == GenerationStatus.PROCESSING


def test_probe_handles_lists_and_missing_hops():
    body = {"a": [{"b": "x"}]}
    assert probe(body, "a.0.b") == "x"
    assert probe(body, "a.1.b") is None
    assert probe(body, "a.b") is None
    assert probe(body, "missing.path") is None


def test_extract_job_id_priority():
    body = {"motionSvdGenerationJob": {"generationId": "svd-1"}, "id": "other"}
    assert extract_job_id(GenerationKind.VIDEO_MOTION, body) == "svd-1"
    assert extract_job_id(GenerationKind.VIDEO_MOTION, {"jobId": "j-2"}) == "j-2"
    assert extract_job_id(GenerationKind.IMAGE, {"unrelated": True}) is None


def test_extract_variation_and_asset_ids():
    assert extract_variation_id({"sdNobgJob": {"id": "var-1"}}) == "var-1"
    assert extract_asset_id({"uploadInitImage": {"id": "asset-1"}}) == "asset-1"


def test_list_elements_shapes():
    assert list_elements([{"name": "a"}, "junk"]) == [{"name": "a"}]
    assert list_elements({"elements": [{"name": "b"}]}) == [{"name": "b"}]
    assert list_elements({"data": "not a list"}) == []
    assert list_elements(None) == []


@pytest.mark.parametrize(
    "kind,body",
    [
        (GenerationKind.IMAGE, {"generations_by_pk": {"status": "COMPLETE", "generated_images": [{"url": "u"}]}}),
        (GenerationKind.VIDEO_MOTION, {"generations_by_pk": {"status": "PENDING"}}),
        (GenerationKind.VIDEO_TEXT_TO_VIDEO, {"textToVideoGenerationJob": {"status": "FAILED"}}),
        (GenerationKind.VIDEO_UPSCALE, {}),
    ],
)
def test_normalize_is_deterministic(kind, body):
    snapshot = repr(body)
    first = normalize(kind, body)
    second = normalize(kind, body)
    assert first == second
    assert repr(body) == snapshot
