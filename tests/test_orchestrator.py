import json

import httpx
import pytest
from unittest.mock import MagicMock

from cinegen.errors import (
    DuplicateJobError,
    InvalidRequestError,
    NoJobIdInResponse,
    SecondaryUploadFailed,
    SubmissionRejected,
    UploadFailed,
)
from cinegen.jobs import orchestrator as orchestrator_module
from cinegen.jobs.models import GenerationKind, GenerationStatus
from cinegen.jobs.orchestrator import (
    ImageRequest,
    ImageToVideoRequest,
    MotionVideoRequest,
    SubmissionOrchestrator,
    TextToVideoRequest,
    UploadAsset,
    VariationRequest,
    VideoModel,
    VideoUpscaleRequest,
)
from cinegen.jobs.store import GenerationRecordStore
from cinegen.leonardo.client import LeonardoClient

BASE = "https://leo.test/v1"
STORAGE = "https://storage.test/bucket"


class FakeUpstream:
    """Routes requests by (method, path) to queued responses and records them."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, url, *responses):
        self.routes[(method, url)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, str(request.url)))
        if not queue:
            return httpx.Response(404, json={"error": "not found"})
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def sent_to(self, url):
        return [r for r in self.requests if str(r.url) == url]


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def store():
    return GenerationRecordStore()


@pytest.fixture
def tracker():
    return MagicMock()


@pytest.fixture
def orchestrator(upstream, store, tracker):
    client = LeonardoClient(
        api_key="test-key", base_url=BASE, transport=httpx.MockTransport(upstream)
    )
    return SubmissionOrchestrator(
        client,
        store,
        tracker,
        settle_seconds=0,
        motion_control_table={"DOLLY_IN": "uuid-dolly"},
        default_image_model_id="model-default",
    )


def _frame(name="frame.png"):
    return UploadAsset(data=b"\x89PNG-bytes", filename=name)


def _init_image_response(asset_id, with_storage=True):
    body = {"uploadInitImage": {"id": asset_id}}
    if with_storage:
        body["uploadInitImage"]["url"] = STORAGE
        body["uploadInitImage"]["fields"] = json.dumps({"key": f"uploads/{asset_id}", "policy": "p"})
    return body


def _json_body(request):
    return json.loads(request.content)


@pytest.mark.asyncio
async def test_image_submission_registers_and_tracks(orchestrator, upstream, store, tracker):
    upstream.on("POST", f"{BASE}/generations", (200, {"sdGenerationJob": {"generationId": "gen-1"}}))

    job = await orchestrator.submit_image(ImageRequest(prompt="a red fox"))

    assert job.id == "gen-1"
    assert job.kind == GenerationKind.IMAGE
    assert job.status == GenerationStatus.PROCESSING
    assert job.model_id == "model-default"
    assert store.get("gen-1").status == GenerationStatus.PROCESSING
    tracker.track.assert_called_once_with("gen-1")

    sent = _json_body(upstream.sent_to(f"{BASE}/generations")[0])
    assert sent["prompt"] == "a red fox"
    assert sent["modelId"] == "model-default"
    assert sent["num_images"] == 1
    assert upstream.requests[0].headers["Authorization"] == "Bearer test-key"


@pytest.mark.asyncio
async def test_blank_prompt_rejected_before_any_request(orchestrator, upstream):
    with pytest.raises(InvalidRequestError):
        await orchestrator.submit_image(ImageRequest(prompt="   "))
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_motion_video_uploads_through_storage_form(orchestrator, upstream, store, tracker):
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-1")))
    upstream.on("POST", STORAGE, (204, None))
    upstream.on(
        "POST", f"{BASE}/generations-motion-svd",
        (200, {"motionSvdGenerationJob": {"generationId": "svd-1"}}),
    )

    job = await orchestrator.submit_motion_video(
        MotionVideoRequest(prompt="", motion_strength=4), _frame()
    )

    assert job.id == "svd-1"
    assert job.kind == GenerationKind.VIDEO_MOTION
    assert job.source_id == "asset-1"
    tracker.track.assert_called_once_with("svd-1")

    methods = [str(r.url) for r in upstream.requests]
    assert methods == [f"{BASE}/init-image", STORAGE, f"{BASE}/generations-motion-svd"]

    form = upstream.sent_to(STORAGE)[0].content
    assert form.index(b'name="key"') < form.index(b'name="file"')
    assert b"uploads/asset-1" in form

    sent = _json_body(upstream.sent_to(f"{BASE}/generations-motion-svd")[0])
    assert sent == {"imageId": "asset-1", "motionStrength": 4, "isInitImage": True}


@pytest.mark.asyncio
async def test_storage_form_failure_aborts_submission(orchestrator, upstream, store, tracker):
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-1")))
    upstream.on("POST", STORAGE, (403, {"error": "AccessDenied"}))

    with pytest.raises(SecondaryUploadFailed) as exc_info:
        await orchestrator.submit_motion_video(MotionVideoRequest(), _frame())

    assert exc_info.value.status_code == 403
    assert len(store) == 0
    tracker.track.assert_not_called()
    assert upstream.sent_to(f"{BASE}/generations-motion-svd") == []


@pytest.mark.asyncio
async def test_init_image_failure_is_upload_failed(orchestrator, upstream, store):
    upstream.on("POST", f"{BASE}/init-image", (500, {"error": "upstream exploded"}))

    with pytest.raises(UploadFailed) as exc_info:
        await orchestrator.submit_motion_video(MotionVideoRequest(), _frame())

    assert exc_info.value.status_code == 500
    assert "upstream exploded" in str(exc_info.value)
    assert len(store) == 0


@pytest.mark.asyncio
async def test_upload_without_storage_target_skips_second_step(orchestrator, upstream):
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-2", with_storage=False)))
    upstream.on(
        "POST", f"{BASE}/generations-image-to-video",
        (200, {"motionVideoGenerationJob": {"generationId": "i2v-1"}}),
    )

    job = await orchestrator.submit_image_to_video(ImageToVideoRequest(prompt="pan left"), _frame())

    assert job.kind == GenerationKind.VIDEO_IMAGE_TO_VIDEO
    assert upstream.sent_to(STORAGE) == []
    sent = _json_body(upstream.sent_to(f"{BASE}/generations-image-to-video")[0])
    assert sent == {"imageId": "asset-2", "imageType": "UPLOADED", "prompt": "pan left"}


@pytest.mark.asyncio
async def test_text_to_video_retries_with_default_duration(orchestrator, upstream, tracker):
    url = f"{BASE}/generations-text-to-video"
    upstream.on(
        "POST", url,
        (400, {"error": "duration is required"}),
        (200, {"textToVideoGenerationJob": {"generationId": "t2v-1"}}),
    )

    job = await orchestrator.submit_text_to_video(TextToVideoRequest(prompt="storm at sea"))

    sent = [_json_body(r) for r in upstream.sent_to(url)]
    assert len(sent) == 2
    assert "duration" not in sent[0]
    assert sent[1] == {"prompt": "storm at sea", "duration": 5}
    assert job.id == "t2v-1"
    tracker.track.assert_called_once_with("t2v-1")


@pytest.mark.asyncio
async def test_parameter_is_repaired_only_once(orchestrator, upstream, store):
    url = f"{BASE}/generations-text-to-video"
    upstream.on("POST", url, (400, {"error": "invalid duration"}))

    with pytest.raises(SubmissionRejected) as exc_info:
        await orchestrator.submit_text_to_video(TextToVideoRequest(prompt="storm"))

    assert len(upstream.sent_to(url)) == 2
    assert exc_info.value.status_code == 400
    assert len(store) == 0


@pytest.mark.asyncio
async def test_unrecognised_rejection_is_not_retried(orchestrator, upstream, store):
    upstream.on("POST", f"{BASE}/generations", (400, {"error": "prompt violates policy"}))

    with pytest.raises(SubmissionRejected) as exc_info:
        await orchestrator.submit_image(ImageRequest(prompt="something"))

    assert exc_info.value.reason == "prompt violates policy"
    assert len(upstream.sent_to(f"{BASE}/generations")) == 1
    assert len(store) == 0


@pytest.mark.asyncio
async def test_frame_to_frame_drops_rejected_duration(orchestrator, upstream):
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-x", with_storage=False)))
    url = f"{BASE}/generations-image-to-video"
    upstream.on(
        "POST", url,
        (400, {"error": "duration not supported"}),
        (200, {"motionVideoGenerationJob": {"generationId": "f2f-1"}}),
    )

    job = await orchestrator.submit_image_to_video(
        ImageToVideoRequest(model=VideoModel.VEO3_1, duration=8),
        _frame("start.png"),
        _frame("end.png"),
    )

    first, second = [_json_body(r) for r in upstream.sent_to(url)]
    assert first["duration"] == 8
    assert first["endFrameImage"] == {"id": "asset-x", "type": "UPLOADED"}
    assert first["prompt"] == "Smooth transition between frames"
    assert "duration" not in second
    assert job.model_id == "VEO3_1"


@pytest.mark.asyncio
async def test_frame_to_frame_duration_validated_per_model(orchestrator, upstream):
    with pytest.raises(InvalidRequestError):
        await orchestrator.submit_image_to_video(
            ImageToVideoRequest(model=VideoModel.KLING2_1, duration=8),
            _frame("start.png"),
            _frame("end.png"),
        )
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_motion_control_reroutes_to_image_to_video(orchestrator, upstream, tracker):
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-3", with_storage=False)))
    upstream.on(
        "POST", f"{BASE}/generations-image-to-video",
        (200, {"motionVideoGenerationJob": {"generationId": "mc-1"}}),
    )

    job = await orchestrator.submit_motion_video(
        MotionVideoRequest(prompt="slow push", motion_control="dolly in"), _frame()
    )

    assert job.kind == GenerationKind.VIDEO_IMAGE_TO_VIDEO
    assert upstream.sent_to(f"{BASE}/generations-motion-svd") == []
    sent = _json_body(upstream.sent_to(f"{BASE}/generations-image-to-video")[0])
    assert sent["elements"] == [{"akUUID": "uuid-dolly", "weight": 1}]
    assert sent["prompt"] == "slow push"


@pytest.mark.asyncio
async def test_motion_control_prefers_listed_elements(orchestrator, upstream):
    upstream.on(
        "GET", f"{BASE}/motion-control-elements",
        (200, {"elements": [{"name": "Dolly In", "akUUID": "uuid-listed"}]}),
    )
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-4", with_storage=False)))
    upstream.on(
        "POST", f"{BASE}/generations-image-to-video",
        (200, {"motionVideoGenerationJob": {"generationId": "mc-2"}}),
    )

    await orchestrator.submit_image_to_video(
        ImageToVideoRequest(motion_control="DOLLY_IN"), _frame()
    )

    sent = _json_body(upstream.sent_to(f"{BASE}/generations-image-to-video")[0])
    assert sent["elements"] == [{"akUUID": "uuid-listed", "weight": 1}]


@pytest.mark.asyncio
async def test_missing_job_id_raises(orchestrator, upstream, store, tracker):
    upstream.on("POST", f"{BASE}/generations-video-upscale", (200, {"ok": True}))

    with pytest.raises(NoJobIdInResponse) as exc_info:
        await orchestrator.submit_video_upscale(VideoUpscaleRequest(generation_id="gen-9"))

    assert "ok" in str(exc_info.value)
    assert len(store) == 0
    tracker.track.assert_not_called()


@pytest.mark.asyncio
async def test_video_upscale_submission(orchestrator, upstream):
    upstream.on(
        "POST", f"{BASE}/generations-video-upscale",
        (200, {"videoUpscaleGenerationJob": {"id": "up-1"}}),
    )

    job = await orchestrator.submit_video_upscale(VideoUpscaleRequest(generation_id="gen-9"))

    assert job.kind == GenerationKind.VIDEO_UPSCALE
    assert job.source_id == "gen-9"
    sent = _json_body(upstream.sent_to(f"{BASE}/generations-video-upscale")[0])
    assert sent == {"generationId": "gen-9"}


@pytest.mark.asyncio
async def test_variation_by_image_id(orchestrator, upstream):
    upstream.on("POST", f"{BASE}/variations/nobg", (200, {"sdNobgJob": {"id": "var-1"}}))

    job = await orchestrator.submit_variation(
        VariationRequest(variation_type="nobg", image_id="img-1")
    )

    assert job.id == "var-1"
    assert job.kind == GenerationKind.IMAGE
    assert _json_body(upstream.requests[0]) == {"id": "img-1"}


@pytest.mark.asyncio
async def test_variation_needs_image(orchestrator):
    with pytest.raises(InvalidRequestError):
        await orchestrator.submit_variation(VariationRequest())


@pytest.mark.asyncio
async def test_frame_to_frame_injects_model_default_duration(orchestrator, upstream):
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-k", with_storage=False)))
    url = f"{BASE}/generations-image-to-video"
    upstream.on(
        "POST", url,
        (400, {"error": "Missing required field: duration"}),
        (200, {"imageToVideoGenerationJob": {"generationId": "kling-1"}}),
    )

    job = await orchestrator.submit_image_to_video(
        ImageToVideoRequest(model=VideoModel.KLING2_1, prompt="walk"),
        _frame("start.png"),
        _frame("end.png"),
    )

    first, second = [_json_body(r) for r in upstream.sent_to(url)]
    assert "duration" not in first
    assert second["duration"] == 5
    assert second["model"] == "KLING2_1"
    assert job.id == "kling-1"


@pytest.mark.asyncio
async def test_settle_delay_runs_after_storage_upload_before_submit(upstream, store, tracker, monkeypatch):
    client = LeonardoClient(
        api_key="test-key", base_url=BASE, transport=httpx.MockTransport(upstream)
    )
    orchestrator = SubmissionOrchestrator(client, store, tracker, settle_seconds=2.5)
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-1")))
    upstream.on("POST", STORAGE, (204, None))
    upstream.on(
        "POST", f"{BASE}/generations-motion-svd",
        (200, {"motionSvdGenerationJob": {"generationId": "svd-1"}}),
    )

    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append((seconds, [str(r.url) for r in upstream.requests]))

    monkeypatch.setattr(orchestrator_module.asyncio, "sleep", fake_sleep)

    await orchestrator.submit_motion_video(MotionVideoRequest(), _frame())

    assert sleeps == [(2.5, [f"{BASE}/init-image", STORAGE])]
    assert str(upstream.requests[-1].url) == f"{BASE}/generations-motion-svd"


@pytest.mark.asyncio
async def test_single_image_to_video_duration_complaint_is_not_repaired(orchestrator, upstream):
    upstream.on("POST", f"{BASE}/init-image", (200, _init_image_response("asset-s", with_storage=False)))
    url = f"{BASE}/generations-image-to-video"
    upstream.on("POST", url, (400, {"error": "duration is required"}))

    with pytest.raises(SubmissionRejected):
        await orchestrator.submit_image_to_video(ImageToVideoRequest(prompt="zoom"), _frame())

    assert len(upstream.sent_to(url)) == 1


@pytest.mark.asyncio
async def test_known_job_id_is_not_registered_twice(orchestrator, upstream, store, tracker):
    upstream.on("POST", f"{BASE}/generations", (200, {"sdGenerationJob": {"generationId": "gen-1"}}))
    await orchestrator.submit_image(ImageRequest(prompt="first"))
    tracker.track.reset_mock()

    with pytest.raises(DuplicateJobError):
        await orchestrator.submit_image(ImageRequest(prompt="second"))

    assert store.get("gen-1").prompt == "first"
    tracker.track.assert_not_called()
