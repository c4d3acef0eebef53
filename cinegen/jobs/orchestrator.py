"""Generation submission orchestrator.

Coordinates the per-kind submission sequence and hands the resulting job to
the tracker:

1. Upload input assets (init-image, then the presigned storage form when the
   upstream asks for it) and wait for the asset to settle
2. Build the kind-specific request body
3. Submit, retrying once per known recoverable parameter complaint
4. Extract the job id, store the job and start polling
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, Field

from cinegen.config import settings
from cinegen.errors import (
    DuplicateJobError,
    InvalidRequestError,
    NoJobIdInResponse,
    SecondaryUploadFailed,
    SubmissionRejected,
    UploadFailed,
    UpstreamError,
)
from cinegen.jobs.dispatcher import JobTracker
from cinegen.jobs.models import GenerationJob, GenerationKind, GenerationStatus
from cinegen.jobs.store import GenerationRecordStore
from cinegen.leonardo import endpoints
from cinegen.leonardo.client import LeonardoClient
from cinegen.leonardo.motion_control import resolve_motion_control
from cinegen.leonardo.normalizer import extract_job_id, extract_variation_id, list_elements

logger = logging.getLogger(__name__)


class VideoModel(str, Enum):
    KLING2_1 = "KLING2_1"
    VEO3_1 = "VEO3_1"
    VEO3_1FAST = "VEO3_1FAST"


VALID_DURATIONS: Dict[VideoModel, List[int]] = {
    VideoModel.KLING2_1: [5, 10],
    VideoModel.VEO3_1: [4, 6, 8],
    VideoModel.VEO3_1FAST: [4, 6, 8],
}

DEFAULT_TEXT_TO_VIDEO_DURATION = 5
DEFAULT_FRAME_PROMPT = "Smooth transition between frames"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass
class UploadAsset:
    """A local file to push through the init-image upload."""
    data: bytes
    filename: str

    @property
    def extension(self) -> str:
        ext = os.path.splitext(self.filename)[1].lstrip(".").lower()
        return ext or "png"


class ImageRequest(BaseModel):
    prompt: str
    model_id: Optional[str] = None
    width: int = 1024
    height: int = 1024
    num_images: int = Field(default=1, ge=1, le=8)
    prompt_magic: bool = True
    high_contrast: bool = True
    negative_prompt: Optional[str] = None

    model_config = {"protected_namespaces": ()}


class TextureRequest(BaseModel):
    prompt: str
    model_id: Optional[str] = None

    model_config = {"protected_namespaces": ()}


class MotionVideoRequest(BaseModel):
    prompt: str = ""
    motion_strength: int = Field(default=2, ge=1, le=10)
    motion_control: Optional[str] = None


class ImageToVideoRequest(BaseModel):
    prompt: str = ""
    model: VideoModel = VideoModel.VEO3_1
    duration: Optional[int] = None
    motion_control: Optional[str] = None


class TextToVideoRequest(BaseModel):
    prompt: str
    duration: Optional[int] = None


class VideoUpscaleRequest(BaseModel):
    generation_id: str


class VariationRequest(BaseModel):
    variation_type: Literal["upscale", "universal-upscaler", "nobg", "unzoom"] = "upscale"
    image_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Adaptive retry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterFix:
    """A rejection we know how to repair by supplying or dropping one field."""
    parameter: str
    pattern: "re.Pattern[str]"
    default: Callable[[Dict[str, Any]], Any]
    applies: Callable[[Dict[str, Any]], bool] = lambda body: True


def _default_frame_duration(body: Dict[str, Any]) -> int:
    return 5 if body.get("model") == VideoModel.KLING2_1.value else 8


RECOVERABLE_PARAMETERS: Dict[GenerationKind, List[ParameterFix]] = {
    GenerationKind.VIDEO_IMAGE_TO_VIDEO: [
        # Only frame-to-frame bodies take a duration
        ParameterFix(
            "duration",
            re.compile(r"duration", re.I),
            _default_frame_duration,
            applies=lambda body: "endFrameImage" in body,
        ),
    ],
    GenerationKind.VIDEO_TEXT_TO_VIDEO: [
        ParameterFix(
            "duration",
            re.compile(r"duration", re.I),
            lambda body: DEFAULT_TEXT_TO_VIDEO_DURATION,
        ),
    ],
}


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SubmissionOrchestrator:
    """Submits generations upstream and registers them for tracking."""

    def __init__(
        self,
        client: LeonardoClient,
        store: GenerationRecordStore,
        tracker: JobTracker,
        settle_seconds: Optional[float] = None,
        motion_control_table: Optional[Dict[str, str]] = None,
        motion_model_id: Optional[str] = None,
        default_image_model_id: Optional[str] = None,
    ):
        self._client = client
        self._store = store
        self._tracker = tracker
        self._settle_seconds = (
            settings.upload_settle_seconds if settle_seconds is None else settle_seconds
        )
        self._motion_control_table = (
            settings.motion_control_elements
            if motion_control_table is None
            else motion_control_table
        )
        self._motion_model_id = motion_model_id or settings.motion_model_id
        self._default_image_model_id = (
            default_image_model_id or settings.default_image_model_id
        )
        self._elements: Optional[List[Dict[str, Any]]] = None

    # ------------------------------------------------------------------
    # Public submissions
    # ------------------------------------------------------------------

    async def submit_image(self, request: ImageRequest) -> GenerationJob:
        if not request.prompt.strip():
            raise InvalidRequestError("A prompt is required")
        model_id = request.model_id or self._default_image_model_id
        body: Dict[str, Any] = {
            "prompt": request.prompt,
            "modelId": model_id,
            "width": request.width,
            "height": request.height,
            "num_images": request.num_images,
            "promptMagic": request.prompt_magic,
            "highContrast": request.high_contrast,
            "public": False,
            "tiling": False,
        }
        if request.negative_prompt:
            body["negative_prompt"] = request.negative_prompt

        kind = GenerationKind.IMAGE
        response = await self._submit(kind, endpoints.SUBMIT[kind], body)
        return self._register(
            kind, _require_id(extract_job_id(kind, response), response),
            prompt=request.prompt, model_id=model_id,
        )

    async def submit_texture(
        self, request: TextureRequest, model_file: UploadAsset
    ) -> GenerationJob:
        if not request.prompt.strip():
            raise InvalidRequestError("A prompt is required")
        asset_id = await self._upload(model_file)
        model_id = request.model_id or self._default_image_model_id
        body = {
            "prompt": request.prompt,
            "modelId": model_id,
            "init_image_id": asset_id,
            "width": 1024,
            "height": 1024,
            "num_images": 1,
        }

        kind = GenerationKind.TEXTURE
        response = await self._submit(kind, endpoints.SUBMIT[kind], body)
        return self._register(
            kind, _require_id(extract_job_id(kind, response), response),
            prompt=request.prompt, model_id=model_id, source_id=asset_id,
        )

    async def submit_motion_video(
        self,
        request: MotionVideoRequest,
        start_frame: UploadAsset,
        end_frame: Optional[UploadAsset] = None,
    ) -> GenerationJob:
        """Motion (SVD) video from an uploaded frame.

        The motion endpoint takes no control elements, so a request carrying
        a motion-control selector goes through image-to-video instead.
        """
        if request.motion_control:
            logger.info(
                f"Motion control {request.motion_control} requested; "
                "submitting as image-to-video"
            )
            return await self.submit_image_to_video(
                ImageToVideoRequest(
                    prompt=request.prompt, motion_control=request.motion_control
                ),
                start_frame,
                end_frame,
            )

        start_id = await self._upload(start_frame)
        end_id = await self._upload(end_frame) if end_frame is not None else None

        body: Dict[str, Any] = {
            "imageId": start_id,
            "motionStrength": request.motion_strength,
            "isInitImage": True,
        }
        if self._motion_model_id:
            body["modelId"] = self._motion_model_id
        if end_id:
            body["endImageId"] = end_id

        kind = GenerationKind.VIDEO_MOTION
        response = await self._submit(kind, endpoints.SUBMIT[kind], body)
        prompt = request.prompt.strip() or (
            f"Motion video from {start_frame.filename} (strength {request.motion_strength})"
        )
        return self._register(
            kind, _require_id(extract_job_id(kind, response), response),
            prompt=prompt, model_id=self._motion_model_id, source_id=start_id,
        )

    async def submit_image_to_video(
        self,
        request: ImageToVideoRequest,
        start_frame: UploadAsset,
        end_frame: Optional[UploadAsset] = None,
    ) -> GenerationJob:
        frame_to_frame = end_frame is not None
        if frame_to_frame and request.duration is not None:
            allowed = VALID_DURATIONS[request.model]
            if request.duration not in allowed:
                raise InvalidRequestError(
                    f"Duration must be one of {allowed} seconds for {request.model.value}"
                )

        start_id = await self._upload(start_frame)
        end_id = await self._upload(end_frame) if end_frame is not None else None

        body: Dict[str, Any] = {"imageId": start_id, "imageType": "UPLOADED"}
        if frame_to_frame:
            body.update(
                {
                    "prompt": request.prompt.strip() or DEFAULT_FRAME_PROMPT,
                    "endFrameImage": {"id": end_id, "type": "UPLOADED"},
                    "model": request.model.value,
                    "resolution": "RESOLUTION_1080",
                    "height": 1080,
                    "width": 1920,
                }
            )
            if request.duration is not None:
                body["duration"] = request.duration
        else:
            if request.prompt.strip():
                body["prompt"] = request.prompt.strip()
            if request.motion_control:
                element_id = await self._motion_control_uuid(request.motion_control)
                if element_id:
                    body["elements"] = [{"akUUID": element_id, "weight": 1}]

        kind = GenerationKind.VIDEO_IMAGE_TO_VIDEO
        response = await self._submit(kind, endpoints.SUBMIT[kind], body)
        prompt = body.get("prompt") or f"Image-to-video from {start_frame.filename}"
        return self._register(
            kind, _require_id(extract_job_id(kind, response), response),
            prompt=prompt,
            model_id=request.model.value if frame_to_frame else None,
            source_id=start_id,
        )

    async def submit_text_to_video(self, request: TextToVideoRequest) -> GenerationJob:
        prompt = request.prompt.strip()
        if not prompt:
            raise InvalidRequestError("A prompt is required")
        body: Dict[str, Any] = {"prompt": prompt}
        if request.duration is not None:
            body["duration"] = request.duration

        kind = GenerationKind.VIDEO_TEXT_TO_VIDEO
        response = await self._submit(kind, endpoints.SUBMIT[kind], body)
        return self._register(
            kind, _require_id(extract_job_id(kind, response), response), prompt=prompt
        )

    async def submit_video_upscale(self, request: VideoUpscaleRequest) -> GenerationJob:
        if not request.generation_id.strip():
            raise InvalidRequestError("A generation id is required")
        kind = GenerationKind.VIDEO_UPSCALE
        response = await self._submit(
            kind, endpoints.SUBMIT[kind], {"generationId": request.generation_id}
        )
        return self._register(
            kind, _require_id(extract_job_id(kind, response), response),
            prompt=f"Video upscale for generation {request.generation_id}",
            source_id=request.generation_id,
        )

    async def submit_variation(
        self, request: VariationRequest, image: Optional[UploadAsset] = None
    ) -> GenerationJob:
        image_id = request.image_id
        if not image_id:
            if image is None:
                raise InvalidRequestError("Provide an image id or upload an image")
            image_id = await self._upload(image)

        # Variations come back through the regular image status endpoint
        kind = GenerationKind.IMAGE
        response = await self._submit(
            kind, endpoints.VARIATIONS[request.variation_type], {"id": image_id}
        )
        return self._register(
            kind, _require_id(extract_variation_id(response), response),
            prompt=f"{request.variation_type} variation",
            source_id=image_id,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _upload(self, asset: UploadAsset) -> str:
        """Upload an asset and return its id once it is safe to reference."""
        try:
            upload = await self._client.upload_init_image(
                asset.data, asset.filename, asset.extension
            )
        except UpstreamError as exc:
            raise UploadFailed(exc.message, exc.status_code) from exc

        if upload.needs_storage_upload:
            try:
                await self._client.upload_to_storage(
                    upload.storage_url, upload.storage_fields, asset.data, asset.filename
                )
            except UpstreamError as exc:
                raise SecondaryUploadFailed(exc.message, exc.status_code) from exc
            logger.info(f"Uploaded {asset.filename} to direct storage as {upload.asset_id}")

        await asyncio.sleep(self._settle_seconds)
        return upload.asset_id

    async def _submit(
        self, kind: GenerationKind, path: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Submit ``body``; repair each known parameter complaint at most once."""
        body = dict(body)
        repaired: Set[str] = set()
        while True:
            try:
                return await self._client.submit(path, body)
            except UpstreamError as exc:
                fix = _match_fix(kind, exc.message, body, repaired)
                if fix is None:
                    raise SubmissionRejected(exc.message, exc.status_code) from exc
                repaired.add(fix.parameter)
                if fix.parameter in body:
                    dropped = body.pop(fix.parameter)
                    logger.warning(
                        f"{kind.value} rejected {fix.parameter}={dropped!r}; retrying without it"
                    )
                else:
                    body[fix.parameter] = fix.default(body)
                    logger.warning(
                        f"{kind.value} needs {fix.parameter}; retrying with "
                        f"{fix.parameter}={body[fix.parameter]!r}"
                    )

    def _register(
        self,
        kind: GenerationKind,
        job_id: str,
        prompt: str,
        model_id: Optional[str] = None,
        source_id: Optional[str] = None,
    ) -> GenerationJob:
        try:
            self._store.append(
                GenerationJob(
                    id=job_id,
                    kind=kind,
                    prompt=prompt,
                    model_id=model_id,
                    source_id=source_id,
                )
            )
        except DuplicateJobError:
            logger.error(
                f"Upstream accepted {kind.value} submission but returned known id {job_id}; "
                "new generation is not tracked"
            )
            raise
        job = self._store.update(job_id, status=GenerationStatus.PROCESSING)
        self._tracker.track(job_id)
        logger.info(f"Submitted {kind.value} job {job_id}")
        return job

    async def _motion_control_uuid(self, selector: str) -> Optional[str]:
        if self._elements is None:
            self._elements = list_elements(
                await self._client.list_motion_control_elements()
            )
        return resolve_motion_control(selector, self._elements, self._motion_control_table)


def _match_fix(
    kind: GenerationKind, message: str, body: Dict[str, Any], repaired: Set[str]
) -> Optional[ParameterFix]:
    for fix in RECOVERABLE_PARAMETERS.get(kind, []):
        if fix.parameter in repaired or not fix.applies(body):
            continue
        if fix.pattern.search(message or ""):
            return fix
    return None


def _require_id(job_id: Optional[str], response: Dict[str, Any]) -> str:
    if not job_id:
        raise NoJobIdInResponse(response)
    return job_id
