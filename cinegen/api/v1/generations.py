"""Generation API: submit generations, poll their status, archive results."""

from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, ValidationError

from cinegen.errors import (
    DuplicateJobError,
    InvalidRequestError,
    NoJobIdInResponse,
    SecondaryUploadFailed,
    SubmissionRejected,
    UploadFailed,
    UpstreamError,
)
from cinegen.jobs.models import GenerationJob
from cinegen.jobs.orchestrator import (
    ImageRequest,
    ImageToVideoRequest,
    MotionVideoRequest,
    SubmissionOrchestrator,
    TextToVideoRequest,
    TextureRequest,
    UploadAsset,
    VariationRequest,
    VideoModel,
    VideoUpscaleRequest,
)

router = APIRouter()

# Wired in during lifespan (see main.py)
_orchestrator = None
_tracker = None
_archiver = None

# Max upload size: 100 MB
_MAX_FILE_BYTES = 100 * 1024 * 1024


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


def set_tracker(tracker):
    global _tracker
    _tracker = tracker


def set_archiver(archiver):
    global _archiver
    _archiver = archiver


class ArchiveRequest(BaseModel):
    owner_id: str
    name: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def job_payload(job: GenerationJob) -> Dict[str, Any]:
    return {
        "job_id": job.id,
        "kind": job.kind.value,
        "prompt": job.prompt,
        "status": job.status.value,
        "result_url": job.result_url,
        "attempts": job.attempts,
        "failure_reason": job.failure_reason.value if job.failure_reason else None,
        "error": job.error,
        "model_id": job.model_id,
        "source_id": job.source_id,
        "created_at": job.created_at.isoformat(),
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


def _require_orchestrator() -> SubmissionOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Submission orchestrator not initialized")
    return _orchestrator


def _require_tracker():
    if _tracker is None:
        raise HTTPException(status_code=503, detail="Job tracker not initialized")
    return _tracker


async def _run_submission(
    submit: Callable[[SubmissionOrchestrator], Awaitable[GenerationJob]],
) -> Dict[str, Any]:
    orchestrator = _require_orchestrator()
    try:
        job = await submit(orchestrator)
    except (InvalidRequestError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except (UploadFailed, SecondaryUploadFailed, SubmissionRejected) as exc:
        raise HTTPException(
            status_code=502,
            detail={"error": str(exc), "upstream_status": exc.status_code},
        )
    except NoJobIdInResponse as exc:
        raise HTTPException(status_code=502, detail={"error": str(exc), "upstream_status": None})
    except DuplicateJobError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return {
        **job_payload(job),
        "message": f"Generation submitted. Poll GET /api/v1/generations/{job.id} for status.",
    }


async def _read_asset(file: UploadFile) -> UploadAsset:
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"Uploaded file '{file.filename}' is empty")
    if len(data) > _MAX_FILE_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 100 MB)")
    return UploadAsset(data=data, filename=file.filename or "upload.png")


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------

@router.post("/generations/image")
async def generate_image(request: ImageRequest):
    """Text-to-image generation."""
    return await _run_submission(lambda o: o.submit_image(request))


@router.post("/generations/texture")
async def generate_texture(
    prompt: str = Form(...),
    model_id: Optional[str] = Form(None),
    file: UploadFile = File(...),
):
    """Texture generation from an uploaded model file."""
    asset = await _read_asset(file)
    return await _run_submission(
        lambda o: o.submit_texture(TextureRequest(prompt=prompt, model_id=model_id), asset)
    )


@router.post("/generations/motion")
async def generate_motion_video(
    image: UploadFile = File(...),
    end_image: Optional[UploadFile] = File(None),
    prompt: str = Form(""),
    motion_strength: int = Form(2),
    motion_control: Optional[str] = Form(None),
):
    """Motion video from a start frame (and optional end frame)."""
    start = await _read_asset(image)
    end = await _read_asset(end_image) if end_image is not None else None
    return await _run_submission(
        lambda o: o.submit_motion_video(
            MotionVideoRequest(
                prompt=prompt,
                motion_strength=motion_strength,
                motion_control=motion_control or None,
            ),
            start,
            end,
        )
    )


@router.post("/generations/image-to-video")
async def generate_image_to_video(
    image: UploadFile = File(...),
    end_image: Optional[UploadFile] = File(None),
    prompt: str = Form(""),
    model: VideoModel = Form(VideoModel.VEO3_1),
    duration: Optional[int] = Form(None),
    motion_control: Optional[str] = Form(None),
):
    """Image-to-video, single frame or frame-to-frame when an end frame is sent."""
    start = await _read_asset(image)
    end = await _read_asset(end_image) if end_image is not None else None
    return await _run_submission(
        lambda o: o.submit_image_to_video(
            ImageToVideoRequest(
                prompt=prompt,
                model=model,
                duration=duration,
                motion_control=motion_control or None,
            ),
            start,
            end,
        )
    )


@router.post("/generations/text-to-video")
async def generate_text_to_video(request: TextToVideoRequest):
    return await _run_submission(lambda o: o.submit_text_to_video(request))


@router.post("/generations/video-upscale")
async def upscale_video(request: VideoUpscaleRequest):
    return await _run_submission(lambda o: o.submit_video_upscale(request))


@router.post("/generations/variations")
async def generate_variation(
    variation_type: str = Form("upscale"),
    image_id: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    """Upscale / background removal / unzoom of an existing or uploaded image."""
    asset = await _read_asset(image) if image is not None else None
    return await _run_submission(
        lambda o: o.submit_variation(
            VariationRequest(variation_type=variation_type, image_id=image_id or None),
            asset,
        )
    )


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------

@router.get("/generations")
async def list_generations():
    """All tracked generations, newest first."""
    tracker = _require_tracker()
    jobs = [job_payload(job) for job in tracker.list_jobs()]
    return {"generations": jobs, "count": len(jobs)}


@router.get("/generations/{job_id}")
async def get_generation(job_id: str):
    tracker = _require_tracker()
    job = tracker.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    return {**job_payload(job), "polling": tracker.is_tracking(job_id)}


@router.post("/generations/{job_id}/cancel")
async def cancel_generation(job_id: str):
    """Stop polling a generation; its last known status is kept."""
    tracker = _require_tracker()
    job = tracker.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    cancelled = tracker.cancel(job_id)
    return {"job_id": job_id, "cancelled": cancelled, "status": job.status.value}


@router.post("/generations/{job_id}/archive")
async def archive_generation(job_id: str, request: ArchiveRequest):
    """Copy a completed generation's result into the storage bucket."""
    tracker = _require_tracker()
    if _archiver is None:
        raise HTTPException(status_code=503, detail="Result archiver not initialized")

    job = tracker.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Generation not found")

    try:
        archived = await _archiver.archive(job, request.owner_id, request.name)
    except InvalidRequestError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except UpstreamError as exc:
        raise HTTPException(
            status_code=502,
            detail={"error": str(exc), "upstream_status": exc.status_code},
        )

    return {
        "job_id": job_id,
        "path": archived.path,
        "public_url": archived.public_url,
        "content_type": archived.content_type,
        "size_bytes": archived.size_bytes,
    }
