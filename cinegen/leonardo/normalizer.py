"""Normalise Leonardo status and submission responses.

Each generation kind answers with a differently shaped body depending on which
endpoint served it. Rather than branching per call site, every kind has an
ordered list of dotted field paths to probe for the status token and for the
result URL. The first path that yields a non-empty string wins. Integer
segments index into lists (``generations.0.status``).

Everything here is a pure function of its inputs.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from cinegen.jobs.models import GenerationKind, GenerationStatus

COMPLETED_TOKENS = frozenset({"complete", "completed", "succeeded"})
FAILED_TOKENS = frozenset({"failed", "error"})


@dataclass(frozen=True)
class ProbeTable:
    status_paths: Sequence[str]
    url_paths: Sequence[str]


_IMAGE_PROBES = ProbeTable(
    status_paths=(
        "generations_by_pk.status",
        "generations.0.status",
        "status",
    ),
    url_paths=(
        "generations_by_pk.generated_images.0.url",
        "generations.0.generated_images.0.url",
        "url",
    ),
)

PROBES: Dict[GenerationKind, ProbeTable] = {
    GenerationKind.IMAGE: _IMAGE_PROBES,
    GenerationKind.TEXTURE: _IMAGE_PROBES,
    GenerationKind.VIDEO_MOTION: ProbeTable(
        status_paths=(
            "generations_by_pk.status",
            "motionSvdGenerationJob.status",
            "motionVideoGenerationJob.status",
            "status",
        ),
        url_paths=(
            "generations_by_pk.generated_images.0.motionMP4URL",
            "generated_images.0.motionMP4URL",
            "motionSvdGenerationJob.motionMP4URL",
            "motionVideoGenerationJob.videoURL",
            "generations_by_pk.videoUrl",
            "videoUrl",
            "url",
            "motionSvdGenerationJob.url",
        ),
    ),
    GenerationKind.VIDEO_IMAGE_TO_VIDEO: ProbeTable(
        status_paths=(
            "generations_by_pk.status",
            "motionVideoGenerationJob.status",
            "imageToVideoGenerationJob.status",
            "generation.status",
            "status",
        ),
        url_paths=(
            "generations_by_pk.generated_images.0.motionMP4URL",
            "generations_by_pk.generated_images.0.url",
            "motionVideoGenerationJob.videoURL",
            "motionVideoGenerationJob.url",
            "imageToVideoGenerationJob.videoURL",
            "generation.videoURL",
            "videoUrl",
            "url",
            "imageToVideoGenerationJob.url",
            "generation.url",
        ),
    ),
    GenerationKind.VIDEO_TEXT_TO_VIDEO: ProbeTable(
        status_paths=(
            "textToVideoGenerationJob.status",
            "status",
            "generation.status",
        ),
        url_paths=(
            "textToVideoGenerationJob.videoURL",
            "videoUrl",
            "url",
            "generation.videoUrl",
        ),
    ),
    GenerationKind.VIDEO_UPSCALE: ProbeTable(
        status_paths=(
            "videoUpscaleGenerationJob.status",
            "status",
            "generation.status",
            "generations_by_pk.status",
        ),
        url_paths=(
            "videoUpscaleGenerationJob.videoURL",
            "videoUrl",
            "url",
            "generation.videoUrl",
            "generations_by_pk.generated_images.0.motionMP4URL",
        ),
    ),
}

# Where each submission endpoint puts the new job id, highest priority first.
JOB_ID_PATHS: Dict[GenerationKind, Sequence[str]] = {
    GenerationKind.IMAGE: ("sdGenerationJob.generationId", "generationId"),
    GenerationKind.TEXTURE: ("sdGenerationJob.generationId", "generationId"),
    GenerationKind.VIDEO_MOTION: (
        "motionSvdGenerationJob.generationId",
        "motionSvdGenerationJob.id",
        "motionVideoGenerationJob.generationId",
        "generationId",
        "id",
        "jobId",
    ),
    GenerationKind.VIDEO_IMAGE_TO_VIDEO: (
        "motionVideoGenerationJob.generationId",
        "imageToVideoGenerationJob.generationId",
        "imageToVideoGenerationJob.id",
        "generationId",
        "id",
        "jobId",
    ),
    GenerationKind.VIDEO_TEXT_TO_VIDEO: (
        "textToVideoGenerationJob.generationId",
        "textToVideoGenerationJob.id",
        "generationId",
        "id",
        "jobId",
    ),
    GenerationKind.VIDEO_UPSCALE: (
        "videoUpscaleGenerationJob.generationId",
        "videoUpscaleGenerationJob.id",
        "generationId",
        "id",
        "jobId",
    ),
}

VARIATION_ID_PATHS: Sequence[str] = (
    "sdUpscaleJob.id",
    "universalUpscaler.id",
    "sdNobgJob.id",
    "sdUnzoomJob.id",
    "variation.id",
    "id",
)

ASSET_ID_PATHS: Sequence[str] = (
    "uploadInitImage.id",
    "id",
    "initImageId",
    "imageId",
)


@dataclass(frozen=True)
class NormalizedStatus:
    status: GenerationStatus
    result_url: Optional[str] = None
    status_token: Optional[str] = None  # raw token that decided the status, if any


def probe(body: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts/lists; None when any hop is missing."""
    node = body
    for segment in path.split("."):
        if isinstance(node, dict):
            node = node.get(segment)
        elif isinstance(node, list) and segment.isdigit():
            index = int(segment)
            node = node[index] if index < len(node) else None
        else:
            return None
        if node is None:
            return None
    return node


def first_string(body: Any, paths: Sequence[str]) -> Optional[str]:
    for path in paths:
        value = probe(body, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def classify_token(token: Optional[str]) -> GenerationStatus:
    if token is None:
        return GenerationStatus.PROCESSING
    lowered = token.lower()
    if lowered in COMPLETED_TOKENS:
        return GenerationStatus.COMPLETED
    if lowered in FAILED_TOKENS:
        return GenerationStatus.FAILED
    return GenerationStatus.PROCESSING


def normalize(kind: GenerationKind, body: Any) -> NormalizedStatus:
    """Map a raw status body to a canonical status and optional result URL.

    A missing or unrecognised status is reported as ``processing``; the URL is
    only looked up once the status is ``completed``.
    """
    table = PROBES[GenerationKind(kind)]
    token = first_string(body, table.status_paths)
    status = classify_token(token)
    if status != GenerationStatus.COMPLETED:
        return NormalizedStatus(status=status, status_token=token)
    return NormalizedStatus(
        status=status,
        result_url=first_string(body, table.url_paths),
        status_token=token,
    )


def extract_job_id(kind: GenerationKind, body: Any) -> Optional[str]:
    return first_string(body, JOB_ID_PATHS[GenerationKind(kind)])


def extract_variation_id(body: Any) -> Optional[str]:
    return first_string(body, VARIATION_ID_PATHS)


def extract_asset_id(body: Any) -> Optional[str]:
    return first_string(body, ASSET_ID_PATHS)


def list_elements(body: Any) -> List[Dict[str, Any]]:
    """Pull the element list out of a motion-control listing response."""
    if isinstance(body, list):
        items = body
    elif isinstance(body, dict):
        items = body.get("elements") or body.get("data") or []
    else:
        items = []
    return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []
