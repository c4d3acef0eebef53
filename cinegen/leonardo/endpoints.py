"""Leonardo REST endpoint table, relative to ``settings.leonardo_base_url``."""

from typing import Dict, List

from cinegen.jobs.models import GenerationKind

INIT_IMAGE = "/init-image"
PLATFORM_MODELS = "/platformModels"
PROMPT_IMPROVE = "/prompt/improve"
PROMPT_RANDOM = "/prompt/random"
ME = "/me"

SUBMIT: Dict[GenerationKind, str] = {
    GenerationKind.IMAGE: "/generations",
    GenerationKind.TEXTURE: "/generations",
    GenerationKind.VIDEO_MOTION: "/generations-motion-svd",
    GenerationKind.VIDEO_IMAGE_TO_VIDEO: "/generations-image-to-video",
    GenerationKind.VIDEO_TEXT_TO_VIDEO: "/generations-text-to-video",
    GenerationKind.VIDEO_UPSCALE: "/generations-video-upscale",
}

# Tried in order; the next candidate is only used when the previous one 404s.
STATUS: Dict[GenerationKind, List[str]] = {
    GenerationKind.IMAGE: ["/generations/{id}"],
    GenerationKind.TEXTURE: ["/generations/{id}"],
    GenerationKind.VIDEO_MOTION: [
        "/generations/{id}",
        "/generations-motion-svd/{id}",
    ],
    GenerationKind.VIDEO_IMAGE_TO_VIDEO: [
        "/generations/{id}",
        "/generations-image-to-video/{id}",
        "/motion-video/{id}",
    ],
    GenerationKind.VIDEO_TEXT_TO_VIDEO: ["/generations-text-to-video/{id}"],
    GenerationKind.VIDEO_UPSCALE: ["/generations-video-upscale/{id}"],
}

VARIATIONS: Dict[str, str] = {
    "upscale": "/variations/upscale",
    "universal-upscaler": "/variations/universal-upscaler",
    "nobg": "/variations/nobg",
    "unzoom": "/variations/unzoom",
}

MOTION_CONTROL_ELEMENTS: List[str] = [
    "/motion-control-elements",
    "/elements",
    "/generation-elements",
]


def status_paths(kind: GenerationKind, job_id: str) -> List[str]:
    return [template.format(id=job_id) for template in STATUS[kind]]
