"""Download completed generation results and keep a copy in Supabase Storage.

Upstream result URLs are not permanent, so finished images and videos are
copied into the project bucket under ``{owner}/{images|videos}/``.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple
from urllib.parse import urlparse

import httpx

from cinegen.config import settings
from cinegen.db.supabase_client import storage_bucket
from cinegen.errors import InvalidRequestError, UpstreamError
from cinegen.jobs.models import GenerationJob, GenerationStatus

logger = logging.getLogger(__name__)

# MIME subtype -> file extension
_MIME_EXTENSIONS = {
    "mp4": "mp4",
    "webm": "webm",
    "quicktime": "mov",
    "x-msvideo": "avi",
    "png": "png",
    "jpeg": "jpg",
    "jpg": "jpg",
    "webp": "webp",
}
_VIDEO_EXTENSIONS = {"mp4": "video/mp4", "webm": "video/webm", "mov": "video/quicktime", "avi": "video/x-msvideo"}
_IMAGE_EXTENSIONS = {"png": "image/png", "jpg": "image/jpeg", "jpeg": "image/jpeg", "webp": "image/webp"}


@dataclass
class ArchivedResult:
    job_id: str
    path: str
    public_url: str
    content_type: str
    size_bytes: int


def detect_format(content_type: Optional[str], url: str, is_video: bool) -> Tuple[str, str]:
    """Return (mime type, extension) from the response header, else the URL suffix."""
    family = "video/" if is_video else "image/"
    if content_type and content_type.startswith(family):
        mime = content_type.split(";")[0].strip()
        subtype = mime.split("/", 1)[1]
        return mime, _MIME_EXTENSIONS.get(subtype, "mp4" if is_video else "png")

    known = _VIDEO_EXTENSIONS if is_video else _IMAGE_EXTENSIONS
    suffix = os.path.splitext(urlparse(url).path)[1].lstrip(".").lower()
    if suffix in known:
        return known[suffix], suffix
    return ("video/mp4", "mp4") if is_video else ("image/png", "png")


class ResultArchiver:
    """Copies a completed job's result into the storage bucket."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        bucket_factory: Callable[[str], Any] = storage_bucket,
    ):
        self._bucket = bucket or settings.storage_bucket
        self._http = http or httpx.AsyncClient(
            timeout=settings.request_timeout_seconds, follow_redirects=True
        )
        self._bucket_factory = bucket_factory

    async def aclose(self) -> None:
        await self._http.aclose()

    async def archive(
        self, job: GenerationJob, owner_id: str, name: Optional[str] = None
    ) -> ArchivedResult:
        if job.status != GenerationStatus.COMPLETED or not job.result_url:
            raise InvalidRequestError(f"Job '{job.id}' has no result to archive")

        try:
            response = await self._http.get(job.result_url)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Download failed: {exc}") from exc
        if response.is_error:
            raise UpstreamError(
                f"Download failed: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )

        is_video = job.kind.is_video
        mime, ext = detect_format(response.headers.get("content-type"), job.result_url, is_video)
        folder = "videos" if is_video else "images"
        path = f"{owner_id}/{folder}/{int(time.time() * 1000)}-{name or job.id}.{ext}"

        public_url = await asyncio.to_thread(self._store, path, response.content, mime)
        logger.info(f"Archived job {job.id} to {self._bucket}/{path}")
        return ArchivedResult(
            job_id=job.id,
            path=path,
            public_url=public_url,
            content_type=mime,
            size_bytes=len(response.content),
        )

    def _store(self, path: str, content: bytes, mime: str) -> str:
        bucket = self._bucket_factory(self._bucket)
        bucket.upload(
            path=path,
            file=content,
            file_options={"content-type": mime, "cache-control": "3600", "upsert": "false"},
        )
        return bucket.get_public_url(path)

    async def archive_on_complete(self, job: GenerationJob) -> None:
        """Completion hook for the scheduler; needs ``archive_owner_id`` configured."""
        if not settings.archive_owner_id:
            logger.warning(f"ARCHIVE_OWNER_ID not set; not archiving job {job.id}")
            return
        await self.archive(job, settings.archive_owner_id)
