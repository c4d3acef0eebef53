"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

router = APIRouter()

# Set by main.py during lifespan
_tracker = None
_client = None


def set_tracker(tracker):
    global _tracker
    _tracker = tracker


def set_client(client):
    global _client
    _client = client


@router.get("/health")
async def health_check():
    """Service health and tracker summary."""
    jobs = _tracker.list_jobs() if _tracker is not None else []
    by_status = {}
    for job in jobs:
        by_status[job.status.value] = by_status.get(job.status.value, 0) + 1

    return {
        "status": "healthy",
        "tracker_ready": _tracker is not None,
        # The key may come from settings or the users table
        "api_key_configured": bool(_client is not None and _client.api_key),
        "jobs": by_status,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
