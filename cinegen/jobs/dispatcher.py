"""Job tracker interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from cinegen.jobs.models import GenerationJob


class JobTracker(ABC):
    """Abstract interface for following submitted jobs to a terminal state."""

    @abstractmethod
    def track(self, job_id: str) -> None:
        """Start following a stored job. No-op while a live, uncancelled poller exists."""
        ...

    @abstractmethod
    def cancel(self, job_id: str) -> bool:
        """Stop following a job without touching its stored status."""
        ...

    @abstractmethod
    def is_tracking(self, job_id: str) -> bool:
        ...

    @abstractmethod
    def get_status(self, job_id: str) -> Optional[GenerationJob]:
        """Get the last known state of a job."""
        ...

    @abstractmethod
    def list_jobs(self) -> List[GenerationJob]:
        """All known jobs, newest first."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop all tracking gracefully."""
        ...
