"""Polling scheduler: follows submitted generations until they settle.

One asyncio task per job. Each task waits an initial delay, then issues one
status request at a time (the next probe is only scheduled after the
previous one returned), normalises the body and writes the result into the
record store. Transport errors count as a spent attempt but are not fatal; an
upstream-declared failure is. When the attempt budget runs out the job is
failed with reason ``timeout``.

Cancellation is cooperative: it is checked before every probe and wakes the
task from its inter-probe wait, but never interrupts a request in flight and
never changes the stored status.
"""

import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional

from cinegen.config import settings
from cinegen.errors import InvalidTransitionError, JobNotFoundError, UpstreamError
from cinegen.jobs.dispatcher import JobTracker
from cinegen.jobs.models import FailureReason, GenerationJob, GenerationStatus
from cinegen.jobs.store import GenerationRecordStore
from cinegen.leonardo.client import LeonardoClient
from cinegen.leonardo.normalizer import NormalizedStatus, normalize

logger = logging.getLogger(__name__)

CompletionHook = Callable[[GenerationJob], Awaitable[None]]


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class PollingScheduler(JobTracker):
    """Runs an independent poll loop per tracked job."""

    def __init__(
        self,
        client: LeonardoClient,
        store: GenerationRecordStore,
        initial_delay: Optional[float] = None,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        on_complete: Optional[CompletionHook] = None,
    ):
        self._client = client
        self._store = store
        self._initial_delay = (
            settings.poll_initial_delay_seconds if initial_delay is None else initial_delay
        )
        self._interval = settings.poll_interval_seconds if interval is None else interval
        self._max_attempts = (
            settings.poll_max_attempts if max_attempts is None else max_attempts
        )
        if self._max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._on_complete = on_complete
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_flags: Dict[str, asyncio.Event] = {}

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    # ------------------------------------------------------------------
    # JobTracker
    # ------------------------------------------------------------------

    def track(self, job_id: str) -> asyncio.Task:
        task = self._tasks.get(job_id)
        live = task is not None and not task.done()
        if live and not self._cancel_flags[job_id].is_set():
            logger.debug(f"Job {job_id} is already being polled")
            return task

        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status.is_terminal:
            raise InvalidTransitionError(f"Job '{job_id}' is already {job.status.value}")

        flag = asyncio.Event()
        task = asyncio.create_task(self._poll_loop(job_id, flag), name=f"poll-{job_id}")
        self._tasks[job_id] = task
        self._cancel_flags[job_id] = flag
        task.add_done_callback(partial(self._forget, job_id))
        logger.info(f"Polling {job.kind.value} job {job_id}")
        return task

    def cancel(self, job_id: str) -> bool:
        flag = self._cancel_flags.get(job_id)
        if flag is None:
            return False
        flag.set()
        logger.info(f"Polling cancelled for job {job_id}")
        return True

    def is_tracking(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        return not self._cancel_flags[job_id].is_set()

    def get_status(self, job_id: str) -> Optional[GenerationJob]:
        return self._store.get(job_id)

    def list_jobs(self) -> List[GenerationJob]:
        return self._store.list()

    async def wait(self, job_id: str) -> Optional[PollOutcome]:
        """Wait for a tracked job's poll loop to end; None if it is not tracked."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await task

    async def stop(self) -> None:
        for flag in self._cancel_flags.values():
            flag.set()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        # Crashes are already logged by _forget
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def _pause(self, flag: asyncio.Event, seconds: float) -> bool:
        """Wait up to ``seconds``; True if cancellation was requested meanwhile."""
        if flag.is_set():
            return True
        try:
            await asyncio.wait_for(flag.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _poll_loop(self, job_id: str, flag: asyncio.Event) -> PollOutcome:
        if await self._pause(flag, self._initial_delay):
            return PollOutcome.CANCELLED

        while True:
            if flag.is_set():
                return PollOutcome.CANCELLED

            job = self._store.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status.is_terminal:
                return _outcome_for(job)

            attempts = job.attempts + 1
            logger.debug(
                f"Polling {job.kind.value} job {job_id}: attempt {attempts}/{self._max_attempts}"
            )

            result: Optional[NormalizedStatus] = None
            try:
                body = await self._client.fetch_status(job.kind, job_id)
            except UpstreamError as exc:
                logger.warning(
                    f"Status check for job {job_id} failed "
                    f"(attempt {attempts}/{self._max_attempts}): {exc}"
                )
            else:
                result = normalize(job.kind, body)
                if result.status_token is None:
                    logger.warning(
                        f"No recognised status field for {job.kind.value} job {job_id}; "
                        f"response keys: {sorted(body)}"
                    )

            # A result that arrives after cancellation is discarded
            if flag.is_set():
                return PollOutcome.CANCELLED

            if result is not None and result.status.is_terminal:
                return await self._finish(job_id, attempts, result)

            if attempts >= self._max_attempts:
                self._store.update(
                    job_id,
                    attempts=attempts,
                    status=GenerationStatus.FAILED,
                    failure_reason=FailureReason.TIMEOUT,
                    error=f"Timed out after {attempts} status checks",
                )
                logger.warning(f"Job {job_id} timed out after {attempts} attempts")
                return PollOutcome.TIMED_OUT

            self._store.update(
                job_id, attempts=attempts, status=GenerationStatus.PROCESSING
            )

            if await self._pause(flag, self._interval):
                return PollOutcome.CANCELLED

    async def _finish(
        self, job_id: str, attempts: int, result: NormalizedStatus
    ) -> PollOutcome:
        if result.status == GenerationStatus.FAILED:
            self._store.update(
                job_id,
                attempts=attempts,
                status=GenerationStatus.FAILED,
                failure_reason=FailureReason.UPSTREAM_FAILED,
                error=f"Upstream reported status {result.status_token}",
            )
            logger.info(f"Job {job_id} failed upstream ({result.status_token})")
            return PollOutcome.FAILED

        if not result.result_url:
            self._store.update(
                job_id,
                attempts=attempts,
                status=GenerationStatus.FAILED,
                failure_reason=FailureReason.CONTRACT_VIOLATION,
                error="Upstream reported completion without a result URL",
            )
            logger.error(f"Job {job_id} completed upstream but no result URL was found")
            return PollOutcome.FAILED

        job = self._store.update(
            job_id,
            attempts=attempts,
            status=GenerationStatus.COMPLETED,
            result_url=result.result_url,
        )
        logger.info(f"Job {job_id} completed after {attempts} attempt(s)")

        if self._on_complete is not None:
            try:
                await self._on_complete(job)
            except Exception as exc:
                logger.error(f"Completion hook failed for job {job_id}: {exc}", exc_info=True)
        return PollOutcome.COMPLETED

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        # A cancelled loop may finish after a newer loop took over the job
        current = self._tasks.get(job_id) is task
        if current:
            del self._tasks[job_id]
            self._cancel_flags.pop(job_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error(f"Poll loop for job {job_id} crashed: {exc!r}")
        if not current:
            return
        job = self._store.get(job_id)
        if job is not None and not job.status.is_terminal:
            self._store.update(
                job_id,
                status=GenerationStatus.FAILED,
                failure_reason=FailureReason.INTERNAL_ERROR,
                error=f"{type(exc).__name__}: {exc}",
            )


def _outcome_for(job: GenerationJob) -> PollOutcome:
    if job.status == GenerationStatus.COMPLETED:
        return PollOutcome.COMPLETED
    if job.failure_reason == FailureReason.TIMEOUT:
        return PollOutcome.TIMED_OUT
    return PollOutcome.FAILED
