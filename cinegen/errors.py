"""Exception types raised by the generation tracker."""

from typing import Optional


class CinegenError(Exception):
    """Base class for all errors raised by this package."""


# Record store

class DuplicateJobError(CinegenError):
    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' already exists")
        self.job_id = job_id


class JobNotFoundError(CinegenError):
    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' not found")
        self.job_id = job_id


class InvalidTransitionError(CinegenError):
    """An update would break a job invariant (terminal state, result URL)."""


# Transport

class UpstreamError(CinegenError):
    """Network failure, non-2xx response or malformed body from the upstream API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# Submission

class InvalidRequestError(CinegenError):
    """Caller input rejected before any upstream call."""


class UploadFailed(CinegenError):
    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Asset upload failed: {reason}")
        self.reason = reason
        self.status_code = status_code


class SecondaryUploadFailed(CinegenError):
    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Direct storage upload failed: {reason}")
        self.reason = reason
        self.status_code = status_code


class SubmissionRejected(CinegenError):
    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Submission rejected: {reason}")
        self.reason = reason
        self.status_code = status_code


class NoJobIdInResponse(CinegenError):
    """Upstream accepted a submission but returned no recognisable job id."""

    def __init__(self, response: dict):
        super().__init__(f"No job id in upstream response (keys: {sorted(response)})")
        self.response = response
