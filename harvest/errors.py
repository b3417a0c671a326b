"""Exception taxonomy shared by the engine and its storage gateways."""
from __future__ import annotations

from typing import Optional


class HarvestError(Exception):
    """Base class for all engine errors."""


class NotFound(HarvestError):
    """Raised when a job id is unknown to the storage gateway."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class AlreadyActive(HarvestError):
    """Raised when a second execution pass is requested for a running job."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job already active: {job_id}")
        self.job_id = job_id


class InvalidTransition(HarvestError):
    """Raised when a job's persisted status cannot move to the requested one."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Job {job_id} cannot transition from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class FetchError(HarvestError):
    """Network failure, timeout or non-success HTTP status for a single URL."""

    def __init__(self, url: str, reason: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


class StorageError(HarvestError):
    """Raised by storage gateways when the backing store is unavailable."""
