"""Storage gateway contract consumed by the job scheduler."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from harvest.orchestrator.jobs import (
    ExtractedRecord,
    Job,
    JobConfig,
    JobLogEntry,
    JobStats,
    JobStatus,
    LogLevel,
)


class StorageGateway(ABC):
    """Durable record of jobs, extracted records and job logs.

    Implementations raise :class:`harvest.errors.StorageError` when the
    backing store fails. ``connect``/``close`` are driven by the hosting
    process; the gateway can also be used as an async context manager.
    """

    async def connect(self) -> None:
        """Open the backing store. No-op by default."""

    async def close(self) -> None:
        """Release the backing store. No-op by default."""

    async def __aenter__(self) -> "StorageGateway":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @abstractmethod
    async def create_job(
        self,
        *,
        urls: Sequence[str],
        adapter_type: str,
        config: Optional[JobConfig] = None,
        name: str = "",
    ) -> Job:
        """Persist a new QUEUED job."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def list_jobs(self) -> List[Job]:
        ...

    @abstractmethod
    async def update_job_status(self, job_id: str, status: JobStatus, progress: Optional[int] = None) -> None:
        """Set status (and progress when given).

        Sets ``started_at`` on the first RUNNING transition and
        ``completed_at`` on COMPLETED or FAILED.
        """

    @abstractmethod
    async def update_job_metrics(
        self,
        job_id: str,
        *,
        records_found: Optional[int] = None,
        total_pages: Optional[int] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        ...

    @abstractmethod
    async def add_record(self, record: ExtractedRecord) -> ExtractedRecord:
        ...

    @abstractmethod
    async def get_records(
        self,
        job_id: Optional[str] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ExtractedRecord]:
        """Return records for one job, or for every job when ``job_id`` is None.

        Records come back in the order they were saved. ``limit`` of None
        returns everything after ``offset``.
        """

    @abstractmethod
    async def search_records(self, query: str, *, limit: int = 100) -> List[ExtractedRecord]:
        """Return records whose source URL contains ``query``, newest first."""

    @abstractmethod
    async def count_records(self, job_id: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def stats(self) -> JobStats:
        """Totals for the dashboard: jobs, running jobs, completions, records."""

    @abstractmethod
    async def add_log(
        self,
        job_id: str,
        level: LogLevel,
        message: str,
        metadata: Optional[Dict[str, object]] = None,
    ) -> None:
        ...

    @abstractmethod
    async def get_logs(self, job_id: str) -> List[JobLogEntry]:
        ...

    @abstractmethod
    async def delete_job(self, job_id: str) -> None:
        """Delete the job together with its records and logs."""
