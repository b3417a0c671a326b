"""In-process storage gateway used by the test suite."""
from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from harvest.errors import StorageError
from harvest.orchestrator.jobs import (
    ExtractedRecord,
    Job,
    JobConfig,
    JobLogEntry,
    JobStats,
    JobStatus,
    LogLevel,
    new_id,
    utcnow,
)
from harvest.storage.gateway import StorageGateway


class MemoryStorage(StorageGateway):
    """Keeps jobs, records and logs in dictionaries.

    ``get_job`` returns copies so callers never mutate stored state directly.
    ``status_history`` keeps every ``(status, progress)`` update in order.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._records: Dict[str, List[ExtractedRecord]] = {}
        self._logs: Dict[str, List[JobLogEntry]] = {}
        self.status_history: Dict[str, List[tuple]] = {}

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise StorageError(f"Unknown job {job_id}")
        return job

    async def create_job(
        self,
        *,
        urls: Sequence[str],
        adapter_type: str,
        config: Optional[JobConfig] = None,
        name: str = "",
    ) -> Job:
        job = Job(
            job_id=new_id(),
            urls=list(urls),
            adapter_type=adapter_type,
            config=config or JobConfig(),
            name=name,
        )
        self._jobs[job.job_id] = job
        self._records[job.job_id] = []
        self._logs[job.job_id] = []
        self.status_history[job.job_id] = []
        return dataclasses.replace(job)

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return dataclasses.replace(job, urls=list(job.urls)) if job else None

    async def list_jobs(self) -> List[Job]:
        return [dataclasses.replace(job) for job in self._jobs.values()]

    async def update_job_status(self, job_id: str, status: JobStatus, progress: Optional[int] = None) -> None:
        job = self._require(job_id)
        job.status = status
        if progress is not None:
            job.progress = progress
        if status is JobStatus.RUNNING and job.started_at is None:
            job.started_at = utcnow()
        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            job.completed_at = utcnow()
        self.status_history[job_id].append((status, progress))

    async def update_job_metrics(
        self,
        job_id: str,
        *,
        records_found: Optional[int] = None,
        total_pages: Optional[int] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        job = self._require(job_id)
        if records_found is not None:
            job.records_found = records_found
        if total_pages is not None:
            job.total_pages = total_pages
        if completed_at is not None:
            job.completed_at = completed_at

    async def add_record(self, record: ExtractedRecord) -> ExtractedRecord:
        self._require(record.job_id)
        self._records[record.job_id].append(record)
        return record

    def _all_records(self, job_id: Optional[str] = None) -> List[ExtractedRecord]:
        if job_id is not None:
            return list(self._records.get(job_id, []))
        merged = [record for records in self._records.values() for record in records]
        return sorted(merged, key=lambda record: record.created_at)

    async def get_records(
        self,
        job_id: Optional[str] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ExtractedRecord]:
        records = self._all_records(job_id)[max(offset, 0):]
        return records if limit is None else records[: max(limit, 0)]

    async def search_records(self, query: str, *, limit: int = 100) -> List[ExtractedRecord]:
        needle = query.lower()
        matches = [record for record in self._all_records() if needle in record.source_url.lower()]
        matches.reverse()
        return matches[: max(limit, 0)]

    async def count_records(self, job_id: Optional[str] = None) -> int:
        return len(self._all_records(job_id))

    async def stats(self) -> JobStats:
        statuses = [job.status for job in self._jobs.values()]
        return JobStats(
            total_jobs=len(statuses),
            active_jobs=statuses.count(JobStatus.RUNNING),
            completed_jobs=statuses.count(JobStatus.COMPLETED),
            total_records=len(self._all_records()),
        )

    async def add_log(
        self,
        job_id: str,
        level: LogLevel,
        message: str,
        metadata: Optional[Dict[str, object]] = None,
    ) -> None:
        self._require(job_id)
        self._logs[job_id].append(JobLogEntry(job_id=job_id, level=level, message=message, metadata=metadata))

    async def get_logs(self, job_id: str) -> List[JobLogEntry]:
        return list(self._logs.get(job_id, []))

    async def delete_job(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._records.pop(job_id, None)
        self._logs.pop(job_id, None)
        self.status_history.pop(job_id, None)
