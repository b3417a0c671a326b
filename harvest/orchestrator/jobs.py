"""Definitions for scraping jobs, their records and their lifecycle."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class AdapterType(str, Enum):
    """Known extraction rule sets; anything else falls back to ``CUSTOM``."""

    ECOMMERCE = "ecommerce"
    DIRECTORY = "directory"
    NEWS = "news"
    SOCIAL = "social"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: str) -> "AdapterType":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.CUSTOM


_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.PAUSED, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PAUSED: frozenset({JobStatus.RUNNING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class JobConfig(BaseModel):
    """Run configuration as submitted by the job-creation flow.

    Keys may be given in snake_case or in the camelCase used by the API
    (``rateLimit``, ``timeoutMs``...). Numeric values are clamped rather than
    rejected so a stored job always remains runnable.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    rate_limit: float = Field(default=1.0, description="Requests per second")
    timeout_ms: int = Field(default=30000, description="Per-request timeout in milliseconds")
    max_depth: int = 3
    use_proxy: bool = False
    extract_contacts: bool = True
    follow_links: bool = False
    use_javascript: bool = Field(default=False, alias="useJavaScript")
    save_raw_html: bool = False

    @field_validator("rate_limit", mode="before")
    @classmethod
    def _clamp_rate(cls, value: object) -> float:
        if value in (None, "", 0):
            return 1.0
        return _clamp(float(value), 0.1, 10.0)

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def _clamp_timeout(cls, value: object) -> int:
        if value in (None, ""):
            return 30000
        return int(_clamp(int(value), 1000, 300000))

    @field_validator("max_depth", mode="before")
    @classmethod
    def _clamp_depth(cls, value: object) -> int:
        if value in (None, ""):
            return 3
        return int(_clamp(int(value), 1, 10))


@dataclass
class Job:
    """A scraping run over an ordered list of URLs."""

    job_id: str
    urls: List[str]
    adapter_type: str
    config: JobConfig = field(default_factory=JobConfig)
    name: str = ""
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    total_pages: int = 0
    records_found: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def can_transition(self, target: JobStatus) -> bool:
        """Return True when moving from the current status to ``target`` is allowed."""
        return target in _TRANSITIONS[self.status]

    def to_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "name": self.name,
            "urls": list(self.urls),
            "adapter_type": self.adapter_type,
            "config": self.config.model_dump(by_alias=True),
            "status": self.status.value,
            "progress": self.progress,
            "total_pages": self.total_pages,
            "records_found": self.records_found,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ExtractedRecord:
    """One persisted extraction result for one fetched page."""

    job_id: str
    source_url: str
    data_type: str
    fields: Dict[str, str]
    raw_html: Optional[str] = None
    record_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, object]:
        return {
            "record_id": self.record_id,
            "job_id": self.job_id,
            "source_url": self.source_url,
            "data_type": self.data_type,
            "fields": dict(self.fields),
            "raw_html": self.raw_html,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class JobLogEntry:
    job_id: str
    level: LogLevel
    message: str
    metadata: Optional[Dict[str, object]] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class JobStats:
    """Dashboard totals across every stored job."""

    total_jobs: int = 0
    active_jobs: int = 0
    completed_jobs: int = 0
    total_records: int = 0

    @property
    def success_rate(self) -> float:
        """Percentage of jobs that completed, rounded to one decimal."""
        if self.total_jobs <= 0:
            return 0.0
        return round(self.completed_jobs / self.total_jobs * 100, 1)

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_jobs": self.total_jobs,
            "active_jobs": self.active_jobs,
            "completed_jobs": self.completed_jobs,
            "total_records": self.total_records,
            "success_rate": self.success_rate,
        }
