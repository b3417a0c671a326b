"""SQLite-backed storage gateway."""
from __future__ import annotations

import asyncio
import functools
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import orjson

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

T = TypeVar("T")

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS scraping_jobs (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        urls_json TEXT NOT NULL,
        adapter_type TEXT NOT NULL,
        config_json TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'queued',
        progress INTEGER NOT NULL DEFAULT 0,
        total_pages INTEGER NOT NULL DEFAULT 0,
        records_found INTEGER NOT NULL DEFAULT 0,
        started_at TEXT,
        completed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scraped_data (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES scraping_jobs(id) ON DELETE CASCADE,
        source_url TEXT NOT NULL,
        data_type TEXT NOT NULL,
        extracted_json TEXT NOT NULL,
        raw_html TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT NOT NULL REFERENCES scraping_jobs(id) ON DELETE CASCADE,
        level TEXT NOT NULL,
        message TEXT NOT NULL,
        metadata_json TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_scraped_data_job ON scraped_data(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_job_logs_job ON job_logs(job_id)",
]


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        job_id=row["id"],
        name=row["name"],
        urls=orjson.loads(row["urls_json"]),
        adapter_type=row["adapter_type"],
        config=JobConfig.model_validate(orjson.loads(row["config_json"])),
        status=JobStatus(row["status"]),
        progress=row["progress"],
        total_pages=row["total_pages"],
        records_found=row["records_found"],
        started_at=_dt(row["started_at"]),
        completed_at=_dt(row["completed_at"]),
        created_at=_dt(row["created_at"]),
    )


def _row_to_record(row: sqlite3.Row) -> ExtractedRecord:
    return ExtractedRecord(
        record_id=row["id"],
        job_id=row["job_id"],
        source_url=row["source_url"],
        data_type=row["data_type"],
        fields=orjson.loads(row["extracted_json"]),
        raw_html=row["raw_html"],
        created_at=_dt(row["created_at"]),
    )


def _row_to_log(row: sqlite3.Row) -> JobLogEntry:
    metadata = row["metadata_json"]
    return JobLogEntry(
        job_id=row["job_id"],
        level=LogLevel(row["level"]),
        message=row["message"],
        metadata=orjson.loads(metadata) if metadata else None,
        created_at=_dt(row["created_at"]),
    )


class SqliteStorage(StorageGateway):
    """Stores jobs, records and logs in a single SQLite file.

    All statements run on a worker thread through ``asyncio.to_thread`` and
    are serialised by one lock, since a sqlite3 connection is not safe to use
    from several threads at once.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._connection is not None:
            return
        try:
            self._connection = await asyncio.to_thread(self._open)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open {self._path}: {exc}") from exc

    def _open(self) -> sqlite3.Connection:
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(self._path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        for ddl in _SCHEMA:
            connection.execute(ddl)
        connection.commit()
        return connection

    async def close(self) -> None:
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        await asyncio.to_thread(connection.close)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        if self._connection is None:
            raise StorageError("Storage is not connected")
        async with self._lock:
            try:
                return await asyncio.to_thread(functools.partial(fn, self._connection, *args))
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc

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

        def _insert(conn: sqlite3.Connection) -> None:
            now = _ts(utcnow())
            conn.execute(
                """
                INSERT INTO scraping_jobs (
                    id, name, urls_json, adapter_type, config_json, status,
                    progress, total_pages, records_found, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, 0, 0, ?, ?)
                """,
                (
                    job.job_id,
                    job.name,
                    orjson.dumps(job.urls).decode(),
                    job.adapter_type,
                    orjson.dumps(job.config.model_dump(by_alias=True)).decode(),
                    job.status.value,
                    _ts(job.created_at),
                    now,
                ),
            )
            conn.commit()

        await self._run(_insert)
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        def _select(conn: sqlite3.Connection) -> Optional[Job]:
            row = conn.execute("SELECT * FROM scraping_jobs WHERE id = ?", (job_id,)).fetchone()
            return _row_to_job(row) if row else None

        return await self._run(_select)

    async def list_jobs(self) -> List[Job]:
        def _select(conn: sqlite3.Connection) -> List[Job]:
            rows = conn.execute("SELECT * FROM scraping_jobs ORDER BY created_at DESC").fetchall()
            return [_row_to_job(row) for row in rows]

        return await self._run(_select)

    async def update_job_status(self, job_id: str, status: JobStatus, progress: Optional[int] = None) -> None:
        def _update(conn: sqlite3.Connection) -> None:
            now = _ts(utcnow())
            assignments = ["status = ?", "updated_at = ?"]
            params: List[object] = [status.value, now]
            if progress is not None:
                assignments.append("progress = ?")
                params.append(progress)
            if status is JobStatus.RUNNING:
                assignments.append("started_at = COALESCE(started_at, ?)")
                params.append(now)
            if status in (JobStatus.COMPLETED, JobStatus.FAILED):
                assignments.append("completed_at = ?")
                params.append(now)
            params.append(job_id)
            conn.execute(f"UPDATE scraping_jobs SET {', '.join(assignments)} WHERE id = ?", params)
            conn.commit()

        await self._run(_update)

    async def update_job_metrics(
        self,
        job_id: str,
        *,
        records_found: Optional[int] = None,
        total_pages: Optional[int] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        values: Dict[str, object] = {}
        if records_found is not None:
            values["records_found"] = records_found
        if total_pages is not None:
            values["total_pages"] = total_pages
        if completed_at is not None:
            values["completed_at"] = _ts(completed_at)
        if not values:
            return
        values["updated_at"] = _ts(utcnow())

        def _update(conn: sqlite3.Connection) -> None:
            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(
                f"UPDATE scraping_jobs SET {assignments} WHERE id = ?",
                [*values.values(), job_id],
            )
            conn.commit()

        await self._run(_update)

    async def add_record(self, record: ExtractedRecord) -> ExtractedRecord:
        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO scraped_data (id, job_id, source_url, data_type, extracted_json, raw_html, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.record_id,
                    record.job_id,
                    record.source_url,
                    record.data_type,
                    orjson.dumps(record.fields).decode(),
                    record.raw_html,
                    _ts(record.created_at),
                ),
            )
            conn.commit()

        await self._run(_insert)
        return record

    async def get_records(
        self,
        job_id: Optional[str] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ExtractedRecord]:
        where, params = ("WHERE job_id = ?", [job_id]) if job_id is not None else ("", [])
        # SQLite needs a LIMIT before OFFSET; -1 means no limit.
        params += [-1 if limit is None else max(limit, 0), max(offset, 0)]

        def _select(conn: sqlite3.Connection) -> List[ExtractedRecord]:
            rows = conn.execute(
                f"SELECT * FROM scraped_data {where} ORDER BY created_at, rowid LIMIT ? OFFSET ?",
                params,
            ).fetchall()
            return [_row_to_record(row) for row in rows]

        return await self._run(_select)

    async def search_records(self, query: str, *, limit: int = 100) -> List[ExtractedRecord]:
        pattern = "%" + _escape_like(query) + "%"

        def _select(conn: sqlite3.Connection) -> List[ExtractedRecord]:
            rows = conn.execute(
                """
                SELECT * FROM scraped_data
                WHERE source_url LIKE ? ESCAPE '\\'
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (pattern, max(limit, 0)),
            ).fetchall()
            return [_row_to_record(row) for row in rows]

        return await self._run(_select)

    async def count_records(self, job_id: Optional[str] = None) -> int:
        def _count(conn: sqlite3.Connection) -> int:
            if job_id is None:
                return conn.execute("SELECT COUNT(*) FROM scraped_data").fetchone()[0]
            return conn.execute("SELECT COUNT(*) FROM scraped_data WHERE job_id = ?", (job_id,)).fetchone()[0]

        return await self._run(_count)

    async def stats(self) -> JobStats:
        def _aggregate(conn: sqlite3.Connection) -> JobStats:
            total, active, completed = conn.execute(
                """
                SELECT COUNT(*),
                       COALESCE(SUM(status = 'running'), 0),
                       COALESCE(SUM(status = 'completed'), 0)
                FROM scraping_jobs
                """
            ).fetchone()
            records = conn.execute("SELECT COUNT(*) FROM scraped_data").fetchone()[0]
            return JobStats(total_jobs=total, active_jobs=active, completed_jobs=completed, total_records=records)

        return await self._run(_aggregate)

    async def add_log(
        self,
        job_id: str,
        level: LogLevel,
        message: str,
        metadata: Optional[Dict[str, object]] = None,
    ) -> None:
        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO job_logs (job_id, level, message, metadata_json, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    job_id,
                    LogLevel(level).value,
                    message,
                    orjson.dumps(metadata).decode() if metadata is not None else None,
                    _ts(utcnow()),
                ),
            )
            conn.commit()

        await self._run(_insert)

    async def get_logs(self, job_id: str) -> List[JobLogEntry]:
        def _select(conn: sqlite3.Connection) -> List[JobLogEntry]:
            rows = conn.execute("SELECT * FROM job_logs WHERE job_id = ? ORDER BY id", (job_id,)).fetchall()
            return [_row_to_log(row) for row in rows]

        return await self._run(_select)

    async def delete_job(self, job_id: str) -> None:
        def _delete(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM scraped_data WHERE job_id = ?", (job_id,))
            conn.execute("DELETE FROM job_logs WHERE job_id = ?", (job_id,))
            conn.execute("DELETE FROM scraping_jobs WHERE id = ?", (job_id,))
            conn.commit()

        await self._run(_delete)
