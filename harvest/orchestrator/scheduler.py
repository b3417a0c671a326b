"""Job execution engine: per-job state machine and the fetch/extract/persist loop."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional

import structlog

from harvest.errors import AlreadyActive, FetchError, InvalidTransition, NotFound
from harvest.fetch.fetcher import fetch_page
from harvest.fetch.rate_gate import RateGate
from harvest.fetch.session import DEFAULT_USER_AGENT, FetchSession
from harvest.observability.metrics import MetricsRegistry, timed
from harvest.observability.tracing import clear_context, set_context
from harvest.orchestrator.jobs import (
    AdapterType,
    ExtractedRecord,
    Job,
    JobStatus,
    LogLevel,
    utcnow,
)
from harvest.parse.extractor import extract_fields
from harvest.parse.rules import RuleSet
from harvest.storage.gateway import StorageGateway

LOGGER = structlog.get_logger(__name__)


class RunState(str, Enum):
    """Live state of one execution pass, as seen by the registry."""

    RUNNING = "running"
    PAUSE_REQUESTED = "pause_requested"
    STOP_REQUESTED = "stop_requested"
    EXITING = "exiting"


@dataclass
class _ActiveRun:
    job_id: str
    state: RunState = RunState.RUNNING
    task: Optional["asyncio.Task[None]"] = None


def compute_progress(processed: int, total: int) -> int:
    if total <= 0:
        return 100
    return round(processed / total * 100)


class JobScheduler:
    """Drives scraping jobs and exposes start/pause/resume/stop.

    Every job runs as its own asyncio task and walks its URL list strictly in
    order. The registry of live runs is the only state shared between tasks;
    each entry carries a single :class:`RunState` and every read or write goes
    through ``self._lock``. Pause and stop are cooperative: the loop checks
    its entry between URLs and never interrupts a fetch in flight.

    Resuming replays the URL list from the first URL because no cursor is
    persisted, so records saved before the pause may be written again.

    Cancelling a pass task leaves the job PAUSED so it can be resumed.
    """

    def __init__(
        self,
        storage: StorageGateway,
        session: FetchSession,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        rules: Optional[Mapping[AdapterType, RuleSet]] = None,
        metrics: Optional[MetricsRegistry] = None,
        rate_gate_factory: Callable[[float], RateGate] = RateGate,
    ) -> None:
        self._storage = storage
        self._session = session
        self._user_agent = user_agent
        self._rules = rules
        self._metrics = metrics or MetricsRegistry()
        self._rate_gate_factory = rate_gate_factory
        self._runs: Dict[str, _ActiveRun] = {}
        self._lock = asyncio.Lock()

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    async def start(self, job_id: str) -> "asyncio.Task[None]":
        """Begin an execution pass for ``job_id`` and return its task.

        Raises NotFound for an unknown id, AlreadyActive when a pass is
        already live for the id and InvalidTransition when the job's status
        cannot move to RUNNING.
        """
        job = await self._storage.get_job(job_id)
        if job is None:
            raise NotFound(job_id)
        async with self._lock:
            if job_id in self._runs:
                raise AlreadyActive(job_id)
            if not job.can_transition(JobStatus.RUNNING):
                raise InvalidTransition(job_id, job.status.value, JobStatus.RUNNING.value)
            run = _ActiveRun(job_id=job_id)
            self._runs[job_id] = run
            run.task = asyncio.create_task(self._execute(job, run), name=f"harvest-job-{job_id}")
        LOGGER.info("job_scheduled", job_id=job_id, urls=len(job.urls))
        return run.task

    async def run(self, job_id: str) -> Job:
        """Start ``job_id``, wait for the pass to finish and return the stored job."""
        task = await self.start(job_id)
        await task
        job = await self._storage.get_job(job_id)
        if job is None:
            raise NotFound(job_id)
        return job

    async def pause(self, job_id: str) -> None:
        await self._signal(job_id, RunState.PAUSE_REQUESTED)

    async def stop(self, job_id: str) -> None:
        await self._signal(job_id, RunState.STOP_REQUESTED)

    async def resume(self, job_id: str) -> "asyncio.Task[None]":
        """Cancel a pending pause, or start a new pass for a paused job.

        A pass that has already seen its pause or stop is awaited until it
        has written PAUSED, then a new pass is started.
        """
        exiting: Optional["asyncio.Task[None]"] = None
        async with self._lock:
            run = self._runs.get(job_id)
            if run is not None:
                if run.state is RunState.PAUSE_REQUESTED:
                    run.state = RunState.RUNNING
                    LOGGER.info("job_pause_cancelled", job_id=job_id)
                    return run.task
                if run.state is not RunState.EXITING:
                    raise AlreadyActive(job_id)
                exiting = run.task
        if exiting is not None:
            await asyncio.wait({exiting})
        return await self.start(job_id)

    def active_jobs(self) -> List[str]:
        return sorted(self._runs)

    async def shutdown(self) -> None:
        """Ask every live pass to stop and wait for all of them to exit."""
        async with self._lock:
            tasks = []
            for run in self._runs.values():
                if run.state is not RunState.EXITING:
                    run.state = RunState.STOP_REQUESTED
                if run.task is not None:
                    tasks.append(run.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _signal(self, job_id: str, state: RunState) -> None:
        async with self._lock:
            run = self._runs.get(job_id)
            if run is not None:
                if run.state is not RunState.EXITING:
                    run.state = state
                    LOGGER.info("job_signalled", job_id=job_id, state=state.value)
                return
        if await self._storage.get_job(job_id) is None:
            raise NotFound(job_id)
        LOGGER.info("job_not_active", job_id=job_id, requested=state.value)

    async def _observe(self, run: _ActiveRun) -> RunState:
        """Read the run's signal; a pause or stop flips it to EXITING."""
        async with self._lock:
            if run.state in (RunState.PAUSE_REQUESTED, RunState.STOP_REQUESTED):
                observed = run.state
                run.state = RunState.EXITING
                return observed
            return run.state

    async def _release(self, run: _ActiveRun) -> None:
        async with self._lock:
            if self._runs.get(run.job_id) is run:
                del self._runs[run.job_id]

    async def _execute(self, job: Job, run: _ActiveRun) -> None:
        set_context(job_id=job.job_id)
        try:
            with timed(self._metrics, "job_duration_ms"):
                await self._run_loop(job, run)
        except asyncio.CancelledError:
            LOGGER.warning("job_cancelled", job_id=job.job_id)
            self._metrics.incr("jobs_paused")
            await asyncio.shield(self._record_cancellation(job.job_id))
            raise
        except Exception as exc:  # noqa: BLE001 - any fault fails the pass
            LOGGER.exception("job_failed", job_id=job.job_id)
            self._metrics.incr("jobs_failed")
            await self._record_failure(job.job_id, exc)
        finally:
            await self._release(run)
            clear_context()

    async def _record_failure(self, job_id: str, exc: Exception) -> None:
        try:
            await self._storage.update_job_status(job_id, JobStatus.FAILED)
            await self._storage.add_log(
                job_id,
                LogLevel.ERROR,
                f"Job failed: {exc}",
                {"error_type": type(exc).__name__},
            )
        except Exception:  # noqa: BLE001 - storage may be the original fault
            LOGGER.exception("job_failure_not_recorded", job_id=job_id)

    async def _record_cancellation(self, job_id: str) -> None:
        try:
            await self._storage.update_job_status(job_id, JobStatus.PAUSED)
            await self._storage.add_log(job_id, LogLevel.WARN, "Job cancelled before finishing its URLs")
        except Exception:  # noqa: BLE001 - the cancellation is re-raised regardless
            LOGGER.exception("job_cancellation_not_recorded", job_id=job_id)

    async def _run_loop(self, job: Job, run: _ActiveRun) -> None:
        job_id = job.job_id
        total = len(job.urls)
        gate = self._rate_gate_factory(job.config.rate_limit)

        await self._storage.update_job_status(job_id, JobStatus.RUNNING, 0)
        await self._storage.add_log(job_id, LogLevel.INFO, "Job started", {"urls": total})

        processed = 0
        records_found = job.records_found
        interrupted: Optional[RunState] = None
        for url in job.urls:
            signal = await self._observe(run)
            if signal in (RunState.PAUSE_REQUESTED, RunState.STOP_REQUESTED):
                interrupted = signal
                break

            set_context(job_id=job_id, url=url)
            try:
                if await self._scrape_url(job, url):
                    records_found += 1
                    await self._storage.update_job_metrics(job_id, records_found=records_found)
            except FetchError as exc:
                await self._storage.add_log(
                    job_id,
                    LogLevel.ERROR,
                    f"Failed to scrape {url}: {exc.reason}",
                    {"url": url, "status_code": exc.status_code},
                )
            processed += 1
            await self._storage.update_job_status(job_id, JobStatus.RUNNING, compute_progress(processed, total))
            await gate.wait()

        if interrupted is None and processed == total:
            await self._storage.update_job_status(job_id, JobStatus.COMPLETED, 100)
            await self._storage.update_job_metrics(job_id, total_pages=processed, completed_at=utcnow())
            await self._storage.add_log(
                job_id,
                LogLevel.INFO,
                "Job completed successfully",
                {"pages": processed, "records_found": records_found},
            )
            self._metrics.incr("jobs_completed")
            LOGGER.info("job_completed", job_id=job_id, pages=processed, records_found=records_found)
            return

        progress = compute_progress(processed, total)
        await self._storage.update_job_status(job_id, JobStatus.PAUSED, progress)
        reason = "stopped" if interrupted is RunState.STOP_REQUESTED else "paused"
        await self._storage.add_log(
            job_id,
            LogLevel.WARN,
            f"Job {reason} after {processed} of {total} URLs",
            {"processed": processed, "progress": progress},
        )
        self._metrics.incr("jobs_paused")
        LOGGER.info("job_interrupted", job_id=job_id, reason=reason, processed=processed)

    async def _scrape_url(self, job: Job, url: str) -> bool:
        """Fetch and extract ``url``; return True when a record was persisted."""
        page = await fetch_page(
            self._session,
            url,
            timeout_ms=job.config.timeout_ms,
            user_agent=self._user_agent,
            metrics=self._metrics,
        )
        fields = extract_fields(
            page.html,
            job.adapter_type,
            rules=self._rules,
            extract_contacts=job.config.extract_contacts,
        )
        if not fields:
            self._metrics.incr("empty_extractions")
            return False
        await self._storage.add_record(
            ExtractedRecord(
                job_id=job.job_id,
                source_url=url,
                data_type=job.adapter_type,
                fields=fields,
                raw_html=page.html if job.config.save_raw_html else None,
                created_at=page.fetched_at,
            )
        )
        self._metrics.incr("records_persisted")
        return True
