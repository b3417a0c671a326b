import asyncio

import pytest

from harvest.errors import StorageError
from harvest.fetch.rate_gate import RateGate
from harvest.fetch.session import FetchSession
from harvest.orchestrator.jobs import ExtractedRecord, JobConfig, JobStatus, LogLevel
from harvest.orchestrator.scheduler import JobScheduler
from harvest.storage.sqlite import SqliteStorage


def test_job_roundtrip_and_status_timestamps(tmp_path):
    async def _run():
        async with SqliteStorage(tmp_path / "harvest.db") as storage:
            job = await storage.create_job(
                urls=["https://a.test/1", "https://a.test/2"],
                adapter_type="directory",
                config=JobConfig(rate_limit=3, save_raw_html=True),
                name="plumbers",
            )
            loaded = await storage.get_job(job.job_id)
            assert loaded.urls == ["https://a.test/1", "https://a.test/2"]
            assert loaded.config.rate_limit == 3.0
            assert loaded.config.save_raw_html is True
            assert loaded.status is JobStatus.QUEUED
            assert loaded.started_at is None

            await storage.update_job_status(job.job_id, JobStatus.RUNNING, 0)
            first_start = (await storage.get_job(job.job_id)).started_at
            await storage.update_job_status(job.job_id, JobStatus.PAUSED, 50)
            await storage.update_job_status(job.job_id, JobStatus.RUNNING, 0)
            resumed = await storage.get_job(job.job_id)
            assert resumed.started_at == first_start
            assert resumed.completed_at is None

            await storage.update_job_status(job.job_id, JobStatus.COMPLETED, 100)
            await storage.update_job_metrics(job.job_id, records_found=4, total_pages=2)
            done = await storage.get_job(job.job_id)
            assert done.status is JobStatus.COMPLETED
            assert done.progress == 100
            assert done.records_found == 4
            assert done.total_pages == 2
            assert done.completed_at is not None
            assert [item.job_id for item in await storage.list_jobs()] == [job.job_id]
            assert await storage.get_job("missing") is None

    asyncio.run(_run())


def test_records_and_logs_are_removed_with_their_job(tmp_path):
    async def _run():
        async with SqliteStorage(tmp_path / "harvest.db") as storage:
            job = await storage.create_job(urls=["https://a.test/"], adapter_type="news")
            record = ExtractedRecord(job_id=job.job_id, source_url="https://a.test/", data_type="news", fields={"title": "T"})
            await storage.add_record(record)
            await storage.add_log(job.job_id, LogLevel.WARN, "careful", {"k": 1})

            stored = await storage.get_records(job.job_id)
            assert stored[0].fields == {"title": "T"}
            assert stored[0].record_id == record.record_id
            logs = await storage.get_logs(job.job_id)
            assert logs[0].level is LogLevel.WARN
            assert logs[0].metadata == {"k": 1}

            await storage.delete_job(job.job_id)
            assert await storage.get_job(job.job_id) is None
            assert await storage.get_records(job.job_id) == []
            assert await storage.get_logs(job.job_id) == []

    asyncio.run(_run())


def test_unconnected_storage_raises_storage_error(tmp_path):
    async def _run():
        storage = SqliteStorage(tmp_path / "harvest.db")
        with pytest.raises(StorageError):
            await storage.get_job("any")

    asyncio.run(_run())


def test_scheduler_runs_against_sqlite_with_local_pages(tmp_path, fixture_url):
    async def _run():
        async with SqliteStorage(tmp_path / "harvest.db") as storage:
            job = await storage.create_job(
                urls=[fixture_url("news_article.html"), fixture_url("directory.html")],
                adapter_type="news",
            )
            scheduler = JobScheduler(storage, FetchSession(client=None), rate_gate_factory=lambda rate: RateGate(0))
            final = await scheduler.run(job.job_id)
            return final, await storage.get_records(job.job_id)

    final, records = asyncio.run(_run())
    assert final.status is JobStatus.COMPLETED
    assert final.records_found == 2
    assert records[0].fields["title"] == "City council approves budget"
    assert records[1].fields["email"] == "info@acme.example"
