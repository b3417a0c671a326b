import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from harvest.orchestrator.jobs import ExtractedRecord, JobStats, JobStatus
from harvest.storage.memory import MemoryStorage
from harvest.storage.sqlite import SqliteStorage

BASE = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _backend(kind, tmp_path):
    if kind == "sqlite":
        return SqliteStorage(tmp_path / "queries.db")
    return MemoryStorage()


async def _seed(storage):
    shop = await storage.create_job(urls=["https://shop.test/"], adapter_type="ecommerce")
    news = await storage.create_job(urls=["https://news.test/"], adapter_type="news")
    urls = [
        (shop, "https://shop.test/kettle"),
        (shop, "https://shop.test/toaster"),
        (news, "https://news.test/kettle-recall"),
        (shop, "https://shop.test/100%_cotton"),
    ]
    for offset, (job, url) in enumerate(urls):
        await storage.add_record(
            ExtractedRecord(
                job_id=job.job_id,
                source_url=url,
                data_type=job.adapter_type,
                fields={"title": url.rsplit("/", 1)[-1]},
                created_at=BASE + timedelta(minutes=offset),
            )
        )
    return shop, news


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_record_listing_pages_in_save_order(kind, tmp_path):
    async def _run():
        async with _backend(kind, tmp_path) as storage:
            shop, _news = await _seed(storage)
            first_page = await storage.get_records(shop.job_id, limit=2)
            second_page = await storage.get_records(shop.job_id, limit=2, offset=2)
            everything = await storage.get_records(offset=1)
            return first_page, second_page, everything

    first_page, second_page, everything = asyncio.run(_run())
    assert [r.source_url for r in first_page] == ["https://shop.test/kettle", "https://shop.test/toaster"]
    assert [r.source_url for r in second_page] == ["https://shop.test/100%_cotton"]
    assert [r.source_url for r in everything] == [
        "https://shop.test/toaster",
        "https://news.test/kettle-recall",
        "https://shop.test/100%_cotton",
    ]


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_search_matches_source_url_newest_first(kind, tmp_path):
    async def _run():
        async with _backend(kind, tmp_path) as storage:
            await _seed(storage)
            return (
                await storage.search_records("KETTLE"),
                await storage.search_records("kettle", limit=1),
                await storage.search_records("%_"),
                await storage.search_records("nothing-like-this"),
            )

    both, newest, literal, none = asyncio.run(_run())
    assert [r.source_url for r in both] == ["https://news.test/kettle-recall", "https://shop.test/kettle"]
    assert [r.source_url for r in newest] == ["https://news.test/kettle-recall"]
    assert [r.source_url for r in literal] == ["https://shop.test/100%_cotton"]
    assert none == []


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_counts_and_dashboard_stats(kind, tmp_path):
    async def _run():
        async with _backend(kind, tmp_path) as storage:
            empty = await storage.stats()
            shop, news = await _seed(storage)
            await storage.create_job(urls=["https://x.test/"], adapter_type="custom")
            await storage.update_job_status(shop.job_id, JobStatus.RUNNING, 0)
            await storage.update_job_status(shop.job_id, JobStatus.COMPLETED, 100)
            await storage.update_job_status(news.job_id, JobStatus.RUNNING, 0)
            return empty, await storage.stats(), await storage.count_records(shop.job_id), await storage.count_records()

    empty, stats, shop_count, total = asyncio.run(_run())
    assert empty == JobStats()
    assert empty.success_rate == 0.0
    assert stats.total_jobs == 3
    assert stats.active_jobs == 1
    assert stats.completed_jobs == 1
    assert stats.total_records == 4
    assert stats.success_rate == 33.3
    assert shop_count == 3
    assert total == 4
