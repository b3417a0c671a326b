"""Command-line entrypoints for the harvest job engine."""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

import tomllib
from dotenv import load_dotenv

from harvest.errors import HarvestError
from harvest.fetch.session import DEFAULT_USER_AGENT, create_fetch_session
from harvest.observability.log import configure_logging
from harvest.orchestrator.jobs import AdapterType, JobConfig
from harvest.orchestrator.scheduler import JobScheduler
from harvest.parse.rules import load_rule_sets
from harvest.storage.export import write_csv, write_json
from harvest.storage.sqlite import SqliteStorage

DEFAULT_SETTINGS = Path("config/settings.toml")
DEFAULT_LOGGING = Path("config/logging.yaml")


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file; a missing file yields an empty config."""
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _db_path(settings: Dict[str, object]) -> Path:
    env_path = os.environ.get("HARVEST_DB")
    if env_path:
        return Path(env_path)
    return Path(settings.get("app", {}).get("db_path", "data/harvest.db"))


def build_storage(settings: Dict[str, object]) -> SqliteStorage:
    return SqliteStorage(_db_path(settings))


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="harvest", description="Scraping job engine")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-job", help="Register a new queued job")
    create.add_argument("--name", default="", help="Human readable job name")
    create.add_argument(
        "--adapter",
        default=AdapterType.CUSTOM.value,
        help="Adapter type (ecommerce|directory|news|social|custom)",
    )
    create.add_argument("--url", dest="urls", action="append", default=[], help="Target URL (repeatable)")
    create.add_argument("--urls-file", type=Path, help="File with one URL per line")
    create.add_argument("--rate-limit", type=float, default=1.0, help="Requests per second")
    create.add_argument("--timeout-ms", type=int, default=30000, help="Per-request timeout in milliseconds")
    create.add_argument("--no-contacts", action="store_true", help="Skip email/phone extraction")
    create.add_argument("--save-raw-html", action="store_true", help="Store fetched markup on each record")

    run = sub.add_parser("run", help="Execute a job until it completes or fails")
    run.add_argument("job_id")
    run.add_argument("--metrics-out", type=Path, help="Write run counters to this JSON file")

    resume = sub.add_parser("resume", help="Resume a paused job (replays from the first URL)")
    resume.add_argument("job_id")
    resume.add_argument("--metrics-out", type=Path, help="Write run counters to this JSON file")

    status = sub.add_parser("status", help="Show job status")
    status.add_argument("job_id", nargs="?")

    logs = sub.add_parser("logs", help="Print the log entries of a job")
    logs.add_argument("job_id")

    records = sub.add_parser("records", help="List or search extracted records")
    scope = records.add_mutually_exclusive_group()
    scope.add_argument("--job-id", help="Restrict the listing to one job")
    scope.add_argument("--q", dest="query", help="Match records whose source URL contains this text")
    records.add_argument("--limit", type=int, default=100)
    records.add_argument("--offset", type=int, default=0)

    sub.add_parser("stats", help="Show job and record totals")

    export = sub.add_parser("export", help="Export extracted records")
    export.add_argument("--job-id", help="Restrict the export to one job")
    export.add_argument("--format", choices=("csv", "json"), default="json")
    export.add_argument("--out", type=Path, required=True, help="Destination file")

    return parser


def _read_urls(args: argparse.Namespace) -> List[str]:
    urls = [url.strip() for url in args.urls if url.strip()]
    if args.urls_file:
        lines = args.urls_file.read_text(encoding="utf-8").splitlines()
        urls.extend(line.strip() for line in lines if line.strip() and not line.startswith("#"))
    return urls


async def cmd_create_job(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    urls = _read_urls(args)
    if not urls:
        raise SystemExit("At least one URL is required")
    config = JobConfig(
        rate_limit=args.rate_limit,
        timeout_ms=args.timeout_ms,
        extract_contacts=not args.no_contacts,
        save_raw_html=args.save_raw_html,
    )
    async with build_storage(settings) as storage:
        job = await storage.create_job(urls=urls, adapter_type=args.adapter, config=config, name=args.name)
    print(json.dumps(job.to_dict(), indent=2))


async def _execute(args: argparse.Namespace, settings: Dict[str, object], *, resume: bool) -> None:
    job_id = args.job_id
    fetch_cfg = settings.get("fetch", {})
    extract_cfg = settings.get("extract", {})
    user_agent = fetch_cfg.get("user_agent", DEFAULT_USER_AGENT)
    rules = None
    if extract_cfg.get("rules_path"):
        rules = load_rule_sets(Path(extract_cfg["rules_path"]))

    async with build_storage(settings) as storage:
        async with create_fetch_session(
            user_agent=user_agent,
            max_connections=int(fetch_cfg.get("max_connections", 10)),
        ) as session:
            scheduler = JobScheduler(storage, session, user_agent=user_agent, rules=rules)
            task = await (scheduler.resume(job_id) if resume else scheduler.start(job_id))
            try:
                await task
            finally:
                await scheduler.shutdown()
        job = await storage.get_job(job_id)
    payload = job.to_dict() if job else {"job_id": job_id}
    payload["metrics"] = scheduler.metrics.snapshot()
    if args.metrics_out:
        scheduler.metrics.export(args.metrics_out, job_id=job_id)
    print(json.dumps(payload, indent=2))


async def cmd_status(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    async with build_storage(settings) as storage:
        if args.job_id:
            job = await storage.get_job(args.job_id)
            if job is None:
                raise SystemExit(f"Job not found: {args.job_id}")
            jobs = [job]
        else:
            jobs = await storage.list_jobs()
    summary = [
        {
            "job_id": job.job_id,
            "name": job.name,
            "status": job.status.value,
            "progress": job.progress,
            "total_pages": job.total_pages,
            "records_found": job.records_found,
        }
        for job in jobs
    ]
    print(json.dumps(summary, indent=2))


async def cmd_logs(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    async with build_storage(settings) as storage:
        entries = await storage.get_logs(args.job_id)
    for entry in entries:
        print(f"{entry.created_at.isoformat()} [{entry.level.value}] {entry.message}")


async def cmd_records(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    async with build_storage(settings) as storage:
        if args.query:
            records = await storage.search_records(args.query, limit=args.limit)
        else:
            records = await storage.get_records(args.job_id, limit=args.limit, offset=args.offset)
    print(json.dumps([record.to_dict() for record in records], indent=2))


async def cmd_stats(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    async with build_storage(settings) as storage:
        stats = await storage.stats()
    print(json.dumps(stats.to_dict(), indent=2))


async def cmd_export(args: argparse.Namespace, settings: Dict[str, object]) -> None:
    async with build_storage(settings) as storage:
        records = await storage.get_records(args.job_id)
    if args.format == "csv":
        path = write_csv(records, args.out)
    else:
        path = write_json(records, args.out)
    print(json.dumps({"records": len(records), "path": str(path)}, indent=2))


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(DEFAULT_SETTINGS)
    configure_logging(DEFAULT_LOGGING)

    try:
        if args.command == "create-job":
            asyncio.run(cmd_create_job(args, settings))
        elif args.command == "run":
            asyncio.run(_execute(args, settings, resume=False))
        elif args.command == "resume":
            asyncio.run(_execute(args, settings, resume=True))
        elif args.command == "status":
            asyncio.run(cmd_status(args, settings))
        elif args.command == "logs":
            asyncio.run(cmd_logs(args, settings))
        elif args.command == "records":
            asyncio.run(cmd_records(args, settings))
        elif args.command == "stats":
            asyncio.run(cmd_stats(args, settings))
        elif args.command == "export":
            asyncio.run(cmd_export(args, settings))
    except HarvestError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
