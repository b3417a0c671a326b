"""Flat CSV and JSON dumps of extracted records."""
from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Iterable, List, Sequence

import orjson

from harvest.orchestrator.jobs import ExtractedRecord

CSV_HEADERS = ("Source URL", "Type", "Email", "Phone", "Name", "Company", "Scraped At")


def csv_row(record: ExtractedRecord) -> List[str]:
    fields = record.fields
    return [
        record.source_url,
        record.data_type,
        fields.get("email", ""),
        fields.get("phone", ""),
        fields.get("name", ""),
        fields.get("company", ""),
        record.created_at.isoformat() if record.created_at else "",
    ]


def render_csv(records: Iterable[ExtractedRecord]) -> str:
    """Render one row per record with the fixed export columns, all fields quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        writer.writerow(csv_row(record))
    return buffer.getvalue()


def write_csv(records: Iterable[ExtractedRecord], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_csv(records), encoding="utf-8")
    return path


def write_json(records: Sequence[ExtractedRecord], path: Path) -> Path:
    """Dump full records, including every extracted field, as a JSON array."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [record.to_dict() for record in records]
    path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
    return path
