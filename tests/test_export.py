import csv
import json
from datetime import datetime, timezone

from harvest.orchestrator.jobs import ExtractedRecord
from harvest.storage.export import CSV_HEADERS, render_csv, write_csv, write_json


def _records():
    stamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return [
        ExtractedRecord(
            job_id="job-1",
            source_url="https://dir.test/acme",
            data_type="directory",
            fields={"name": "Acme", "company": "Acme, Inc.", "email": "hi@acme.test", "address": "1 Main"},
            created_at=stamp,
        ),
        ExtractedRecord(
            job_id="job-1",
            source_url="https://news.test/story",
            data_type="news",
            fields={"title": "Story"},
            created_at=stamp,
        ),
    ]


def test_csv_has_fixed_columns_one_row_per_record(tmp_path):
    path = write_csv(_records(), tmp_path / "out" / "records.csv")
    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert tuple(rows[0]) == CSV_HEADERS
    assert rows[1] == [
        "https://dir.test/acme",
        "directory",
        "hi@acme.test",
        "",
        "Acme",
        "Acme, Inc.",
        "2024-05-01T12:00:00+00:00",
    ]
    assert rows[2][:2] == ["https://news.test/story", "news"]
    assert len(rows) == 3


def test_csv_quotes_every_field():
    first_data_line = render_csv(_records()[:1]).splitlines()[1]
    assert first_data_line.startswith('"https://dir.test/acme","directory"')


def test_json_export_keeps_all_fields(tmp_path):
    path = write_json(_records(), tmp_path / "records.json")
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert len(payload) == 2
    assert payload[0]["fields"]["address"] == "1 Main"
    assert payload[1]["data_type"] == "news"
