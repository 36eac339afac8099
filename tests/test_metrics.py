"""Tests for metrics helper functions."""

from pingone_bulk.core.metrics import JobRecord, load_records, log_record, summarize_jobs


def test_summarize_jobs_empty():
    summary = summarize_jobs([])
    assert summary["count"] == 0
    assert summary["success_rate"] == 0.0


def test_summarize_jobs_values():
    records = [
        JobRecord(job_id="a", operation="import", state="completed", total=5, successful=5, failed=0, duration_sec=1.0).to_dict(),
        JobRecord(job_id="b", operation="modify", state="completed", total=5, successful=4, failed=1, duration_sec=3.0).to_dict(),
        JobRecord(job_id="c", operation="delete", state="cancelled", total=10, successful=2, failed=0, not_attempted=8, duration_sec=2.0).to_dict(),
    ]

    summary = summarize_jobs(records)

    assert summary["count"] == 3
    assert summary["by_state"] == {"completed": 2, "cancelled": 1}
    assert summary["records"] == 20
    assert summary["successful"] == 11
    assert summary["failed"] == 1
    assert summary["success_rate"] == round(11 / 12, 3)
    assert summary["avg_duration_sec"] == 2.0
    assert summary["median_duration_sec"] == 2.0


def test_totals_line():
    record = JobRecord(
        job_id="x", operation="import", state="completed", total=3,
        successful=2, failed=1, duration_sec=1.5,
    )
    assert record.totals_line() == (
        "IMPORT TOTALS: Total=3, Succeeded=2, Failed=1, Skipped=0, NotAttempted=0, Duration=1500ms"
    )


def test_log_and_load_records(tmp_path):
    path = tmp_path / "logs" / "jobs.jsonl"
    assert load_records(path) == []

    log_record(JobRecord(job_id="a", operation="import", state="completed", total=1, successful=1, failed=0), path)
    log_record(JobRecord(job_id="b", operation="delete", state="failed", total=2, successful=0, failed=1), path)

    records = load_records(path)
    assert [r["job_id"] for r in records] == ["a", "b"]
    assert records[1]["state"] == "failed"
