"""Tests for backfill_ui_helpers.py: pure display helpers."""
from __future__ import annotations

from backfill_monitor.common_types import (
    INTERVAL_ORDER,
    IntervalProgress,
    JobRef,
    Status,
    StatusItem,
    Submission,
)
from backfill_monitor.merger import merge
from backfill_monitor.registry import seed
from backfill_ui_helpers import (
    format_age,
    format_ts,
    interval_cell,
    interval_tag,
    progress_bar,
    progress_line,
    snapshot_frame,
    snapshot_rows,
    summarize,
)


def _snapshot():
    registry, s0, _ = seed(Submission(
        jobs={
            "j1": JobRef("MSFT", "1m"),
            "j2": JobRef("MSFT", "1d"),
            "j3": JobRef("AAPL", "1m"),
        },
        symbols=("ZZZ",),
    ))
    return merge(s0, [
        StatusItem(job_id="j1", state=Status.SUCCESS, percent=100.0),
        StatusItem(job_id="j2", state=Status.PROGRESS, percent=50.0),
        StatusItem(job_id="j3", state=Status.FAILURE, error="no data"),
    ], registry)


class TestCells:
    def test_missing_interval(self):
        assert interval_tag(None) == "-"
        assert interval_cell(None) == "-"

    def test_running_cell(self):
        ip = IntervalProgress(interval="1h", state=Status.PROGRESS, percent=42.4)
        assert interval_cell(ip) == "42% · running"

    def test_done_and_failed_tags(self):
        assert interval_tag(IntervalProgress(interval="1m", state=Status.SUCCESS)) == "done"
        assert interval_tag(IntervalProgress(interval="1m", state=Status.FAILURE)) == "failed"
        assert interval_tag(IntervalProgress(interval="1m")) == "waiting"


class TestProgressBar:
    def test_half(self):
        assert progress_bar(50, width=10) == "[#####-----]"

    def test_bounds(self):
        assert progress_bar(-5, width=4) == "[----]"
        assert progress_bar(250, width=4) == "[####]"


class TestFormatting:
    def test_age(self):
        assert format_age(None) == "—"
        assert format_age(100.0, now=130.0) == "30s ago"
        assert format_age(100.0, now=100.0 + 300) == "5m ago"
        assert format_age(100.0, now=100.0 + 7200) == "2h ago"

    def test_ts(self):
        assert format_ts(None) == "—"
        assert format_ts(1704153600.0) == "2024-01-02 00:00 UTC"


class TestRows:
    def test_sorted_and_numbered(self):
        rows = snapshot_rows(_snapshot())
        assert [r["symbol"] for r in rows] == ["AAPL", "MSFT", "ZZZ"]
        assert [r["#"] for r in rows] == [1, 2, 3]

    def test_interval_columns(self):
        msft = snapshot_rows(_snapshot())[1]
        assert msft["1m"] == "100% · done"
        assert msft["1d"] == "50% · running"
        assert msft["5m"] == "-"
        assert msft["progress"] == 75

    def test_no_snapshot(self):
        assert snapshot_rows(None) == []

    def test_frame_columns(self):
        df = snapshot_frame(_snapshot())
        assert len(df) == 3
        assert list(df.columns)[:5] == ["#", "symbol", "state", "status", "progress"]
        assert list(df.columns)[5:] == list(INTERVAL_ORDER)

    def test_empty_frame(self):
        df = snapshot_frame(None)
        assert df.empty
        assert "symbol" in df.columns


class TestSummary:
    def test_counts(self):
        summary = summarize(_snapshot())
        assert summary["cycle"] == 1
        assert summary["symbols"] == 3
        assert summary["FAILURE"] == 1
        assert summary["PROGRESS"] == 1
        assert summary["UNKNOWN"] == 1
        # (0 + 75 + 0) / 3
        assert summary["overall_pct"] == 25

    def test_no_snapshot(self):
        summary = summarize(None)
        assert summary["symbols"] == 0
        assert summary["overall_pct"] == 0

    def test_progress_line(self):
        msft = _snapshot().get("MSFT")
        line = progress_line(msft, width=4)
        assert line.startswith("MSFT")
        assert "[###-]" in line
        assert "75%" in line
        assert "PROGRESS" in line
