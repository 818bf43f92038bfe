"""Tests for the backfill_monitor.run command-line entry point."""
from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from backfill_monitor.common_types import ActiveSession, JobRef, Status, StatusItem, Submission
from backfill_monitor.run import build_parser, main


@pytest.fixture()
def api():
    client = MagicMock()
    client.active_jobs.return_value = ActiveSession(submission=Submission(jobs={}))
    with patch("backfill_monitor.run.BackfillApiClient", return_value=client):
        yield client


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_watch_flags(self):
        args = build_parser().parse_args(["start", "--cancel-on-exit", "--quiet"])
        assert args.command == "start"
        assert args.cancel_on_exit is True
        assert args.quiet is True


class TestCommands:
    def test_register(self, api, capsys):
        api.register_symbols.return_value = "Registered 512 symbols"
        assert main(["register"]) == 0
        assert capsys.readouterr().out == "Registered 512 symbols\n"
        api.close.assert_called_once()

    def test_status_without_active_jobs(self, api, capsys):
        assert main(["status"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["symbols"] == 0
        assert "per_symbol" not in summary

    def test_status_prints_snapshot(self, api, capsys):
        api.active_jobs.return_value = ActiveSession(
            submission=Submission(jobs={"j1": JobRef("AAPL", "1m"), "j2": JobRef("AAPL", "1h")}),
            items=(
                StatusItem(job_id="j1", state=Status.SUCCESS, percent=100.0),
                StatusItem(job_id="j2", state=Status.PROGRESS, percent=20.0),
            ),
        )
        assert main(["status"]) == 0
        out = capsys.readouterr()
        summary = json.loads(out.out)
        assert summary["per_symbol"]["AAPL"] == {
            "state": "PROGRESS", "percent": 60, "status": "collecting data...",
        }
        assert "AAPL" in out.err

    def test_resume_with_nothing_running(self, api):
        assert main(["resume", "--quiet"]) == 0
        api.bulk_status.assert_not_called()

    def test_start_without_symbols(self, api):
        api.list_symbols.return_value = []
        assert main(["start"]) == 2
        api.submit_batch.assert_not_called()

    def test_start_runs_to_completion(self, api, capsys):
        api.list_symbols.return_value = ["AAPL"]
        api.submit_batch.return_value = Submission(jobs={"j1": JobRef("AAPL", "1m")}, symbols=("AAPL",))
        api.bulk_status.return_value = [{"task_id": "j1", "state": "SUCCESS", "meta": {"pct": 100}}]
        assert main(["start", "--quiet"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["SUCCESS"] == 1
        assert summary["per_symbol"]["AAPL"]["percent"] == 100
        api.submit_batch.assert_called_once_with(["AAPL"])
