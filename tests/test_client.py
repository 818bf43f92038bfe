"""Tests for backfill_monitor.client against an in-process httpx transport."""
from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest

from backfill_monitor.client import BackfillApiClient
from backfill_monitor.common_types import JobRef, Status
from backfill_monitor.config import MonitorConfig
from backfill_monitor.error_taxonomy import CancelFailure, InvalidSubmission


def _client(handler) -> tuple[BackfillApiClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recorder(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    cfg = MonitorConfig(backend_url="http://backend.test/", auth_token="tok")
    return BackfillApiClient(cfg, transport=httpx.MockTransport(recorder)), seen


class TestSymbols:
    def test_list_symbols_sends_bearer(self):
        client, seen = _client(lambda r: httpx.Response(200, json={"symbols": ["AAPL", "", "MSFT"]}))
        assert client.list_symbols() == ["AAPL", "MSFT"]
        assert seen[0].url.path == "/symbols/all"
        assert seen[0].headers["Authorization"] == "Bearer tok"

    def test_register_returns_backend_message(self):
        client, seen = _client(lambda r: httpx.Response(200, json={"message": "Registered 512 symbols"}))
        assert client.register_symbols() == "Registered 512 symbols"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/get_symbol_info/register_symbols"

    def test_register_default_message(self):
        client, _ = _client(lambda r: httpx.Response(200, json={}))
        assert client.register_symbols() == "symbol info refreshed"


class TestSubmitBatch:
    def test_builds_submission(self):
        body = {"tasks": [
            {"task_id": "j1", "symbol": "AAPL", "interval": "1m"},
            {"task_id": "j2", "symbol": "AAPL", "interval": "1d"},
        ]}
        client, seen = _client(lambda r: httpx.Response(200, json=body))
        sub = client.submit_batch(["AAPL", "MSFT"])
        assert sub.jobs == {"j1": JobRef("AAPL", "1m"), "j2": JobRef("AAPL", "1d")}
        assert sub.symbols == ("AAPL", "MSFT")
        assert seen[0].url.path == "/ohlcv/backfill"
        assert json.loads(seen[0].content) == {}

    def test_missing_tasks_field(self):
        client, _ = _client(lambda r: httpx.Response(200, json={"ok": True}))
        with pytest.raises(InvalidSubmission) as exc_info:
            client.submit_batch()
        assert exc_info.value.field == "tasks"

    def test_empty_tasks(self):
        client, _ = _client(lambda r: httpx.Response(200, json={"tasks": []}))
        with pytest.raises(InvalidSubmission):
            client.submit_batch()

    def test_non_json_body(self):
        client, _ = _client(lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(InvalidSubmission) as exc_info:
            client.submit_batch()
        assert exc_info.value.field == "body"

    def test_server_error_not_retried(self):
        client, seen = _client(lambda r: httpx.Response(503))
        with patch("backfill_monitor._http.time.sleep") as sleep:
            with pytest.raises(httpx.HTTPStatusError):
                client.submit_batch()
        assert len(seen) == 1
        sleep.assert_not_called()


class TestStatus:
    def test_bulk_status_payload(self):
        statuses = [{"task_id": "j1", "state": "PROGRESS", "meta": {"pct": 5}}]
        client, seen = _client(lambda r: httpx.Response(200, json={"statuses": statuses}))
        assert client.bulk_status(["j1", "j2"]) == statuses
        assert seen[0].url.path == "/ohlcv/status/bulk"
        assert json.loads(seen[0].content) == {"task_ids": ["j1", "j2"]}

    def test_bulk_status_retries_once(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"statuses": []})])
        client, seen = _client(lambda r: next(responses))
        with patch("backfill_monitor._http.time.sleep") as sleep:
            assert client.bulk_status(["j1"]) == []
        assert len(seen) == 2
        sleep.assert_called_once_with(1)

    def test_missing_bulk_endpoint_raises(self):
        client, _ = _client(lambda r: httpx.Response(404))
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            client.bulk_status(["j1"])
        assert exc_info.value.response.status_code == 404

    def test_job_status(self):
        raw = {"task_id": "j7", "state": "SUCCESS", "meta": {"pct": 100}}
        client, seen = _client(lambda r: httpx.Response(200, json=raw))
        assert client.job_status("j7") == raw
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/ohlcv/status/j7"


class TestActiveJobs:
    def test_no_active_jobs(self):
        client, _ = _client(lambda r: httpx.Response(200, json={"tasks": [], "statuses": []}))
        assert client.active_jobs().is_empty

    def test_active_jobs_with_statuses(self):
        body = {
            "tasks": [{"task_id": "j1", "symbol": "TSLA", "interval": "1h"}],
            "statuses": [{"task_id": "j1", "state": "STARTED", "meta": {"pct": 12}}],
        }
        client, seen = _client(lambda r: httpx.Response(200, json=body))
        session = client.active_jobs()
        assert seen[0].url.path == "/ohlcv/active"
        assert not session.is_empty
        assert session.submission.jobs == {"j1": JobRef("TSLA", "1h")}
        assert session.items[0].state is Status.PROGRESS
        assert session.items[0].percent == 12.0


class TestCancel:
    def test_acknowledged(self):
        client, seen = _client(lambda r: httpx.Response(200, json={"message": "revoked"}))
        assert client.cancel_job("j1") is True
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/ohlcv/stop/j1"

    def test_rejected(self):
        client, _ = _client(lambda r: httpx.Response(500))
        with pytest.raises(CancelFailure) as exc_info:
            client.cancel_job("j1")
        assert exc_info.value.job_id == "j1"

    def test_transport_error_retried_then_reported(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client, seen = _client(refuse)
        with patch("backfill_monitor.error_taxonomy.time.sleep"):
            with pytest.raises(CancelFailure):
                client.cancel_job("j1")
        assert len(seen) == 2
