"""Tests for backfill_monitor.error_taxonomy."""
from __future__ import annotations

from unittest.mock import patch

import pytest

from backfill_monitor.error_taxonomy import (
    AlreadyRunning,
    BackfillMonitorError,
    CancelFailure,
    InvalidSubmission,
    MalformedStatusItem,
    PollTransportFailure,
    retry,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            InvalidSubmission("x", field="tasks"),
            PollTransportFailure("x", job_ids=["a"]),
            MalformedStatusItem("x", job_id="a"),
            CancelFailure("x", job_id="a"),
            AlreadyRunning("x", state="RUNNING"),
        ],
    )
    def test_all_derive_from_base(self, exc):
        assert isinstance(exc, BackfillMonitorError)

    def test_job_ids_frozen_as_tuple(self):
        ids = {"b", "a"}
        exc = PollTransportFailure("down", job_ids=ids)
        assert isinstance(exc.job_ids, tuple)
        assert sorted(exc.job_ids) == ["a", "b"]

    def test_message_preserved(self):
        assert str(CancelFailure("HTTP 500", job_id="j1")) == "HTTP 500"


def _flaky(*outcomes):
    """Callable that raises or returns each outcome in turn; counts its calls."""
    queue = list(outcomes)

    def fn():
        fn.calls += 1
        out = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(out, BaseException):
            raise out
        return out

    fn.calls = 0
    return fn


class TestRetry:
    @patch("backfill_monitor.error_taxonomy.time.sleep")
    def test_succeeds_after_failures(self, sleep):
        fn = _flaky(ConnectionError("a"), ConnectionError("b"), "ok")
        wrapped = retry(attempts=3, jitter_pct=0.0)(fn)
        assert wrapped() == "ok"
        assert fn.calls == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    @patch("backfill_monitor.error_taxonomy.time.sleep")
    def test_gives_up(self, sleep):
        fn = _flaky(ConnectionError("down"))
        with pytest.raises(ConnectionError):
            retry(attempts=2)(fn)()
        assert fn.calls == 2
        assert sleep.call_count == 1

    @patch("backfill_monitor.error_taxonomy.time.sleep")
    def test_non_retryable_raises_immediately(self, sleep):
        fn = _flaky(ValueError("bad"))
        with pytest.raises(ValueError):
            retry(attempts=5, retryable_exceptions=(ConnectionError,))(fn)()
        assert fn.calls == 1
        sleep.assert_not_called()

    @patch("backfill_monitor.error_taxonomy.time.sleep")
    def test_delay_capped(self, sleep):
        fn = _flaky(OSError(), OSError(), OSError(), "ok")
        retry(attempts=4, backoff=10.0, max_delay=5.0, jitter_pct=0.0)(fn)()
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 5.0, 5.0]

    @patch("backfill_monitor.error_taxonomy.time.sleep")
    def test_on_retry_callback(self, sleep):
        seen = []
        fn = _flaky(OSError("x"), "ok")
        retry(attempts=2, on_retry=lambda n, e: seen.append((n, str(e))))(fn)()
        assert seen == [(1, "x")]

    @patch("backfill_monitor.error_taxonomy.time.sleep")
    def test_broken_callback_does_not_stop_retry(self, sleep):
        def cb(n, e):
            raise RuntimeError("callback bug")

        fn = _flaky(OSError("x"), "ok")
        assert retry(attempts=2, on_retry=cb)(fn)() == "ok"
