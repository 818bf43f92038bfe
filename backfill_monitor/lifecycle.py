"""Lifecycle controller: drives poll cycles for one backfill run.

State machine::

    IDLE ──start/resume──▶ RUNNING ⇄ SUSPENDED ──stop/complete──▶ STOPPED

The controller exclusively owns the polling timer (a daemon
``threading.Thread`` sleeping on an interruptible ``threading.Event``).
Each tick asks the visibility check whether anyone is watching; while
nobody is, the tick is a no-op and the controller is SUSPENDED.
A run left SUSPENDED for ``suspend_timeout_s`` is stopped without cancelling
its jobs (``stopped_unobserved`` is set) so an abandoned observer does not
keep the timer thread alive; the jobs can be re-attached with
``resume_active_session()``.

Cycles never overlap: a tick that finds another cycle in flight is
skipped.  Published snapshots are immutable and replaced in one
attribute assignment made under the controller lock, after the stop
check, so nothing is published once ``stop()`` has returned.  Readers on
other threads need no lock.

Usage::

    controller = LifecycleController(client, cfg, on_snapshot=render)
    controller.start_collection()
    ...
    controller.stop(cancel_jobs=True)
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable

import httpx

from ._http import sanitize_exc
from .common_types import ActiveSession, Snapshot, Submission
from .config import MonitorConfig
from .error_taxonomy import AlreadyRunning, CancelFailure, InvalidSubmission
from .merger import merge
from .poller import BulkStatusPoller
from .registry import ProgressRegistry, seed

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


class ControllerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SUSPENDED = "SUSPENDED"
    STOPPED = "STOPPED"


class HeartbeatVisibility:
    """Visibility check fed by the observing surface.

    The dashboard calls :meth:`touch` on every render; the observer counts
    as visible while the last touch is younger than *grace_s*.
    """

    def __init__(self, grace_s: float = 10.0) -> None:
        self.grace_s = grace_s
        self._last_seen = time.monotonic()

    def touch(self) -> None:
        self._last_seen = time.monotonic()

    def __call__(self) -> bool:
        return (time.monotonic() - self._last_seen) <= self.grace_s


def _always_visible() -> bool:
    return True


class LifecycleController:
    """Owns the tracked set, the current snapshot and the polling timer.

    Parameters
    ----------
    client : BackfillApiClient
        Backend adapter (submit, status, active jobs, cancel).
    cfg : MonitorConfig
    poller : BulkStatusPoller, optional
        Defaults to a poller over *client*.
    visibility : callable, optional
        ``visibility() -> bool``; queried once per tick.
    on_snapshot : callable, optional
        Listener called with every published snapshot.
    """

    def __init__(
        self,
        client: Any,
        cfg: MonitorConfig,
        *,
        poller: BulkStatusPoller | None = None,
        visibility: Callable[[], bool] | None = None,
        on_snapshot: SnapshotListener | None = None,
    ) -> None:
        self._client = client
        self._cfg = cfg
        self._poller = poller or BulkStatusPoller(client, cfg)
        self._visibility = visibility or _always_visible
        self._listeners: list[SnapshotListener] = [on_snapshot] if on_snapshot else []

        self._lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._done_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._state = ControllerState.IDLE
        self._registry: ProgressRegistry | None = None
        self._snapshot: Snapshot | None = None
        self._tracked: frozenset[str] = frozenset()
        self._suspended_at: float | None = None

        self.skipped_ticks: int = 0
        self.stopped_unobserved: bool = False

    # ── Observable state ────────────────────────────────────────

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    @property
    def tracked(self) -> frozenset[str]:
        return self._tracked

    @property
    def registry(self) -> ProgressRegistry | None:
        return self._registry

    @property
    def poller(self) -> BulkStatusPoller:
        return self._poller

    @property
    def is_running(self) -> bool:
        return self._state in (ControllerState.RUNNING, ControllerState.SUSPENDED)

    @property
    def is_stale(self) -> bool:
        """True after ``stale_after_failures`` consecutive failed rounds."""
        return self.is_running and self._poller.consecutive_failures >= self._cfg.stale_after_failures

    @property
    def timer_active(self) -> bool:
        return self._thread is not None

    def subscribe(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    # ── Run start ───────────────────────────────────────────────

    def start(self, submission: Submission, *, background: bool = True) -> Snapshot:
        """Seed a new run from *submission* and begin polling.

        Raises :class:`AlreadyRunning` while a run is tracked and
        :class:`InvalidSubmission` (before any state changes) for an empty
        or malformed submission.
        """
        self._begin(submission, initial_items=(), background=background)
        return self._snapshot  # type: ignore[return-value]

    def start_collection(self, *, background: bool = True) -> Snapshot:
        """Submit a backfill batch for every known symbol and track it."""
        self._ensure_startable()
        symbols = self._client.list_symbols()
        if not symbols:
            raise InvalidSubmission(
                "backend has no symbols; refresh symbol info first", field="symbols",
            )
        submission = self._client.submit_batch(symbols)
        return self.start(submission, background=background)

    def resume_active_session(self, *, background: bool = True) -> bool:
        """Re-attach to jobs already running on the backend.

        Returns ``False`` (and stays idle) when the backend reports no
        active jobs or cannot be reached.
        """
        self._ensure_startable()
        try:
            session: ActiveSession = self._client.active_jobs()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Active-session lookup failed: %s", sanitize_exc(exc))
            return False
        if session.is_empty:
            logger.info("No active jobs to resume")
            return False
        logger.info("Resuming %d active jobs", len(session.submission.jobs))
        self._begin(session.submission, initial_items=session.items, background=background)
        return True

    def _ensure_startable(self) -> None:
        if self.is_running:
            raise AlreadyRunning(f"controller is {self._state.value}", state=self._state.value)

    def _begin(self, submission: Submission, *, initial_items: Any, background: bool) -> None:
        with self._lock:
            self._ensure_startable()
            registry, snapshot, tracked = seed(submission)
            if initial_items:
                snapshot = merge(snapshot, initial_items, registry)
            self._registry = registry
            self._tracked = tracked
            self._poller.reset()
            self._done_event.clear()
            self._suspended_at = None
            self._state = ControllerState.RUNNING
            self._snapshot = snapshot
            self.stopped_unobserved = False
        logger.info("Run started: tracking %d jobs", len(tracked))
        self._notify(snapshot)
        self._refresh_tracked(snapshot)
        if not self.is_running:
            return
        self._run_cycle()
        if background and self.is_running:
            self._start_timer()

    # ── Ticking ─────────────────────────────────────────────────

    def tick(self) -> bool:
        """One scheduled cycle.  Returns True if a poll was performed."""
        if not self.is_running:
            return False
        if not self._is_visible():
            with self._lock:
                if self._state is ControllerState.RUNNING:
                    self._state = ControllerState.SUSPENDED
                    self._suspended_at = time.monotonic()
                    logger.info("Observer hidden – polling suspended")
            if self._abandoned():
                logger.info(
                    "Observer gone for %.0fs – stopping; active jobs can be resumed later",
                    self._cfg.suspend_timeout_s,
                )
                self.stopped_unobserved = True
                self.stop()
            return False
        with self._lock:
            if self._state is ControllerState.SUSPENDED:
                self._state = ControllerState.RUNNING
                self._suspended_at = None
                logger.info("Observer visible again – polling resumed")
        return self._run_cycle()

    def poll_now(self) -> bool:
        """Out-of-band poll, e.g. when the observer becomes visible again."""
        with self._lock:
            if not self.is_running:
                return False
            if self._state is ControllerState.SUSPENDED:
                self._state = ControllerState.RUNNING
                self._suspended_at = None
                logger.info("Polling resumed on request")
        return self._run_cycle()

    def _abandoned(self) -> bool:
        """True once polling has been suspended longer than ``suspend_timeout_s``."""
        limit = self._cfg.suspend_timeout_s
        since = self._suspended_at
        if limit <= 0 or since is None or self._state is not ControllerState.SUSPENDED:
            return False
        return time.monotonic() - since >= limit

    def _is_visible(self) -> bool:
        try:
            return bool(self._visibility())
        except Exception:
            logger.exception("Visibility check failed; assuming visible")
            return True

    def _run_cycle(self) -> bool:
        if not self._cycle_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.debug("Poll cycle already in flight – tick skipped")
            return False
        try:
            tracked = self._tracked
            registry = self._registry
            if not tracked or registry is None:
                self._complete()
                return False
            items = self._poller.poll(tracked)
            with self._lock:
                # stop() may have landed while the round was in flight.
                if self._state is not ControllerState.RUNNING or self._registry is not registry:
                    return True
                if not items:
                    return True
                snapshot = merge(self._snapshot, items, registry)  # type: ignore[arg-type]
                self._snapshot = snapshot
            self._notify(snapshot)
            self._refresh_tracked(snapshot)
            return True
        finally:
            self._cycle_lock.release()

    def _refresh_tracked(self, snapshot: Snapshot) -> None:
        registry = self._registry
        if registry is None:
            return
        with self._lock:
            if not self.is_running:
                return
            remaining = frozenset(
                job_id for job_id in self._tracked
                if not snapshot.job_state(registry.lookup(job_id)).is_terminal  # type: ignore[arg-type]
            )
            self._tracked = remaining
        if not remaining:
            self._complete()

    def _notify(self, snapshot: Snapshot) -> None:
        # Callers assign self._snapshot under the lock first.
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed")

    # ── Timer resource ──────────────────────────────────────────

    def _start_timer(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            # One event per timer: a restarted run never revives an old loop.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="backfill-status-poller",
                daemon=True,
            )
            self._thread.start()
        logger.info("Polling timer started (interval=%.1fs)", self._cfg.poll_interval_s)

    def _release_timer(self) -> None:
        with self._lock:
            if self._thread is None:
                return
            self._stop_event.set()
            self._thread = None
        logger.debug("Polling timer released")

    def _run_loop(self, stop_event: threading.Event) -> None:
        """Main loop running in the timer thread."""
        while not stop_event.wait(timeout=self._cfg.poll_interval_s):
            try:
                self.tick()
            except Exception:
                logger.exception("Poll tick failed")
        logger.debug("Poll loop exited")

    # ── Teardown ────────────────────────────────────────────────

    def _complete(self) -> None:
        with self._lock:
            if not self.is_running:
                return
            self._tracked = frozenset()
            self._state = ControllerState.STOPPED
        self._release_timer()
        self._done_event.set()
        logger.info("All tracked jobs reached a terminal state – polling stopped")

    def stop(self, *, cancel_jobs: bool = False) -> int:
        """Stop tracking (idempotent).  The last snapshot stays available.

        With *cancel_jobs*, a best-effort cancel is sent for every job that
        was still tracked; failures are logged and do not block the stop.
        Returns the number of acknowledged cancels.
        """
        with self._lock:
            to_cancel = self._tracked
            was = self._state
            self._tracked = frozenset()
            self._state = ControllerState.STOPPED
        self._release_timer()
        self._done_event.set()
        if was is not ControllerState.STOPPED:
            logger.info("Run stopped (was %s, %d jobs still tracked)", was.value, len(to_cancel))
        if cancel_jobs and to_cancel:
            return self._cancel_all(to_cancel)
        return 0

    def _cancel_one(self, job_id: str) -> bool:
        try:
            return bool(self._client.cancel_job(job_id))
        except CancelFailure as exc:
            logger.warning("Cancel failed for job %s: %s", exc.job_id or job_id, exc)
            return False

    def _cancel_all(self, job_ids: frozenset[str]) -> int:
        workers = max(1, min(int(self._cfg.fanout_workers), len(job_ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cancel") as executor:
            acked = sum(executor.map(self._cancel_one, sorted(job_ids)))
        logger.info("Cancel sent to %d jobs (%d acknowledged)", len(job_ids), acked)
        return acked

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the run completes or is stopped."""
        return self._done_event.wait(timeout)
