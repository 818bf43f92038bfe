"""Backfill Admin: OHLCV collection dashboard.

Features:
- Refresh symbol info on the backend
- Start a backfill batch for every symbol (one job per interval)
- Live per-symbol progress with per-interval breakdown
- Stop all jobs (best-effort cancel, local stop is immediate)
- Re-attach to jobs already running when the page is reopened

Run with::

    streamlit run streamlit_backfill.py

Reads ``BACKFILL_BACKEND_URL`` / ``BACKFILL_AUTH_TOKEN`` from the
environment.  Polling pauses automatically when no browser session has
rendered the page for ``BACKFILL_VISIBILITY_GRACE_S`` seconds.
"""

from __future__ import annotations

import logging
import time

import streamlit as st

from backfill_monitor.client import BackfillApiClient
from backfill_monitor.common_types import INTERVAL_ORDER, Status
from backfill_monitor.config import MonitorConfig
from backfill_monitor.error_taxonomy import AlreadyRunning, InvalidSubmission
from backfill_monitor.lifecycle import ControllerState, HeartbeatVisibility, LifecycleController
from backfill_monitor.log_redaction import apply_global_log_redaction
from backfill_ui_helpers import (
    STATE_ICONS,
    format_age,
    interval_cell,
    snapshot_frame,
    summarize,
)

logger = logging.getLogger(__name__)

st.set_page_config(
    page_title="Backfill Admin",
    page_icon="🗄️",
    layout="wide",
)

# ── Persistent state (survives reruns) ──────────────────────────

if "cfg" not in st.session_state:
    st.session_state.cfg = MonitorConfig()
    logging.basicConfig(
        level=st.session_state.cfg.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    apply_global_log_redaction()
if "client" not in st.session_state:
    st.session_state.client = BackfillApiClient(st.session_state.cfg)
if "visibility" not in st.session_state:
    st.session_state.visibility = HeartbeatVisibility(st.session_state.cfg.visibility_grace_s)
if "controller" not in st.session_state:
    st.session_state.controller = LifecycleController(
        st.session_state.client,
        st.session_state.cfg,
        visibility=st.session_state.visibility,
    )
    # Session resume: pick up jobs started before this page was opened.
    try:
        st.session_state.controller.resume_active_session()
    except (InvalidSubmission, AlreadyRunning) as exc:
        logger.warning("Session resume skipped: %s", exc)
if "register_message" not in st.session_state:
    st.session_state.register_message = ""
if "start_error" not in st.session_state:
    st.session_state.start_error = ""

client: BackfillApiClient = st.session_state.client
controller: LifecycleController = st.session_state.controller

# This render is proof that someone is looking at the page.
st.session_state.visibility.touch()
if controller.state is ControllerState.SUSPENDED:
    controller.poll_now()
elif controller.stopped_unobserved:
    # The run was stopped while nobody watched; its jobs are still on the backend.
    controller.stopped_unobserved = False
    try:
        controller.resume_active_session()
    except (InvalidSubmission, AlreadyRunning) as exc:
        logger.warning("Session resume skipped: %s", exc)

running = controller.is_running

st.title("🗄️ DB Admin")

# ── 1. Symbol info ──────────────────────────────────────────────

with st.container(border=True):
    st.subheader("1. Refresh symbol info")
    if st.button("Refresh existing symbol info (CSV/API)", disabled=running, width="stretch"):
        try:
            st.session_state.register_message = client.register_symbols()
        except Exception as exc:
            st.session_state.register_message = f"Failed: {exc}"
    msg = st.session_state.register_message
    if msg:
        (st.error if msg.startswith("Failed") else st.success)(msg)

# ── 2. OHLCV collection ─────────────────────────────────────────

with st.container(border=True):
    st.subheader("2. OHLCV data collection")
    c_start, c_stop, c_info = st.columns([2, 2, 3])
    with c_start:
        label = "Jobs running..." if running else "Start collection for all symbols"
        if st.button(label, disabled=running, type="primary", width="stretch"):
            st.session_state.start_error = ""
            try:
                controller.start_collection()
            except AlreadyRunning:
                st.session_state.start_error = "A run is already in progress."
            except Exception as exc:
                st.session_state.start_error = f"Backfill start failed: {exc}"
            st.rerun()
    with c_stop:
        if st.button("Stop all jobs", disabled=not running, width="stretch"):
            acked = controller.stop(cancel_jobs=True)
            st.toast(f"Stop signal sent ({acked} acknowledged). It may take a moment to apply.", icon="🛑")
            st.rerun()
    with c_info:
        poller = controller.poller
        st.caption(
            f"State: **{controller.state.value}** · tracked jobs: {len(controller.tracked)} · "
            f"last poll: {format_age(poller.last_poll_ts)} · {poller.last_poll_status}"
        )
        if controller.is_stale:
            st.warning(
                f"Backend unreachable for {poller.consecutive_failures} polls – progress may be stale."
            )

    if st.session_state.start_error:
        st.error(st.session_state.start_error)

    snapshot = controller.snapshot
    summary = summarize(snapshot)
    if snapshot is None or not len(snapshot):
        st.info("Press the start button to begin collecting.")
    else:
        m = st.columns(5)
        m[0].metric("Symbols", summary["symbols"])
        m[1].metric("Overall", f"{summary['overall_pct']}%")
        m[2].metric("Running", summary[Status.PROGRESS.value])
        m[3].metric("Done", summary[Status.SUCCESS.value])
        m[4].metric("Failed", summary[Status.FAILURE.value])

        tab_cards, tab_table = st.tabs(["Progress", "Table"])
        with tab_cards:
            for idx, sp in enumerate(snapshot.sorted_symbols(), start=1):
                with st.container(border=True):
                    head, tag = st.columns([4, 1])
                    head.markdown(f"**{idx}. {sp.symbol}**  \n{sp.status_text or '-'}")
                    tag.markdown(f"{STATE_ICONS.get(sp.state, '')} `{sp.state.value}`")
                    st.progress(sp.percent / 100.0, text=f"Overall progress {sp.percent}%")
                    cells = st.columns(len(INTERVAL_ORDER))
                    for col, iv in zip(cells, INTERVAL_ORDER):
                        col.caption(f"{iv}  \n{interval_cell(sp.intervals.get(iv))}")
        with tab_table:
            st.dataframe(snapshot_frame(snapshot), width="stretch", hide_index=True, height=600)

# ── Auto-refresh trigger ───────────────────────────────────────

if controller.is_running:
    # Sleep briefly (not the full poll interval) to keep the UI responsive.
    # The controller's own timer gates the actual status calls.
    time.sleep(1)
    st.rerun()
