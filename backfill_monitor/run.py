"""Entry point: ``python -m backfill_monitor.run <command>``

Commands:
    register   refresh the backend's symbol master
    start      submit a backfill batch for every symbol and watch it
    resume     re-attach to jobs that are already running
    status     print the progress of currently active jobs once

Progress lines go to stderr; a JSON summary of the last snapshot is
written to stdout when the run ends.  Ctrl-C stops watching (add
``--cancel-on-exit`` to also cancel the backend jobs).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from backfill_ui_helpers import progress_line, summarize

from .client import BackfillApiClient
from .common_types import Snapshot
from .config import MonitorConfig
from .error_taxonomy import AlreadyRunning, InvalidSubmission
from .lifecycle import LifecycleController
from .log_redaction import apply_global_log_redaction
from .merger import merge
from .registry import seed

logger = logging.getLogger(__name__)


def _render(snapshot: Snapshot) -> None:
    sys.stderr.write(f"── cycle {snapshot.cycle} ──\n")
    for sp in snapshot.sorted_symbols():
        sys.stderr.write(progress_line(sp) + "\n")
    sys.stderr.flush()


def _summary(snapshot: Snapshot | None) -> dict[str, Any]:
    summary = summarize(snapshot)
    if snapshot is not None:
        summary["per_symbol"] = {
            sp.symbol: {"state": sp.state.value, "percent": sp.percent, "status": sp.status_text}
            for sp in snapshot.sorted_symbols()
        }
    return summary


def _watch(controller: LifecycleController, cancel_on_exit: bool) -> None:
    try:
        while not controller.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        acked = controller.stop(cancel_jobs=cancel_on_exit)
        if cancel_on_exit:
            logger.info("Interrupted: %d cancel requests acknowledged", acked)


def _cmd_register(client: BackfillApiClient, args: argparse.Namespace) -> int:
    sys.stdout.write(client.register_symbols() + "\n")
    return 0


def _cmd_status(client: BackfillApiClient, args: argparse.Namespace) -> int:
    session = client.active_jobs()
    if session.is_empty:
        sys.stdout.write(json.dumps(_summary(None), indent=2) + "\n")
        return 0
    registry, snapshot, _ = seed(session.submission)
    snapshot = merge(snapshot, session.items, registry)
    _render(snapshot)
    sys.stdout.write(json.dumps(_summary(snapshot), indent=2) + "\n")
    return 0


def _cmd_watch(client: BackfillApiClient, args: argparse.Namespace, cfg: MonitorConfig) -> int:
    controller = LifecycleController(client, cfg, on_snapshot=None if args.quiet else _render)
    try:
        if args.command == "start":
            controller.start_collection()
        elif not controller.resume_active_session():
            logger.info("Nothing to resume")
            return 0
    except InvalidSubmission as exc:
        logger.error("Backfill could not be started: %s", exc)
        return 2
    except AlreadyRunning as exc:
        logger.error("%s", exc)
        return 2
    _watch(controller, args.cancel_on_exit)
    sys.stdout.write(json.dumps(_summary(controller.snapshot), indent=2) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backfill_monitor",
        description="Launch and watch OHLCV backfill jobs.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("register", help="refresh symbol info on the backend")
    sub.add_parser("status", help="print progress of active jobs once")
    for name, help_text in (("start", "submit a batch and watch it"), ("resume", "watch running jobs")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--cancel-on-exit", action="store_true", help="cancel backend jobs on Ctrl-C")
        p.add_argument("--quiet", action="store_true", help="no per-cycle progress output")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = MonitorConfig()
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    apply_global_log_redaction()
    logger.info("Backend: %s", cfg.base_url)

    client = BackfillApiClient(cfg)
    try:
        if args.command == "register":
            return _cmd_register(client, args)
        if args.command == "status":
            return _cmd_status(client, args)
        return _cmd_watch(client, args, cfg)
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
