"""Global configuration for the backfill progress monitor.

All tunables can be overridden via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


@dataclass(frozen=True)
class MonitorConfig:
    """Central configuration – one instance per run.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``MonitorConfig``.
    """

    # ── Backend ─────────────────────────────────────────────────
    backend_url: str = field(
        default_factory=lambda: os.getenv("BACKFILL_BACKEND_URL", "http://localhost:8080"),
    )
    # Credential comes from the auth layer; repr=False keeps it out of logs.
    auth_token: str = field(
        default_factory=lambda: os.getenv("BACKFILL_AUTH_TOKEN", ""),
        repr=False,
    )
    request_timeout_s: float = field(
        default_factory=lambda: _env_float("BACKFILL_REQUEST_TIMEOUT_S", 20.0),
    )

    # ── Polling cadence ─────────────────────────────────────────
    poll_interval_s: float = field(
        default_factory=lambda: _env_float("BACKFILL_POLL_INTERVAL_S", 2.0),
    )

    # ── Status retrieval ────────────────────────────────────────
    # When "0", every cycle fans out one GET per job instead of the bulk call.
    use_bulk_status: bool = field(
        default_factory=lambda: os.getenv("BACKFILL_USE_BULK_STATUS", "1") == "1",
    )
    bulk_chunk_size: int = field(
        default_factory=lambda: _env_int("BACKFILL_BULK_CHUNK_SIZE", 200),
    )
    fanout_workers: int = field(
        default_factory=lambda: _env_int("BACKFILL_FANOUT_WORKERS", 8),
    )

    # ── Degradation ─────────────────────────────────────────────
    stale_after_failures: int = field(
        default_factory=lambda: _env_int("BACKFILL_STALE_AFTER_FAILURES", 3),
    )
    visibility_grace_s: float = field(
        default_factory=lambda: _env_float("BACKFILL_VISIBILITY_GRACE_S", 10.0),
    )
    # A run suspended this long is stopped (jobs keep running).  0 disables.
    suspend_timeout_s: float = field(
        default_factory=lambda: _env_float("BACKFILL_SUSPEND_TIMEOUT_S", 300.0),
    )

    log_level: str = field(
        default_factory=lambda: os.getenv("BACKFILL_LOG_LEVEL", "INFO").upper(),
    )

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def base_url(self) -> str:
        """Backend URL without a trailing slash."""
        return self.backend_url.rstrip("/")

    @property
    def auth_headers(self) -> dict[str, str]:
        """Headers attached to every backend request."""
        if not self.auth_token:
            return {}
        return {"Authorization": f"Bearer {self.auth_token}"}
