import os
import unittest
from unittest.mock import patch

from backfill_monitor.config import MonitorConfig


class TestMonitorConfig(unittest.TestCase):
    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        cfg = MonitorConfig()
        self.assertEqual(cfg.backend_url, "http://localhost:8080")
        self.assertEqual(cfg.auth_token, "")
        self.assertEqual(cfg.request_timeout_s, 20.0)
        self.assertEqual(cfg.poll_interval_s, 2.0)
        self.assertTrue(cfg.use_bulk_status)
        self.assertEqual(cfg.bulk_chunk_size, 200)
        self.assertEqual(cfg.fanout_workers, 8)
        self.assertEqual(cfg.stale_after_failures, 3)
        self.assertEqual(cfg.visibility_grace_s, 10.0)
        self.assertEqual(cfg.suspend_timeout_s, 300.0)
        self.assertEqual(cfg.log_level, "INFO")

    @patch.dict(os.environ, {
        "BACKFILL_BACKEND_URL": "https://api.example.test/",
        "BACKFILL_POLL_INTERVAL_S": "0.5",
        "BACKFILL_USE_BULK_STATUS": "0",
        "BACKFILL_FANOUT_WORKERS": "3",
        "BACKFILL_LOG_LEVEL": "debug",
        "BACKFILL_SUSPEND_TIMEOUT_S": "0",
    }, clear=True)
    def test_env_overrides(self):
        cfg = MonitorConfig()
        self.assertEqual(cfg.base_url, "https://api.example.test")
        self.assertEqual(cfg.poll_interval_s, 0.5)
        self.assertFalse(cfg.use_bulk_status)
        self.assertEqual(cfg.fanout_workers, 3)
        self.assertEqual(cfg.log_level, "DEBUG")
        self.assertEqual(cfg.suspend_timeout_s, 0.0)

    @patch.dict(os.environ, {"BACKFILL_POLL_INTERVAL_S": "fast", "BACKFILL_BULK_CHUNK_SIZE": "many"}, clear=True)
    def test_unparseable_values_fall_back(self):
        cfg = MonitorConfig()
        self.assertEqual(cfg.poll_interval_s, 2.0)
        self.assertEqual(cfg.bulk_chunk_size, 200)

    @patch.dict(os.environ, {"BACKFILL_AUTH_TOKEN": "s3cr3t"}, clear=True)
    def test_token_not_in_repr(self):
        cfg = MonitorConfig()
        self.assertEqual(cfg.auth_headers, {"Authorization": "Bearer s3cr3t"})
        self.assertNotIn("s3cr3t", repr(cfg))

    def test_no_token_no_header(self):
        cfg = MonitorConfig(auth_token="")
        self.assertEqual(cfg.auth_headers, {})

    def test_frozen(self):
        cfg = MonitorConfig()
        with self.assertRaises(AttributeError):
            cfg.poll_interval_s = 1.0  # type: ignore[misc]


if __name__ == "__main__":
    unittest.main()
