"""Tests for netspeed.config -- defaults, validation and persistence."""

import json
import os
import tempfile
import unittest
from unittest import mock

from netspeed.config import SpeedtestConfig, load_config, save_config
from netspeed.constants import (
    DEFAULT_CONNECTIONS,
    DEFAULT_DURATION,
    DEFAULT_PING_COUNT,
    MAX_CONNECTIONS,
    MAX_DURATION,
    MAX_PING_COUNT,
    MIN_CONNECTIONS,
    MIN_DURATION,
    MIN_PING_COUNT,
)


class TestDefaults(unittest.TestCase):
    def test_documented_defaults(self):
        cfg = SpeedtestConfig()
        self.assertEqual(cfg.connections, DEFAULT_CONNECTIONS)
        self.assertEqual(cfg.ping_count, DEFAULT_PING_COUNT)
        self.assertEqual(cfg.download_duration, DEFAULT_DURATION)
        self.assertEqual(cfg.select_count, 3)
        self.assertEqual(cfg.probe_method, "http")
        self.assertFalse(cfg.early_stop)
        self.assertTrue(cfg.secure)
        self.assertIsNone(cfg.server_id)

    def test_defaults_valid(self):
        SpeedtestConfig().validate()

    def test_lists_not_shared(self):
        a, b = SpeedtestConfig(), SpeedtestConfig()
        a.exclude_ids.append(1)
        self.assertEqual(b.exclude_ids, [])


class TestReplace(unittest.TestCase):
    def test_none_keeps_value(self):
        cfg = SpeedtestConfig(connections=8).replace(connections=None, ping_count=3)
        self.assertEqual(cfg.connections, 8)
        self.assertEqual(cfg.ping_count, 3)

    def test_base_unchanged(self):
        base = SpeedtestConfig()
        base.replace(connections=16)
        self.assertEqual(base.connections, DEFAULT_CONNECTIONS)


class TestValidate(unittest.TestCase):
    def _invalid(self, **kwargs):
        with self.assertRaises(ValueError):
            SpeedtestConfig(**kwargs).validate()

    def test_ping_count_range(self):
        self._invalid(ping_count=MIN_PING_COUNT - 1)
        self._invalid(ping_count=MAX_PING_COUNT + 1)
        SpeedtestConfig(ping_count=MIN_PING_COUNT).validate()
        SpeedtestConfig(ping_count=MAX_PING_COUNT).validate()

    def test_duration_range(self):
        self._invalid(download_duration=MIN_DURATION - 0.5)
        self._invalid(upload_duration=MAX_DURATION + 1)

    def test_connections_range(self):
        self._invalid(connections=MIN_CONNECTIONS - 1)
        self._invalid(connections=MAX_CONNECTIONS + 1)

    def test_warm_up_shorter_than_duration(self):
        self._invalid(warm_up=10.0, download_duration=10.0)
        self._invalid(warm_up=-1.0)

    def test_probe_method(self):
        self._invalid(probe_method="icmp")
        SpeedtestConfig(probe_method="ws").validate()

    def test_select_and_limit(self):
        self._invalid(select_count=0)
        self._invalid(server_limit=0)

    def test_chunk_size(self):
        self._invalid(chunk_size=0)
        self._invalid(chunk_size=64 * 1024 * 1024)

    def test_catalog_urls_required(self):
        self._invalid(catalog_urls=[])


class TestLoadSave(unittest.TestCase):
    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with mock.patch("netspeed.config._config_path", return_value=path):
                self.assertEqual(load_config(), SpeedtestConfig())

    def test_round_trip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "sub", "config.json")
            with mock.patch("netspeed.config._config_path", return_value=path):
                save_config(SpeedtestConfig(connections=8, exclude_ids=[5]))
                cfg = load_config()
        self.assertEqual(cfg.connections, 8)
        self.assertEqual(cfg.exclude_ids, [5])

    def test_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with open(path, "w") as fh:
                fh.write("{not json")
            with mock.patch("netspeed.config._config_path", return_value=path):
                with self.assertLogs("netspeed.config", level="WARNING"):
                    cfg = load_config()
        self.assertEqual(cfg, SpeedtestConfig())

    def test_unknown_keys_ignored(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with open(path, "w") as fh:
                json.dump({"connections": 6, "plan": 100}, fh)
            with mock.patch("netspeed.config._config_path", return_value=path):
                with self.assertLogs("netspeed.config", level="WARNING") as logs:
                    cfg = load_config()
        self.assertEqual(cfg.connections, 6)
        self.assertTrue(any("plan" in line for line in logs.output))

    def test_not_an_object(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with open(path, "w") as fh:
                json.dump([1, 2, 3], fh)
            with mock.patch("netspeed.config._config_path", return_value=path):
                self.assertEqual(load_config(), SpeedtestConfig())


if __name__ == "__main__":
    unittest.main()
