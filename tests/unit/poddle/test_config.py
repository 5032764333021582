#!/usr/bin/env python3
"""Tests for configuration loading, environment variables and validation."""

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from poddle import config
from poddle.config import load_config_file, parse_duration, parse_listen_address


@pytest.mark.unit
class TestParseDuration(unittest.TestCase):
    """Tests for parse_duration."""

    def test_go_style_strings(self):
        self.assertEqual(parse_duration("15s"), 15.0)
        self.assertEqual(parse_duration("8m"), 480.0)
        self.assertEqual(parse_duration("1m30s"), 90.0)
        self.assertEqual(parse_duration("500ms"), 0.5)
        self.assertEqual(parse_duration("2h"), 7200.0)
        self.assertEqual(parse_duration("1.5s"), 1.5)

    def test_plain_numbers_are_seconds(self):
        self.assertEqual(parse_duration(60), 60.0)
        self.assertEqual(parse_duration("2.5"), 2.5)

    def test_invalid_values(self):
        for value in ("", "soon", "10 s", "5x", "s10", True):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_duration(value)

    def test_negative_values(self):
        with self.assertRaises(ValueError):
            parse_duration(-1)


@pytest.mark.unit
class TestParseListenAddress(unittest.TestCase):
    """Tests for parse_listen_address."""

    def test_empty_host(self):
        self.assertEqual(parse_listen_address(":8080"), ("", 8080))

    def test_host_and_port(self):
        self.assertEqual(parse_listen_address("127.0.0.1:0"), ("127.0.0.1", 0))

    def test_ipv6(self):
        self.assertEqual(parse_listen_address("[::1]:9000"), ("::1", 9000))

    def test_invalid(self):
        for value in ("8080", "host:port", ":70000"):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_listen_address(value)


@pytest.mark.unit
class TestConfigDefaults(unittest.TestCase):
    """Tests for default configuration values."""

    def test_defaults(self):
        cfg = config.Config()
        self.assertEqual(cfg.addr, ":8080")
        self.assertEqual(cfg.idle_timeout, 60.0)
        self.assertEqual(cfg.read_timeout, 15.0)
        self.assertEqual(cfg.write_timeout, 480.0)
        self.assertEqual(cfg.wait_timeout, 15.0)
        self.assertEqual(cfg.ffmpeg_path, "ffmpeg")
        self.assertEqual(cfg.search_backend, "itunes")
        self.assertIsNone(cfg.database)
        self.assertEqual(cfg.storage.driver, "memory")
        self.assertEqual(cfg.log_level, "INFO")
        self.assertEqual(cfg.listen_address, ("", 8080))

    def test_config_is_frozen(self):
        cfg = config.Config()
        with self.assertRaises(ValidationError):
            cfg.addr = ":9090"

    def test_unknown_field_is_rejected(self):
        with self.assertRaises(ValidationError):
            config.Config(not_a_field=True)


@pytest.mark.unit
class TestConfigEnvironment(unittest.TestCase):
    """Tests for environment variable loading."""

    def test_environment_overrides_defaults(self):
        env = {
            "ADDR": "127.0.0.1:9000",
            "IDLE_TIMEOUT": "2m",
            "WRITE_TIMEOUT": "30",
            "FFMPEG_PATH": "/opt/ffmpeg",
            "DATABASE": "sqlite:/tmp/poddle.db",
            "CACHE_ENABLED": "false",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env):
            cfg = config.Config()
        self.assertEqual(cfg.addr, "127.0.0.1:9000")
        self.assertEqual(cfg.idle_timeout, 120.0)
        self.assertEqual(cfg.write_timeout, 30.0)
        self.assertEqual(cfg.ffmpeg_path, "/opt/ffmpeg")
        self.assertEqual(cfg.storage.driver, "sqlite")
        self.assertEqual(cfg.storage.dsn, "/tmp/poddle.db")
        self.assertFalse(cfg.cache_enabled)
        self.assertEqual(cfg.log_level, "DEBUG")

    def test_explicit_values_win_over_environment(self):
        with patch.dict(os.environ, {"ADDR": "127.0.0.1:9000", "READ_TIMEOUT": "1s"}):
            cfg = config.Config(addr=":7000", read_timeout="3s")
        self.assertEqual(cfg.addr, ":7000")
        self.assertEqual(cfg.read_timeout, 3.0)

    def test_invalid_environment_duration_falls_back(self):
        with patch.dict(os.environ, {"WAIT_TIMEOUT": "forever"}):
            with self.assertLogs("poddle.config", level="WARNING") as logs:
                cfg = config.Config()
        self.assertEqual(cfg.wait_timeout, 15.0)
        self.assertIn("WAIT_TIMEOUT", logs.output[0])

    def test_invalid_explicit_duration_is_an_error(self):
        with self.assertRaises(ValidationError):
            config.Config(wait_timeout="forever")

    def test_blank_environment_value_is_ignored(self):
        with patch.dict(os.environ, {"FFMPEG_PATH": "   "}):
            cfg = config.Config()
        self.assertEqual(cfg.ffmpeg_path, "ffmpeg")


@pytest.mark.unit
class TestConfigValidation(unittest.TestCase):
    """Tests for field validation."""

    def test_invalid_log_level(self):
        with self.assertRaises(ValidationError):
            config.Config(log_level="LOUD")

    def test_unsupported_database(self):
        with self.assertRaises(ValidationError) as ctx:
            config.Config(database="mysql://db")
        self.assertIn("unsupported database DSN", str(ctx.exception))

    def test_postgres_database_is_accepted(self):
        cfg = config.Config(database="postgres://user@localhost/poddle")
        self.assertEqual(cfg.storage.driver, "postgres")

    def test_invalid_addr(self):
        with self.assertRaises(ValidationError):
            config.Config(addr="not-an-address")

    def test_search_backend_is_lowercased(self):
        self.assertEqual(config.Config(search_backend=" iTunes ").search_backend, "itunes")

    def test_empty_ffmpeg_path(self):
        with self.assertRaises(ValidationError):
            config.Config(ffmpeg_path=" ")

    def test_invalid_cache_flag(self):
        with self.assertRaises(ValidationError):
            config.Config(cache_enabled="maybe")


@pytest.mark.unit
class TestLoadConfigFile(unittest.TestCase):
    """Tests for load_config_file."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_yaml(self):
        path = self.tmp / "poddle.yaml"
        path.write_text("addr: ':9999'\nwrite_timeout: 10m\n", encoding="utf-8")
        data = load_config_file(str(path))
        self.assertEqual(data, {"addr": ":9999", "write_timeout": "10m"})
        self.assertEqual(config.Config(**data).write_timeout, 600.0)

    def test_json(self):
        path = self.tmp / "poddle.json"
        path.write_text(json.dumps({"ffmpeg_path": "/bin/ffmpeg"}), encoding="utf-8")
        self.assertEqual(load_config_file(str(path)), {"ffmpeg_path": "/bin/ffmpeg"})

    def test_empty_yaml(self):
        path = self.tmp / "empty.yml"
        path.write_text("", encoding="utf-8")
        self.assertEqual(load_config_file(str(path)), {})

    def test_missing_file(self):
        with self.assertRaises(ValueError):
            load_config_file(str(self.tmp / "missing.yaml"))

    def test_unsupported_extension(self):
        path = self.tmp / "poddle.toml"
        path.write_text("addr = ':1'", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_config_file(str(path))

    def test_non_mapping(self):
        path = self.tmp / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_config_file(str(path))

    def test_invalid_json(self):
        path = self.tmp / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_config_file(str(path))
