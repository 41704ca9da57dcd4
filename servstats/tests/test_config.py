"""Configuration loading tests."""

from __future__ import annotations

import os
import tempfile
import unittest
from unittest.mock import patch

from servstats.config import (
    ExporterConfig,
    ServstatsConfig,
    load_config,
    load_config_from_env,
    load_dotenv,
    merge_configs,
    validate_config,
)
from servstats.errors import ConfigError


TOML_CONFIG = b"""
[exporters]
enable_stream_exporter = true

[exporters.stream_reader]
export_interval_millis = 1000

[exporters.scrape_exporter]
port = 9100

[meter]
name = "game"
"""


class TestDefaults(unittest.TestCase):
    """Test model defaults."""

    def test_defaults(self):
        """Defaults match the documented values."""
        config = ServstatsConfig()
        self.assertFalse(config.exporters.enable_scrape_exporter)
        self.assertFalse(config.exporters.enable_stream_exporter)
        self.assertFalse(config.exporters.any_enabled)
        self.assertEqual(config.exporters.stream_reader.export_interval_millis, 60000)
        self.assertEqual(config.exporters.stream_reader.export_timeout_millis, 30000)
        self.assertEqual(config.exporters.scrape_exporter.url, "http://localhost:9464/metrics")
        self.assertEqual(config.meter.name, "stats")
        self.assertEqual(config.meter.version, "1.2.0")
        self.assertEqual(config.meter.schema_url, "https://opentelemetry.io/schemas/1.2.0")
        self.assertEqual(config.histograms.max_buckets, 255)
        self.assertEqual(config.histograms.max_scale, 20)

    def test_both_exporters_may_be_enabled(self):
        """Stream and scrape can run together."""
        config = ExporterConfig(enable_scrape_exporter=True, enable_stream_exporter=True)
        self.assertTrue(config.any_enabled)


@patch.dict(os.environ, {}, clear=True)
class TestLoadConfig(unittest.TestCase):
    """Test file, env and override precedence."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "servstats.toml")
        with open(self.path, "wb") as f:
            f.write(TOML_CONFIG)

    def tearDown(self):
        self.tmp.cleanup()

    def test_file_values(self):
        """Values are read from the TOML file."""
        config = load_config(config_file=self.path)
        self.assertTrue(config.exporters.enable_stream_exporter)
        self.assertEqual(config.exporters.stream_reader.export_interval_millis, 1000)
        self.assertEqual(config.exporters.scrape_exporter.port, 9100)
        self.assertEqual(config.exporters.scrape_exporter.host, "localhost")
        self.assertEqual(config.meter.name, "game")

    def test_env_overrides_file(self):
        """Environment variables win over the file."""
        with patch.dict(os.environ, {"SERVSTATS_SCRAPE_PORT": "9200", "SERVSTATS_ENABLE_STREAM": "false"}):
            config = load_config(config_file=self.path)
        self.assertEqual(config.exporters.scrape_exporter.port, 9200)
        self.assertFalse(config.exporters.enable_stream_exporter)
        self.assertEqual(config.exporters.stream_reader.export_interval_millis, 1000)

    def test_overrides_win(self):
        """Explicit overrides win over everything."""
        with patch.dict(os.environ, {"SERVSTATS_SCRAPE_PORT": "9200"}):
            config = load_config(
                config_file=self.path,
                overrides={"exporters": {"scrape_exporter": {"port": 9300}}},
            )
        self.assertEqual(config.exporters.scrape_exporter.port, 9300)

    def test_invalid_port_raises_config_error(self):
        """An out-of-range port raises ConfigError."""
        with self.assertRaises(ConfigError):
            load_config(config_file=self.path, overrides={"exporters": {"scrape_exporter": {"port": 70000}}})

    def test_enabled_scrape_without_host_raises_config_error(self):
        """Scrape enabled with an empty host raises ConfigError."""
        with self.assertRaises(ConfigError):
            load_config(
                config_file=self.path,
                overrides={"exporters": {"enable_scrape_exporter": True, "scrape_exporter": {"host": ""}}},
            )

    def test_malformed_file_raises_config_error(self):
        """Broken TOML raises ConfigError."""
        with open(self.path, "wb") as f:
            f.write(b"[exporters\n")
        with self.assertRaises(ConfigError):
            load_config(config_file=self.path)

    def test_validate_config(self):
        """validate_config reports success and failure."""
        ok, message, config = validate_config(config_file=self.path)
        self.assertTrue(ok)
        self.assertIsNotNone(config)

        ok, message, config = validate_config(
            config_file=self.path,
            overrides={"exporters": {"stream_reader": {"export_interval_millis": 0}}},
        )
        self.assertFalse(ok)
        self.assertIsNone(config)
        self.assertIn("Configuration error", message)


@patch.dict(os.environ, {}, clear=True)
class TestEnvConfig(unittest.TestCase):
    """Test SERVSTATS_* environment parsing."""

    def test_empty_env(self):
        """No variables give an empty config dict."""
        self.assertEqual(load_config_from_env(), {})

    def test_env_values(self):
        """Variables map onto their config sections."""
        env = {
            "SERVSTATS_ENABLE_PROMETHEUS": "1",
            "SERVSTATS_SCRAPE_HOST": "0.0.0.0",
            "SERVSTATS_STREAM_INTERVAL": "5000",
            "SERVSTATS_METER_NAME": "world",
            "SERVSTATS_DEBUG": "yes",
        }
        with patch.dict(os.environ, env):
            result = load_config_from_env()
        self.assertEqual(result, {
            "exporters": {
                "enable_scrape_exporter": True,
                "scrape_exporter": {"host": "0.0.0.0"},
                "stream_reader": {"export_interval_millis": 5000},
            },
            "meter": {"name": "world"},
            "logging": {"debug": True},
        })

    def test_invalid_integer(self):
        """A non-integer value raises ConfigError."""
        with patch.dict(os.environ, {"SERVSTATS_SCRAPE_PORT": "abc"}):
            with self.assertRaises(ConfigError):
                load_config_from_env()

    def test_load_dotenv_does_not_override(self):
        """.env never replaces variables already set."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, ".env")
            with open(path, "w", encoding="utf-8") as f:
                f.write("# comment\nSERVSTATS_METER_NAME='fromfile'\nSERVSTATS_DEBUG=true\n")
            with patch.dict(os.environ, {"SERVSTATS_DEBUG": "false"}):
                load_dotenv(path)
                self.assertEqual(os.environ["SERVSTATS_METER_NAME"], "fromfile")
                self.assertEqual(os.environ["SERVSTATS_DEBUG"], "false")


class TestMergeConfigs(unittest.TestCase):
    """Test nested config merging."""

    def test_deep_merge(self):
        """Nested sections merge key by key."""
        base = {"exporters": {"enable_stream_exporter": True, "scrape_exporter": {"port": 1}}}
        override = {"exporters": {"scrape_exporter": {"host": "h"}}}
        self.assertEqual(merge_configs(base, override), {
            "exporters": {"enable_stream_exporter": True, "scrape_exporter": {"port": 1, "host": "h"}},
        })


if __name__ == "__main__":
    unittest.main()
