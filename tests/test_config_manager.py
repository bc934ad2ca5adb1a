#!/usr/bin/env python3
"""Tests for configuration loading and validation."""

import unittest
import sys
import os
import tempfile
import textwrap

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wolproxy.config_manager import ConfigManager, ConfigError, parse_listen_address


VALID_CONFIG = """\
[proxy]
listenPort = "127.0.0.1:9000"
mainHostKeyword = "example.com"
destination = "http://10.0.0.5:8080"
skipCheckTimeout = 45

[backends.nas]
destination = "http://10.0.0.6:5000/health"
macAddress = "AA:BB:CC:DD:EE:FF"
broadcastIP = "10.0.0.255"
wolPort = 7
wolEnable = true
ignoredHosts = ["static.example.com"]
ignoredPaths = ["/favicon.ico"]

[backends.gpu]
destination = "http://10.0.0.7/"
"""


class TestConfigManager(unittest.TestCase):
    """Test configuration management."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.temp_dir.name, 'config.toml')

    def tearDown(self):
        self.temp_dir.cleanup()

    def write_config(self, content: str) -> str:
        with open(self.config_path, 'w', encoding='utf-8') as f:
            f.write(textwrap.dedent(content))
        return self.config_path

    def test_load_valid_config(self):
        """Test loading a complete configuration."""
        config = ConfigManager(self.write_config(VALID_CONFIG)).load_config()

        self.assertEqual(config.proxy.listen, "127.0.0.1:9000")
        self.assertEqual(config.proxy.listen_address, ("127.0.0.1", 9000))
        self.assertEqual(config.proxy.main_host_keyword, "example.com")
        self.assertEqual(config.proxy.destination, "http://10.0.0.5:8080")
        self.assertEqual(config.proxy.skip_check_timeout, 45)

        self.assertEqual(list(config.backends), ["nas", "gpu"])
        nas = config.backends["nas"]
        self.assertEqual(nas.name, "nas")
        self.assertEqual(nas.mac_address, "AA:BB:CC:DD:EE:FF")
        self.assertEqual(nas.broadcast_ip, "10.0.0.255")
        self.assertEqual(nas.wol_port, 7)
        self.assertTrue(nas.wol_enable)
        self.assertEqual(nas.ignored_hosts, frozenset({"static.example.com"}))
        self.assertEqual(nas.ignored_paths, frozenset({"/favicon.ico"}))

    def test_backend_defaults(self):
        """Test defaults applied to a minimal backend entry."""
        config = ConfigManager(self.write_config(VALID_CONFIG)).load_config()
        gpu = config.backends["gpu"]

        self.assertFalse(gpu.wol_enable)
        self.assertEqual(gpu.broadcast_ip, "255.255.255.255")
        self.assertEqual(gpu.wol_port, 9)
        self.assertEqual(gpu.ignored_hosts, frozenset())
        self.assertEqual(gpu.ignored_paths, frozenset())

    def test_listen_and_timeout_defaults(self):
        """Test an unset listen address and a zero timeout fall back to defaults."""
        path = self.write_config("""\
            [proxy]
            mainHostKeyword = "example.com"
            destination = "http://10.0.0.5"
            skipCheckTimeout = 0
            """)
        config = ConfigManager(path).load_config()

        self.assertEqual(config.proxy.listen, ":8080")
        self.assertEqual(config.proxy.listen_address, ("0.0.0.0", 8080))
        self.assertEqual(config.proxy.skip_check_timeout, 30)
        self.assertEqual(len(config.backends), 0)

    def test_backends_mapping_is_read_only(self):
        """Test the loaded backend mapping cannot be mutated."""
        config = ConfigManager(self.write_config(VALID_CONFIG)).load_config()

        with self.assertRaises(TypeError):
            config.backends["extra"] = config.backends["nas"]

    def test_missing_file_is_fatal(self):
        """Test a missing configuration file raises instead of using defaults."""
        with self.assertRaises(ConfigError):
            ConfigManager(os.path.join(self.temp_dir.name, 'missing.toml')).load_config()

    def test_invalid_toml(self):
        """Test a syntax error is reported as a configuration error."""
        path = self.write_config("[proxy\ndestination = ")
        with self.assertRaises(ConfigError):
            ConfigManager(path).load_config()

    def test_invalid_values_are_collected(self):
        """Test every invalid value is reported in one error."""
        path = self.write_config("""\
            [proxy]
            listenPort = "nonsense"
            destination = "not-a-url"
            skipCheckTimeout = -5

            [backends.nas]
            destination = "ftp://10.0.0.6"
            wolPort = 70000
            ignoredPaths = "/health"
            """)

        with self.assertRaises(ConfigError) as ctx:
            ConfigManager(path).load_config()

        message = str(ctx.exception)
        self.assertIn("nonsense", message)
        self.assertIn("proxy destination", message)
        self.assertIn("skipCheckTimeout", message)
        self.assertIn("Backend nas: invalid destination", message)
        self.assertIn("wolPort", message)
        self.assertIn("ignoredPaths", message)

    def test_section_that_is_not_a_table(self):
        """Test a top-level section given as a plain value is a configuration error."""
        path = self.write_config("""\
            proxy = "x"
            logging = 5
            """)

        with self.assertRaises(ConfigError) as ctx:
            ConfigManager(path).load_config()

        message = str(ctx.exception)
        self.assertIn("proxy section must be a table", message)
        self.assertIn("logging section must be a table", message)

    def test_invalid_logging_values_are_collected(self):
        """Test logging and monitoring values of the wrong type are rejected."""
        path = self.write_config("""\
            [proxy]
            destination = "http://10.0.0.5"

            [logging]
            file = 3
            max_size_mb = "10"
            backup_count = -1
            console_output = "yes"

            [monitoring]
            status_enabled = 1
            """)

        with self.assertRaises(ConfigError) as ctx:
            ConfigManager(path).load_config()

        message = str(ctx.exception)
        self.assertIn("log file", message)
        self.assertIn("max_size_mb", message)
        self.assertIn("backup_count", message)
        self.assertIn("console_output", message)
        self.assertIn("status_enabled", message)

    def test_zero_log_size_rejected(self):
        """Test a rotating log file needs a positive size."""
        path = self.write_config("""\
            [proxy]
            destination = "http://10.0.0.5"

            [logging]
            max_size_mb = 0
            """)

        with self.assertRaises(ConfigError) as ctx:
            ConfigManager(path).load_config()

        self.assertIn("max_size_mb", str(ctx.exception))

    def test_malformed_mac_only_warns(self):
        """Test a malformed MAC address does not prevent startup."""
        path = self.write_config("""\
            [proxy]
            destination = "http://10.0.0.5"

            [backends.nas]
            destination = "http://10.0.0.6"
            macAddress = "invalid"
            wolEnable = true
            """)

        with self.assertLogs('wolproxy.config_manager', level='WARNING') as logs:
            config = ConfigManager(path).load_config()

        self.assertEqual(config.backends["nas"].mac_address, "invalid")
        self.assertTrue(any("malformed" in line for line in logs.output))

    def test_example_config_is_loadable(self):
        """Test the generated example configuration passes validation."""
        config_manager = ConfigManager(self.config_path)
        config_manager.save_example_config(self.config_path)

        config = ConfigManager(self.config_path).load_config()
        self.assertIn("gameserver", config.backends)
        self.assertTrue(config.backends["gameserver"].wol_enable)


class TestListenAddress(unittest.TestCase):
    """Test listen address parsing."""

    def test_port_only(self):
        self.assertEqual(parse_listen_address(":8080"), ("0.0.0.0", 8080))

    def test_host_and_port(self):
        self.assertEqual(parse_listen_address("127.0.0.1:80"), ("127.0.0.1", 80))

    def test_ipv6_host(self):
        self.assertEqual(parse_listen_address("[::1]:8080"), ("::1", 8080))

    def test_invalid(self):
        for value in ["8080", "host:port", ":99999"]:
            with self.assertRaises(ValueError):
                parse_listen_address(value)


if __name__ == '__main__':
    unittest.main()
