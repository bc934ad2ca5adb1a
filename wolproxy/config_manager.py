"""Configuration management for the Wake-on-LAN HTTP Proxy."""

import copy
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Any, Mapping, Optional, Tuple
from urllib.parse import urlparse

from .wol_sender import MAC_PATTERN


logger = logging.getLogger(__name__)

DEFAULT_LISTEN = ":8080"
DEFAULT_SKIP_CHECK_TIMEOUT = 30
DEFAULT_BROADCAST_IP = "255.255.255.255"
DEFAULT_WOL_PORT = 9


class ConfigError(ValueError):
    """Raised when the configuration file is missing or invalid."""


@dataclass(frozen=True)
class ProxySettings:
    """General section: where to listen and where to forward."""
    listen: str
    main_host_keyword: str
    destination: str
    skip_check_timeout: int

    @property
    def listen_address(self) -> Tuple[str, int]:
        """Split the listen address into (host, port); an empty host binds all interfaces."""
        return parse_listen_address(self.listen)


@dataclass(frozen=True)
class BackendConfig:
    """An auxiliary backend monitored for liveness and woken when down."""
    name: str
    destination: str
    mac_address: str = ""
    broadcast_ip: str = DEFAULT_BROADCAST_IP
    wol_port: int = DEFAULT_WOL_PORT
    wol_enable: bool = False
    ignored_hosts: frozenset = field(default_factory=frozenset)
    ignored_paths: frozenset = field(default_factory=frozenset)


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    file: str = ""
    max_size_mb: int = 10
    backup_count: int = 3
    console_output: bool = True


@dataclass(frozen=True)
class MonitoringSettings:
    status_enabled: bool = False
    status_port: int = 8081


@dataclass(frozen=True)
class Config:
    """Validated, read-only configuration handed to the proxy core."""
    proxy: ProxySettings
    backends: Mapping[str, BackendConfig]
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)


def parse_listen_address(listen: str) -> Tuple[str, int]:
    """Parse a ``host:port`` or ``:port`` listen address."""
    host, sep, port = listen.rpartition(":")
    if not sep:
        raise ValueError(f"Listen address must be host:port, got {listen!r}")
    try:
        port_int = int(port)
    except ValueError:
        raise ValueError(f"Invalid listen port in {listen!r}") from None
    if not 0 <= port_int <= 65535:
        raise ValueError(f"Listen port out of range in {listen!r}")
    host = host.strip("[]")
    return (host or "0.0.0.0", port_int)


class ConfigManager:
    """Loads and validates the TOML configuration file."""

    def __init__(self, config_path: str = "config.toml"):
        self.config_path = Path(config_path)
        self._raw: Dict[str, Any] = {}
        self._config: Optional[Config] = None
        self._default_config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "proxy": {
                "listenPort": DEFAULT_LISTEN,
                "mainHostKeyword": "",
                "destination": "",
                "skipCheckTimeout": DEFAULT_SKIP_CHECK_TIMEOUT
            },
            "backends": {},
            "logging": {
                "level": "INFO",
                "file": "",
                "max_size_mb": 10,
                "backup_count": 3,
                "console_output": True
            },
            "monitoring": {
                "status_enabled": False,
                "status_port": 8081
            }
        }

    def load_config(self) -> Config:
        """Load configuration from file with validation."""
        if not self.config_path.exists():
            raise ConfigError(f"Config file {self.config_path} not found")

        try:
            with open(self.config_path, 'rb') as f:
                loaded_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Configuration file contains invalid TOML: {e}") from e
        except OSError as e:
            raise ConfigError(f"Could not read config file {self.config_path}: {e}") from e

        self._raw = self._merge_config(self._default_config, loaded_config)
        self._check_sections()
        self._apply_zero_defaults()
        self._validate_config()
        self._config = self._build_config()

        logger.info(f"Configuration loaded successfully from {self.config_path} "
                    f"({len(self._config.backends)} backends)")
        return self._config

    def _merge_config(self, default: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge loaded config with defaults."""
        result = copy.deepcopy(default)

        for key, value in loaded.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _check_sections(self) -> None:
        """Every top-level section must be a table before its keys can be read."""
        errors = [
            f"The {section} section must be a table"
            for section in ("proxy", "backends", "logging", "monitoring")
            if not isinstance(self._raw[section], dict)
        ]
        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(errors)
            logger.error(error_msg)
            raise ConfigError(error_msg)

    def _apply_zero_defaults(self) -> None:
        """An empty listen address or a zero timeout means "use the default"."""
        proxy = self._raw["proxy"]
        if not proxy.get("listenPort"):
            proxy["listenPort"] = DEFAULT_LISTEN
        if proxy.get("skipCheckTimeout") in (0, None):
            proxy["skipCheckTimeout"] = DEFAULT_SKIP_CHECK_TIMEOUT

    def _validate_config(self) -> None:
        """Validate configuration values, collecting every problem."""
        errors = []
        proxy = self._raw["proxy"]

        try:
            parse_listen_address(str(proxy["listenPort"]))
        except ValueError as e:
            errors.append(str(e))

        if not isinstance(proxy["mainHostKeyword"], str):
            errors.append(f"Invalid mainHostKeyword: {proxy['mainHostKeyword']!r}")

        if not self._validate_url(proxy["destination"]):
            errors.append(f"Invalid proxy destination URL: {proxy['destination']!r}")

        timeout = proxy["skipCheckTimeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 0:
            errors.append(f"Invalid skipCheckTimeout: {timeout!r}")

        for name, backend in self._raw["backends"].items():
            if not isinstance(backend, dict):
                errors.append(f"Backend {name}: entry must be a table")
                continue
            errors.extend(self._validate_backend(name, backend))

        log_level = str(self._raw["logging"]["level"]).upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            errors.append(f"Invalid log level: {log_level}. Must be one of {valid_levels}")
        errors.extend(self._validate_logging(self._raw["logging"]))

        if not self._validate_port(self._raw["monitoring"]["status_port"]):
            errors.append(f"Invalid status port: {self._raw['monitoring']['status_port']}")

        if not isinstance(self._raw["monitoring"]["status_enabled"], bool):
            errors.append("monitoring.status_enabled must be true or false")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(errors)
            logger.error(error_msg)
            raise ConfigError(error_msg)

    def _validate_backend(self, name: str, backend: Dict[str, Any]) -> list:
        errors = []

        if not self._validate_url(backend.get("destination", "")):
            errors.append(f"Backend {name}: invalid destination URL {backend.get('destination')!r}")

        wol_port = backend.get("wolPort", DEFAULT_WOL_PORT)
        if not self._validate_port(wol_port):
            errors.append(f"Backend {name}: invalid wolPort {wol_port!r}")

        if not isinstance(backend.get("wolEnable", False), bool):
            errors.append(f"Backend {name}: wolEnable must be true or false")

        for key in ("ignoredHosts", "ignoredPaths"):
            entries = backend.get(key, [])
            if not isinstance(entries, list) or not all(isinstance(e, str) for e in entries):
                errors.append(f"Backend {name}: {key} must be a list of strings")

        # Dispatch reports a bad MAC on every wake attempt; only warn here
        mac = backend.get("macAddress", "")
        if backend.get("wolEnable") and not self._validate_mac_address(str(mac)):
            logger.warning(f"Backend {name}: MAC address {mac!r} is malformed, "
                           "wake signals for it will fail")

        return errors

    def _validate_logging(self, log: Dict[str, Any]) -> list:
        errors = []

        if not isinstance(log["file"], str):
            errors.append(f"Invalid log file: {log['file']!r}")
        if not self._validate_count(log["max_size_mb"]) or log["max_size_mb"] < 1:
            errors.append(f"Invalid logging.max_size_mb: {log['max_size_mb']!r}")
        if not self._validate_count(log["backup_count"]):
            errors.append(f"Invalid logging.backup_count: {log['backup_count']!r}")
        if not isinstance(log["console_output"], bool):
            errors.append("logging.console_output must be true or false")

        return errors

    def _validate_url(self, url: Any) -> bool:
        """Validate that a destination is an absolute http(s) URL."""
        if not isinstance(url, str) or not url:
            return False
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)

    def _validate_mac_address(self, mac: str) -> bool:
        """Validate MAC address format."""
        return bool(MAC_PATTERN.match(mac))

    def _validate_count(self, value: Any) -> bool:
        """Validate a non-negative integer."""
        return isinstance(value, int) and not isinstance(value, bool) and value >= 0

    def _validate_port(self, port: Any) -> bool:
        """Validate port number."""
        return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535

    def _build_config(self) -> Config:
        proxy = self._raw["proxy"]
        backends = {
            name: BackendConfig(
                name=name,
                destination=entry["destination"],
                mac_address=entry.get("macAddress", ""),
                broadcast_ip=entry.get("broadcastIP") or DEFAULT_BROADCAST_IP,
                wol_port=entry.get("wolPort", DEFAULT_WOL_PORT),
                wol_enable=entry.get("wolEnable", False),
                ignored_hosts=frozenset(entry.get("ignoredHosts", [])),
                ignored_paths=frozenset(entry.get("ignoredPaths", [])),
            )
            for name, entry in self._raw["backends"].items()
        }
        log = self._raw["logging"]
        monitoring = self._raw["monitoring"]

        return Config(
            proxy=ProxySettings(
                listen=str(proxy["listenPort"]),
                main_host_keyword=proxy["mainHostKeyword"],
                destination=proxy["destination"],
                skip_check_timeout=proxy["skipCheckTimeout"],
            ),
            backends=MappingProxyType(backends),
            logging=LoggingSettings(
                level=str(log["level"]).upper(),
                file=log["file"],
                max_size_mb=log["max_size_mb"],
                backup_count=log["backup_count"],
                console_output=log["console_output"],
            ),
            monitoring=MonitoringSettings(
                status_enabled=bool(monitoring["status_enabled"]),
                status_port=monitoring["status_port"],
            ),
        )

    def save_example_config(self, path: Optional[str] = None) -> None:
        """Save an example configuration file with comments."""
        if path is None:
            path = "config.toml.example"

        with open(path, 'w', encoding='utf-8') as f:
            f.write(EXAMPLE_CONFIG)

        logger.info(f"Example configuration saved to {path}")

    @property
    def config(self) -> Optional[Config]:
        """Get the current configuration."""
        return self._config


EXAMPLE_CONFIG = """\
# Main proxy configuration
[proxy]
listenPort = ":8080"
# Requests whose Host header does not contain this keyword are rejected
mainHostKeyword = "example.com"
# Primary destination all accepted requests are forwarded to
destination = "http://192.168.1.100:8080"
# Seconds a backend is trusted as online after a successful health check
skipCheckTimeout = 30

# Backends checked on every request and woken via Wake-on-LAN when down
[backends.gameserver]
destination = "http://192.168.1.100:8080/health"
macAddress = "AA:BB:CC:DD:EE:FF"
broadcastIP = "192.168.1.255"
wolPort = 9
wolEnable = true
ignoredHosts = ["status.example.com"]
ignoredPaths = ["/favicon.ico", "/robots.txt"]

[logging]
level = "INFO"
file = "/var/log/wol-http-proxy.log"
max_size_mb = 10
backup_count = 3
console_output = true

[monitoring]
status_enabled = false
status_port = 8081
"""
