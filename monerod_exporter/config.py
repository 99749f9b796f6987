"""Configuration loading.

Values come from built-in defaults, then an optional TOML file, then
environment variables named MONEROD_EXPORTER_<KEY>, with nested keys joined
by a double underscore (MONEROD_EXPORTER_MONEROD__BASE_URL).
"""

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

ENV_PREFIX = "MONEROD_EXPORTER_"
ENV_SEPARATOR = "__"
CONFIG_FILE_NAME = "monerod-exporter.toml"

DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "sec": 1.0,
    "secs": 1.0,
    "second": 1.0,
    "seconds": 1.0,
    "m": 60.0,
    "min": 60.0,
    "mins": 60.0,
    "minute": 60.0,
    "minutes": 60.0,
    "h": 3600.0,
    "hr": 3600.0,
    "hrs": 3600.0,
    "hour": 3600.0,
    "hours": 3600.0,
    "d": 86400.0,
    "day": 86400.0,
    "days": 86400.0,
}
DURATION_PART_RE = re.compile(r"(\d+)\s*([a-z]+)")


class ConfigError(Exception):
    pass


def parse_duration(value):
    """Parse a human duration such as ``15s``, ``500ms`` or ``1m 30s`` into seconds."""
    text = str(value).strip().lower()
    if not text:
        raise ValueError("empty duration")
    total = 0.0
    pos = 0
    for m in DURATION_PART_RE.finditer(text):
        if text[pos:m.start()].strip():
            raise ValueError(f"invalid duration: {value!r}")
        unit = DURATION_UNITS.get(m.group(2))
        if unit is None:
            raise ValueError(f"unknown duration unit {m.group(2)!r}")
        total += int(m.group(1)) * unit
        pos = m.end()
    if pos == 0 or text[pos:].strip():
        raise ValueError(f"invalid duration: {value!r}")
    return total


def parse_interval(value):
    seconds = parse_duration(value)
    if seconds <= 0:
        raise ValueError("interval must be positive")
    return seconds


def parse_block_spans(value):
    if isinstance(value, list):
        parts = value
    else:
        parts = str(value).split(",")
        # a single trailing separator is allowed: "30,180,"
        if parts and parts[-1] == "":
            parts = parts[:-1]
    spans = []
    for part in parts:
        if isinstance(part, bool):
            raise ValueError(f"invalid block span: {part!r}")
        span = int(str(part).strip()) if not isinstance(part, int) else part
        if span < 0 or span > 0xFFFFFFFF:
            raise ValueError(f"block span out of range: {span}")
        spans.append(span)
    return spans


def parse_bool(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"invalid boolean: {value!r}")


def parse_file_path(value):
    """Empty means unset; anything else must name an existing file."""
    if value is None or value == "":
        return None
    path = Path(value)
    if not path.is_file():
        raise ValueError(f"no such file: {value}")
    return path


def parse_host(host):
    """Split ``host:port`` (``[::1]:8080`` for IPv6) into a tuple."""
    name, sep, port = host.rpartition(":")
    if not sep or not name:
        raise ValueError(f"expected host:port, got {host!r}")
    if name.startswith("[") and name.endswith("]"):
        name = name[1:-1]
    return name, int(port)


@dataclass
class ServerConfig:
    host: str = "[::]:8080"
    tls_key_path: Optional[Path] = None
    tls_cert_path: Optional[Path] = None


@dataclass
class MonerodConfig:
    base_url: str = "http://localhost:18081"
    tls_cert_path: Optional[Path] = None
    skip_tls_verification: bool = False
    timeout: float = 1.0


@dataclass
class TelemetryConfig:
    port: int = 0


@dataclass
class Config:
    refresh_interval: float = 15.0
    block_spans: List[int] = field(default_factory=lambda: [30, 180, 720])
    server: ServerConfig = field(default_factory=ServerConfig)
    monerod: MonerodConfig = field(default_factory=MonerodConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    @classmethod
    def load(cls, config_path=None, environ=None):
        settings = load_settings(config_path, os.environ if environ is None else environ)
        return from_settings(settings)


def default_config_path():
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, CONFIG_FILE_NAME)


def _merge(base, override):
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _env_settings(environ):
    settings = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        keys = name[len(ENV_PREFIX):].lower().split(ENV_SEPARATOR)
        node = settings
        for key in keys[:-1]:
            node = node.setdefault(key, {})
            if not isinstance(node, dict):
                raise ConfigError(f"conflicting environment variable {name}")
        node[keys[-1]] = value
    return settings


def load_settings(config_path, environ):
    """Raw settings tree: TOML file (missing file is fine) overlaid with the environment."""
    settings = {}
    if config_path and os.path.isfile(config_path):
        try:
            with open(config_path, "rb") as f:
                settings = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"load failed: {e}") from e
    return _merge(settings, _env_settings(environ))


def _field(section, settings, key, parse, default):
    if key not in settings:
        return default
    try:
        return parse(settings[key])
    except (TypeError, ValueError) as e:
        name = f"{section}.{key}" if section else key
        raise ConfigError(f"invalid config: {name}: {e}") from e


def _section(settings, key):
    value = settings.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"invalid config: {key} must be a table")
    return value


def from_settings(settings):
    default = Config()

    server = _section(settings, "server")
    server_config = ServerConfig(
        host=_field("server", server, "host", str, default.server.host),
        tls_key_path=_field("server", server, "tls_key_path", parse_file_path, None),
        tls_cert_path=_field("server", server, "tls_cert_path", parse_file_path, None),
    )
    try:
        parse_host(server_config.host)
    except ValueError as e:
        raise ConfigError(f"invalid config: server.host: {e}") from e

    monerod = _section(settings, "monerod")
    monerod_config = MonerodConfig(
        base_url=_field("monerod", monerod, "base_url", str, default.monerod.base_url),
        tls_cert_path=_field("monerod", monerod, "tls_cert_path", parse_file_path, None),
        skip_tls_verification=_field(
            "monerod", monerod, "skip_tls_verification", parse_bool, default.monerod.skip_tls_verification
        ),
        timeout=_field("monerod", monerod, "timeout", parse_duration, default.monerod.timeout),
    )

    telemetry = _section(settings, "telemetry")
    telemetry_config = TelemetryConfig(
        port=_field("telemetry", telemetry, "port", int, default.telemetry.port),
    )

    return Config(
        refresh_interval=_field(None, settings, "refresh_interval", parse_interval, default.refresh_interval),
        block_spans=_field(None, settings, "block_spans", parse_block_spans, default.block_spans),
        server=server_config,
        monerod=monerod_config,
        telemetry=telemetry_config,
    )
