"""Configuration resolution from a YAML file, environment variables and defaults."""

import argparse
import enum
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

import yaml

from sitehost.bootstrap.logging_setup import apply_log_level
from sitehost.domain.correlation_id import component_logger

CONFIG_LOGGER = component_logger("config")

DEFAULT_SEARCH_PATHS = ("/var/personal-site/", ".")
CONFIG_FILE_NAMES = ("config.yaml", "config.yml")

DEFAULT_HOST = "0.0.0.0"
PRODUCTION_PORT = 443
SHUTDOWN_TIMEOUT_SECONDS = 10
HEADER_DELIMITER = b"\r\n\r\n"
MAX_HEADER_BYTES = 1 << 20
ALLOWED_METHODS = {"GET", "HEAD"}

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=blockFilter",
}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
LOG_LEVEL_ALIASES = {
    "trace": "DEBUG",
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
    "critical": "CRITICAL",
    "fatal": "CRITICAL",
    "panic": "CRITICAL",
}


class ConfigError(Exception):
    """Base class for configuration resolution failures."""


class ConfigFileError(ConfigError):
    """Raised when a configuration file exists but cannot be parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"config file {path} was found but could not be loaded: {reason}")
        self.path = path
        self.reason = reason


class RequiredFieldMissing(ConfigError):
    """Raised when a required configuration value was not supplied."""

    def __init__(self, field: str) -> None:
        super().__init__(f"required configuration value '{field}' has not been set")
        self.field = field


class InvalidFieldValue(ConfigError):
    """Raised when a supplied configuration value cannot be coerced."""

    def __init__(self, field: str, source: str, value: Any, expected: str) -> None:
        super().__init__(
            f"configuration value '{field}' from {source} must be {expected}, got {value!r}"
        )
        self.field = field
        self.source = source
        self.value = value


class Tier(enum.Enum):
    """How an unset configuration field is treated."""

    REQUIRED = "required"
    OPTIONAL_WARN = "optional-warn"
    OPTIONAL_INFO = "optional-info"


@dataclass(frozen=True)
class Configuration:
    """Resolved, immutable server configuration. Timeouts are in seconds."""

    production: bool = False
    dev_port: int = 8080
    cert_file: str = ""
    key_file: str = ""
    read_timeout: int = 5
    write_timeout: int = 5
    idle_timeout: int = 120
    log_level: str = "DEBUG"
    files_root: str = "./web"

    @property
    def listen_port(self) -> int:
        return PRODUCTION_PORT if self.production else self.dev_port


def _parse_bool(field: str, raw: Any, source: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        value = raw.strip().lower()
        if value in TRUE_VALUES:
            return True
        if value in FALSE_VALUES:
            return False
    raise InvalidFieldValue(field, source, raw, "a boolean")


def _parse_int(field: str, raw: Any, source: str) -> int:
    if isinstance(raw, bool):
        raise InvalidFieldValue(field, source, raw, "an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            pass
    raise InvalidFieldValue(field, source, raw, "an integer")


def _parse_port(field: str, raw: Any, source: str) -> int:
    port = _parse_int(field, raw, source)
    if not 1 <= port <= 65535:
        raise InvalidFieldValue(field, source, raw, "a port between 1 and 65535")
    return port


def _parse_seconds(field: str, raw: Any, source: str) -> int:
    seconds = _parse_int(field, raw, source)
    if seconds < 0:
        raise InvalidFieldValue(field, source, raw, "a non-negative number of seconds")
    return seconds


def _parse_level(field: str, raw: Any, source: str) -> str:
    if isinstance(raw, str) and raw.strip().lower() in LOG_LEVEL_ALIASES:
        return LOG_LEVEL_ALIASES[raw.strip().lower()]
    raise InvalidFieldValue(field, source, raw, "a log level name")


def _parse_path(field: str, raw: Any, source: str) -> str:
    if isinstance(raw, str):
        return raw
    raise InvalidFieldValue(field, source, raw, "a path string")


@dataclass(frozen=True)
class _FieldSpec:
    name: str
    attribute: str
    parse: Callable[[str, Any, str], Any]


FIELDS = (
    _FieldSpec("Production", "production", _parse_bool),
    _FieldSpec("DevPort", "dev_port", _parse_port),
    _FieldSpec("CertFile", "cert_file", _parse_path),
    _FieldSpec("KeyFile", "key_file", _parse_path),
    _FieldSpec("ReadTimeout", "read_timeout", _parse_seconds),
    _FieldSpec("WriteTimeout", "write_timeout", _parse_seconds),
    _FieldSpec("IdleTimeout", "idle_timeout", _parse_seconds),
    _FieldSpec("LogLevel", "log_level", _parse_level),
    _FieldSpec("FilesRoot", "files_root", _parse_path),
)

# Tiers when Production is false; see field_tier for the production elevation.
REQUIREDNESS = {
    "Production": Tier.OPTIONAL_WARN,
    "DevPort": Tier.OPTIONAL_INFO,
    "CertFile": Tier.OPTIONAL_INFO,
    "KeyFile": Tier.OPTIONAL_INFO,
    "ReadTimeout": Tier.OPTIONAL_INFO,
    "WriteTimeout": Tier.OPTIONAL_INFO,
    "IdleTimeout": Tier.OPTIONAL_INFO,
    "LogLevel": Tier.OPTIONAL_INFO,
    "FilesRoot": Tier.OPTIONAL_INFO,
}

PRODUCTION_REQUIRED = frozenset({"CertFile", "KeyFile"})


def field_tier(field: str, production: bool) -> Tier:
    """Return the requiredness tier of ``field`` for the given mode."""
    if production and field in PRODUCTION_REQUIRED:
        return Tier.REQUIRED
    return REQUIREDNESS[field]


def find_config_file(search_paths: Sequence["str | Path"]) -> Optional[Path]:
    """Return the first ``config.yaml``/``config.yml`` found in the search paths."""
    for directory in search_paths:
        for name in CONFIG_FILE_NAMES:
            candidate = Path(directory) / name
            if candidate.is_file():
                return candidate
    return None


def load_config_file(path: Path) -> dict[str, Any]:
    """Parse a YAML configuration file into a lower-cased key mapping."""
    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
        raise ConfigFileError(path, str(error)) from error
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(path, "top level must be a mapping")
    return {str(key).lower(): value for key, value in data.items()}


def _environment_value(field: str, environ: Mapping[str, str]) -> Optional[str]:
    for name in (field, field.upper()):
        value = environ.get(name)
        if value:
            return value
    return None


def _enforce_requiredness(config: Configuration, supplied: set[str]) -> None:
    for spec in FIELDS:
        if spec.name in supplied:
            continue
        tier = field_tier(spec.name, config.production)
        if tier is Tier.REQUIRED:
            raise RequiredFieldMissing(spec.name)
        log = CONFIG_LOGGER.warning if tier is Tier.OPTIONAL_WARN else CONFIG_LOGGER.info
        log(
            "Non-required configuration value '%s' has not been set",
            spec.name,
            extra={
                "event": "config_field_unset",
                "field": spec.name,
                "tier": tier.value,
            },
        )


def resolve_configuration(
    search_paths: Sequence["str | Path"] = DEFAULT_SEARCH_PATHS,
    environ: Optional[Mapping[str, str]] = None,
    apply_level: Callable[[str], None] = apply_log_level,
) -> Configuration:
    """Merge file, environment and defaults into a validated Configuration.

    File values win over environment variables, which win over defaults.
    ``apply_level`` receives the resolved log level before any later
    resolution message is logged.
    """
    if environ is None:
        environ = os.environ

    config_path = find_config_file(search_paths)
    if config_path is None:
        CONFIG_LOGGER.info(
            "Configuration file not found, using defaults and environment only",
            extra={"event": "config_file_missing"},
        )
        file_values: dict[str, Any] = {}
    else:
        file_values = load_config_file(config_path)

    values: dict[str, Any] = {}
    supplied: set[str] = set()
    for spec in FIELDS:
        raw = file_values.get(spec.name.lower())
        source = "file"
        if raw is None:
            raw = _environment_value(spec.name, environ)
            source = "environment"
        if raw is None:
            continue
        values[spec.attribute] = spec.parse(spec.name, raw, source)
        supplied.add(spec.name)

    config = Configuration(**values)
    apply_level(config.log_level)

    if config_path is not None:
        CONFIG_LOGGER.info(
            "Configuration file loaded",
            extra={"event": "config_file_loaded", "config_file": str(config_path)},
        )
        known = {spec.name.lower() for spec in FIELDS}
        for key in sorted(set(file_values) - known):
            CONFIG_LOGGER.warning(
                "Unknown configuration key '%s' ignored",
                key,
                extra={"event": "config_key_unknown", "field": key},
            )

    _enforce_requiredness(config, supplied)

    if CONFIG_LOGGER.logger.isEnabledFor(logging.DEBUG):
        CONFIG_LOGGER.debug(
            "Configuration resolved",
            extra={"event": "config_resolved", "configuration": asdict(config)},
        )
    return config


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for process-level settings."""
    parser = argparse.ArgumentParser(description="Personal static site host")
    parser.add_argument(
        "--config-dir",
        action="append",
        default=[],
        help="Directory searched for config.yaml before the default locations",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("SITEHOST_HOST", DEFAULT_HOST),
        help="Address to bind",
    )
    parser.add_argument(
        "--log-destination",
        default=os.getenv("SITEHOST_LOG_DESTINATION", "stdout"),
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=os.getenv("SITEHOST_LOG_FORMAT", "json"),
        choices=["json", "text"],
        type=str.lower,
    )
    return parser.parse_args(argv)
