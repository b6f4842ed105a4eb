"""
Configuration loading.

Settings come from an optional ``healthsync.yaml`` in the project directory
(with ``${VAR}`` substitution), overridden by environment variables.
"""

import copy
import os
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml

from healthsync.config.resolver import has_unresolved, resolve_config
from healthsync.exceptions import ConfigurationError

CONFIG_FILENAME = "healthsync.yaml"

DEFAULTS: dict[str, Any] = {
    "service": {"host": "0.0.0.0", "port": 3000, "auth_secret": None},
    "state": {"url": None},
    "sync": {
        "max_concurrent_jobs": 5,
        "batch_size": 100,
        "retry": {"max_attempts": 3, "initial_delay": 1.0, "max_delay": 30.0},
    },
    "logging": {"level": "INFO"},
    "partners": {},
}

# Environment variable -> (dotted config key, converter)
ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "APP_PORT": ("service.port", int),
    "APP_HOST": ("service.host", str),
    "DATABASE_URL": ("state.url", str),
    "AUTH_SECRET": ("service.auth_secret", str),
    "MAX_CONCURRENT_JOBS": ("sync.max_concurrent_jobs", int),
    "LOG_LEVEL": ("logging.level", str),
    "SYNC_BATCH_SIZE": ("sync.batch_size", int),
    "SYNC_RETRY_MAX_ATTEMPTS": ("sync.retry.max_attempts", int),
}

# Settings without which the service cannot start: key -> env var
REQUIRED: dict[str, str] = {
    "state.url": "DATABASE_URL",
    "service.auth_secret": "AUTH_SECRET",
}


class Config:
    """HealthSync configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data
        self.service = data.get("service", {})
        self.sync = data.get("sync", {})
        self.partners = data.get("partners", {}) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        if "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            return Config(value) if isinstance(value, dict) else value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return False
            value = value[k]
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def validate(self) -> None:
        """
        Validate required settings and value ranges.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors = []
        for key, env_var in REQUIRED.items():
            value = self.get(key)
            if not value or has_unresolved(value):
                errors.append(f"'{key}' is required (set {env_var})")

        for key, minimum in (
            ("service.port", 1),
            ("sync.max_concurrent_jobs", 1),
            ("sync.batch_size", 1),
            ("sync.retry.max_attempts", 0),
        ):
            value = self.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
                errors.append(f"'{key}' must be an integer >= {minimum}, got {value!r}")

        if not isinstance(self.partners, dict):
            errors.append(f"'partners' must be a mapping, got {type(self.partners).__name__}")

        if errors:
            raise ConfigurationError("Invalid configuration:\n  " + "\n  ".join(errors), details={"errors": errors})


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value


def _set_dotted(data: dict[str, Any], key: str, value: Any) -> None:
    *parents, leaf = key.split(".")
    for part in parents:
        data = data.setdefault(part, {})
    data[leaf] = value


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        raise ConfigurationError(f"Error parsing {path.name}{where}: {e}", details={"file": str(path)}) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}", details={"file": str(path)}) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{path.name} must contain a mapping, got {type(data).__name__}", details={"file": str(path)}
        )
    return data


def load_config(
    project_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    validate: bool = True,
) -> Config:
    """
    Load HealthSync configuration.

    Args:
        project_path: Directory holding ``healthsync.yaml`` (default: cwd).
            The file is optional.
        environ: Environment variables (default: ``os.environ``)
        validate: Raise ConfigurationError on missing or invalid settings

    Returns:
        Config instance with merged configuration
    """
    environ = os.environ if environ is None else environ
    project_path = Path.cwd() if project_path is None else Path(project_path)

    data = copy.deepcopy(DEFAULTS)
    config_path = project_path / CONFIG_FILENAME
    if config_path.is_file():
        _merge_dict(data, _read_yaml(config_path))

    data = resolve_config(data, environ)

    for env_var, (key, convert) in ENV_OVERRIDES.items():
        raw = environ.get(env_var)
        if raw is None or raw == "":
            continue
        try:
            _set_dotted(data, key, convert(raw))
        except ValueError as e:
            raise ConfigurationError(
                f"Environment variable {env_var} must be {convert.__name__}, got {raw!r}",
                details={"variable": env_var},
            ) from e

    # Integers written in YAML through ${VAR} arrive as strings
    for key, convert in ENV_OVERRIDES.values():
        value = Config(data).get(key)
        if convert is int and isinstance(value, str) and value.strip().lstrip("-").isdigit():
            _set_dotted(data, key, int(value))

    config = Config(data)
    if validate:
        config.validate()
    return config
