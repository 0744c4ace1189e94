"""Configuration loader for devicegroupctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``~/.config/devicegroupctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``DEVICEGROUPCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export DEVICEGROUPCTL_GRAPH__TENANT_ID=00000000-0000-0000-0000-000000000000
    export DEVICEGROUPCTL_GRAPH__TIMEOUT=45

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar, cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load devicegroupctl configuration. Install with "
        "`pip install devicegroupctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "DEVICEGROUPCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
REDACTED = "***REDACTED***"
DEFAULT_CONFIG_FILE = "~/.config/devicegroupctl/config.yml"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class GraphConfig:
    """Connection settings for the Microsoft Graph directory endpoints."""

    base_url: str = "https://graph.microsoft.com/v1.0"
    authority_host: str = "https://login.microsoftonline.com"
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    timeout: float = 30.0
    retries: int = 3
    page_size: int = 100

    @property
    def authority(self) -> str:
        """Return the token authority URL for the configured tenant."""
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"

    def missing_credentials(self) -> list[str]:
        """Return the credential keys that have not been configured."""
        missing: list[str] = []
        for key in ("tenant_id", "client_id", "client_secret"):
            value = getattr(self, key)
            if not value or not str(value).strip():
                missing.append(f"graph.{key}")
        return missing

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation with the secret redacted."""
        return {
            "base_url": self.base_url,
            "authority_host": self.authority_host,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "client_secret": REDACTED if self.client_secret else None,
            "timeout": self.timeout,
            "retries": self.retries,
            "page_size": self.page_size,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for devicegroupctl."""

    config_file: Path
    logs_dir: Path
    graph: GraphConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "graph": self.graph.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": DEFAULT_CONFIG_FILE,
    "logs_dir": "~/.local/state/devicegroupctl/logs",
    "graph": {
        "base_url": "https://graph.microsoft.com/v1.0",
        "authority_host": "https://login.microsoftonline.com",
        "tenant_id": None,
        "client_id": None,
        "client_secret": None,
        "timeout": 30.0,
        "retries": 3,
        "page_size": 100,
    },
}


ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_GRAPH_KEYS = set(cast(Mapping[str, object], DEFAULTS["graph"]).keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = copy.deepcopy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_path = _determine_config_path(DEFAULT_CONFIG_FILE, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    graph = raw.get("graph")
    if graph is not None:
        graph_map = _as_dict(graph, "graph")
        unknown = set(graph_map.keys()) - ALLOWED_GRAPH_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown graph configuration keys: {joined}.")
        for key in ("base_url", "authority_host"):
            value = graph_map.get(key)
            if value is not None and not str(value).startswith(("https://", "http://")):
                raise ConfigError(f"graph.{key} must be an http(s) URL. Got {value!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    graph_mapping = _as_dict(raw.get("graph"), "graph")
    defaults = GraphConfig()

    retries = _number(graph_mapping.get("retries"), "graph.retries", int, defaults.retries)
    if retries < 0:
        raise ConfigError("graph.retries must be non-negative.")
    page_size = _number(graph_mapping.get("page_size"), "graph.page_size", int, defaults.page_size)
    if not 1 <= page_size <= 999:
        raise ConfigError("graph.page_size must be between 1 and 999.")
    timeout = _number(graph_mapping.get("timeout"), "graph.timeout", float, defaults.timeout)
    if timeout <= 0:
        raise ConfigError(f"graph.timeout must be greater than zero. Got {timeout}.")

    graph = GraphConfig(
        base_url=str(graph_mapping.get("base_url", defaults.base_url)).rstrip("/"),
        authority_host=str(graph_mapping.get("authority_host", defaults.authority_host)),
        tenant_id=_optional_str(graph_mapping.get("tenant_id"), "graph.tenant_id"),
        client_id=_optional_str(graph_mapping.get("client_id"), "graph.client_id"),
        client_secret=_optional_str(graph_mapping.get("client_secret"), "graph.client_secret"),
        timeout=timeout,
        retries=retries,
        page_size=page_size,
    )
    return AppConfig(
        config_file=_to_path(raw.get("config_file"), "config_file"),
        logs_dir=_to_path(raw.get("logs_dir"), "logs_dir"),
        graph=graph,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _optional_str(value: object | None, label: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, (Mapping, list)):
        raise ConfigError(f"Expected {label} to be a string. Got {type(value).__name__}.")
    text = str(value).strip()
    return text or None


def _to_path(value: object, label: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a filesystem path. Got {value!r}.")
    return Path(value).expanduser()


_NumberT = TypeVar("_NumberT", int, float)


def _number(value: object, label: str, kind: type[_NumberT], default: _NumberT) -> _NumberT:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"Expected {label} to be a number. Got {type(value).__name__}.")
    try:
        return kind(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "GraphConfig",
    "load_config",
]
