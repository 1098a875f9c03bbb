"""Load LoomConfig from loom.yaml / loom.toml and the environment.

Precedence, lowest to highest: file, ``LOOM_*`` environment, explicit overrides.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path

import yaml

from loom._errors import ConfigError
from loom.config import LoomConfig

_KNOWN_KEYS: frozenset[str] = frozenset({
    "api_key", "site_id", "base_url", "poll", "poll_interval",
    "fetch_timeout", "max_failures", "debounce_delay", "webhook_secret",
    "require_signature", "webhook_path", "host", "port",
})

_FLOAT_KEYS = frozenset({"poll_interval", "fetch_timeout", "debounce_delay"})
_INT_KEYS = frozenset({"max_failures", "port"})
_BOOL_KEYS = frozenset({"poll", "require_signature"})

_ENV_PREFIX = "LOOM_"


def load_config(
    root: Path | str,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: object,
) -> LoomConfig:
    """Load LoomConfig from root, merging file, environment, and overrides.

    Looks for loom.yaml, loom.yml, or loom.toml in root. Overrides whose
    value is None are ignored so CLI flags left unset do not mask the file.

    Raises:
        ConfigError: If a value cannot be coerced to its field's type.

    """
    root = Path(root)
    env = os.environ if environ is None else environ
    merged: dict[str, object] = {}
    merged.update(_read_loom_config(root))
    merged.update(_read_environment(env))
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return LoomConfig(root=root, **_coerce(merged))


def _read_loom_config(root: Path) -> dict[str, object]:
    """Read loom config from yaml/toml if present. Returns empty dict otherwise."""
    for name in ("loom.yaml", "loom.yml"):
        path = root / name
        if path.is_file():
            return _parse_yaml(path)
    toml_path = root / "loom.toml"
    if toml_path.is_file():
        return _parse_toml(toml_path)
    return {}


def _parse_yaml(path: Path) -> dict[str, object]:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path}: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(data, dict):
        return {}
    return _flatten_loom_section(data)


def _parse_toml(path: Path) -> dict[str, object]:
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ConfigError(msg) from exc
    return _flatten_loom_section(data)


def _flatten_loom_section(data: dict[str, object]) -> dict[str, object]:
    """Extract loom.* keys into top-level config."""
    result: dict[str, object] = {}
    for k, v in data.items():
        if k in _KNOWN_KEYS:
            result[k] = v
    section = data.get("loom")
    if isinstance(section, dict):
        for k, v in section.items():
            if k in _KNOWN_KEYS:
                result[k] = v
    return result


def _read_environment(environ: Mapping[str, str]) -> dict[str, object]:
    """Collect ``LOOM_<KEY>`` variables (e.g. ``LOOM_API_KEY``)."""
    result: dict[str, object] = {}
    for key in _KNOWN_KEYS:
        value = environ.get(_ENV_PREFIX + key.upper())
        if value:
            result[key] = value
    return result


def _coerce(values: dict[str, object]) -> dict[str, object]:
    """Coerce string values from files and the environment to field types."""
    result: dict[str, object] = {}
    for key, value in values.items():
        try:
            if key in _FLOAT_KEYS:
                result[key] = float(value)  # type: ignore[arg-type]
            elif key in _INT_KEYS:
                result[key] = int(value)  # type: ignore[call-overload]
            elif key in _BOOL_KEYS:
                result[key] = _to_bool(value)
            else:
                result[key] = value
        except (TypeError, ValueError) as exc:
            msg = f"Invalid value for {key!r}: {value!r}"
            raise ConfigError(msg) from exc
    return result


def _to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(text)
