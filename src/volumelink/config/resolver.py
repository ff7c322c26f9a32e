"""Configuration resolution helpers."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterable, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import VolumeLinkConfig

ENV_PREFIX = "VOLUMELINK__"

# Sections replaced as a whole rather than merged key by key.
_REPLACED_KEYS = frozenset({"links"})


def resolve_with_precedence(
    *,
    defaults: VolumeLinkConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> VolumeLinkConfig:
    """Merge configuration sources: defaults, then file, environment, and CLI overrides.

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from the YAML file.
        env_overrides: Nested values derived from ``VOLUMELINK__`` variables.
        cli_overrides: Values supplied on the command line; keys may be dotted.

    Returns:
        VolumeLinkConfig: Validated configuration.

    Raises:
        ConfigError: If a source is malformed or the merged values are invalid.
    """
    merged: dict[str, Any] = defaults.model_dump(mode="json")
    for name, source in (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    ):
        if source is None:
            continue
        merged = _merge(merged, expand_dotted(source, source_name=name))

    try:
        return VolumeLinkConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def env_overrides_from(env: Mapping[str, str]) -> dict[str, Any]:
    """Translate ``VOLUMELINK__SECTION__KEY`` variables into nested overrides.

    Values are parsed as YAML scalars so ``true`` and ``2.5`` keep their types.
    """
    overrides: dict[str, Any] = {}
    for key, raw_value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        segments = [segment.lower() for segment in key[len(ENV_PREFIX) :].split("__") if segment]
        if not segments:
            continue
        try:
            value: Any = yaml.safe_load(raw_value)
        except yaml.YAMLError:
            value = raw_value
        _assign(overrides, segments, value, source_name="environment")
    return overrides


def flatten_for_env(config: VolumeLinkConfig) -> Dict[str, str]:
    """Flatten the config into `VOLUMELINK__SECTION__KEY` environment variable mappings."""
    flat: Dict[str, str] = {}
    for path, value in _leaves(config.model_dump(mode="json"), []):
        env_key = ENV_PREFIX + "__".join(part.upper() for part in path)
        if isinstance(value, (dict, list)):
            flat[env_key] = yaml.safe_dump(value, default_flow_style=True).strip()
        elif value is None:
            flat[env_key] = "null"
        elif isinstance(value, bool):
            flat[env_key] = "true" if value else "false"
        else:
            flat[env_key] = str(value)
    return flat


def expand_dotted(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    """Return ``source`` with dotted keys such as ``drive.path`` expanded into nesting."""
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    result: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        if isinstance(value, MappingABC) and key not in _REPLACED_KEYS:
            value = expand_dotted(value, source_name=source_name)
        _assign(result, key.split("."), value, source_name=source_name)
    return result


def _leaves(value: Any, prefix: list[str]) -> Iterable[tuple[list[str], Any]]:
    if isinstance(value, dict) and not (prefix and prefix[-1] in _REPLACED_KEYS):
        for key, child in value.items():
            yield from _leaves(child, prefix + [str(key)])
    else:
        yield prefix, value


def _assign(target: dict[str, Any], path: list[str], value: Any, *, source_name: str) -> None:
    node = target
    for segment in path[:-1]:
        existing = node.setdefault(segment, {})
        if not isinstance(existing, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} conflicts with existing value."
            )
        node = existing
    leaf = path[-1]
    current = node.get(leaf)
    if isinstance(value, MappingABC) and isinstance(current, dict):
        node[leaf] = _merge(current, value)
    else:
        node[leaf] = deepcopy(value)


def _merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = {key: deepcopy(value) for key, value in base.items()}
    for key, value in overrides.items():
        current = merged.get(key)
        if key not in _REPLACED_KEYS and isinstance(value, MappingABC) and isinstance(current, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = ["ENV_PREFIX", "resolve_with_precedence", "env_overrides_from", "flatten_for_env", "expand_dotted"]
