"""Configuration management for volumelink."""

from __future__ import annotations

import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import (
    DriveSettings,
    LoggingSettings,
    OfflineSettings,
    ServiceSettings,
    TransferSettings,
    VolumeLinkConfig,
    WatchSettings,
    default_links,
)
from .resolver import env_overrides_from, flatten_for_env, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.volumelink/config.yaml")
CONFIG_PATH_ENV = "VOLUMELINK_CONFIG"
_CONFIG_HEADER = textwrap.dedent(
    """\
    # volumelink configuration file
    # Generated automatically; manage via `volumelink config edit` or `volumelink config set`.
    """
)


class ConfigManager:
    """Load and persist configuration data, applying precedence rules."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        if config_path is None and self._env.get(CONFIG_PATH_ENV):
            config_path = Path(self._env[CONFIG_PATH_ENV])
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()

    @property
    def config_path(self) -> Path:
        """Return the resolved configuration path."""
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> VolumeLinkConfig:
        """Load configuration data from disk, applying precedence rules."""
        if ensure_file:
            self.ensure_exists()

        env_data: Mapping[str, str] | None = None
        if include_env:
            env_data = env_overrides if env_overrides is not None else self._env

        return resolve_with_precedence(
            defaults=VolumeLinkConfig(),
            file_overrides=self._read_file(),
            env_overrides=env_overrides_from(env_data) if env_data else None,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def save(self, config: VolumeLinkConfig | Mapping[str, Any]) -> None:
        """Persist configuration data to disk."""
        if isinstance(config, VolumeLinkConfig):
            data = config.model_dump(mode="json")
        else:
            data = dict(config)
        self._write_file(data)

    def update(self, **changes: Any) -> VolumeLinkConfig:
        """Apply dotted-key changes to the stored file and return the effective config.

        Example:
            ``manager.update(**{"drive.path": "/media/me/Models", "initialized": False})``
        """
        candidate = resolve_with_precedence(
            defaults=VolumeLinkConfig(),
            file_overrides=self._read_file(),
            cli_overrides=changes,
        )
        self._write_file(candidate.model_dump(mode="json"))
        return candidate

    def ensure_exists(self) -> Path:
        """Create a configuration file with defaults if one does not exist."""
        path = self._config_path
        if path.exists():
            return path

        self._write_file(VolumeLinkConfig().model_dump(mode="json"))
        return path

    def read_text(self) -> str:
        """Return the current configuration file contents."""
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    # Internal helpers -------------------------------------------------

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}

        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")

        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        try:
            self._config_path.parent.mkdir(parents=True, exist_ok=True)
            serialized = yaml.safe_dump(dict(data), sort_keys=False)
            stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self._config_path.write_text(
                _CONFIG_HEADER + f"# Last updated: {stamp}\n" + serialized, encoding="utf-8"
            )
        except OSError as exc:
            raise ConfigError(f"Failed to write configuration file: {exc}") from exc


__all__ = [
    "ConfigManager",
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "VolumeLinkConfig",
    "DriveSettings",
    "TransferSettings",
    "WatchSettings",
    "OfflineSettings",
    "ServiceSettings",
    "LoggingSettings",
    "default_links",
    "resolve_with_precedence",
    "flatten_for_env",
    "ConfigError",
]
