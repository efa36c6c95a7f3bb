"""Configuration loading for exodus-rsync.

This module provides:
- GlobalConfig: Shared exodus-gw settings and the list of environments
- Environment: A configured publish target selected by destination prefix
- load_config: Locate, parse and validate the YAML config file
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "exodus-rsync.conf"

DEFAULT_POLL_INTERVAL = 5000  # milliseconds
DEFAULT_UPLOAD_THREADS = 1

# Keys which may be set globally and overridden per environment
SHARED_KEYS = ("gwurl", "gwcert", "gwkey", "gwpollinterval", "uploadthreads")

_ENV_REF = re.compile(r"\$(?:(\w+)|\{([^}]*)\})")


class ConfigError(Exception):
    """Configuration is missing, malformed or ambiguous."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


def candidate_paths() -> list[str]:
    """Get the config file locations, in order of preference."""
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return [
        CONFIG_FILENAME,
        f"{config_home}/{CONFIG_FILENAME}",
        f"/etc/{CONFIG_FILENAME}",
    ]


@dataclass(frozen=True)
class Environment:
    """A publish target, selected when a destination starts with `prefix:`.

    Settings left unset here are inherited from the shared settings of the
    config the environment was loaded with. Only GlobalConfig holds the
    environment list; an environment keeps a read-only view of the shared
    settings, not the config itself.

    Attributes:
        prefix: Destination prefix matched against `<prefix>:<path>`.
        gwenv: exodus-gw environment name (also the blob bucket name).
        overrides: Shared settings overridden for this environment only.
        shared: Inherited shared settings.
    """

    prefix: str
    gwenv: str
    overrides: Mapping[str, Any] = field(default_factory=dict, compare=False)
    shared: Mapping[str, Any] = field(
        default_factory=dict, repr=False, compare=False
    )

    def _get(self, key: str) -> Any:
        if key in self.overrides:
            return self.overrides[key]
        return self.shared.get(key)

    @property
    def gw_url(self) -> str:
        return str(self._get("gwurl") or "")

    @property
    def gw_cert(self) -> str:
        return str(self._get("gwcert") or "")

    @property
    def gw_key(self) -> str:
        return str(self._get("gwkey") or "")

    @property
    def gw_poll_interval(self) -> int:
        """Commit task poll interval, in milliseconds."""
        value = self._get("gwpollinterval")
        return DEFAULT_POLL_INTERVAL if value is None else int(value)

    @property
    def upload_threads(self) -> int:
        value = self._get("uploadthreads")
        return DEFAULT_UPLOAD_THREADS if value is None else max(1, int(value))


@dataclass(frozen=True)
class GlobalConfig:
    """Loaded exodus-rsync configuration.

    Attributes:
        path: File the config was loaded from.
        shared: Normalized shared settings (see SHARED_KEYS).
        environments: Configured environments, in file order.
    """

    path: str
    shared: Mapping[str, Any]
    environments: tuple[Environment, ...] = ()

    def environment_for_dest(self, dest: str) -> Environment | None:
        """Find the environment matching an rsync destination.

        Args:
            dest: Destination in the form `<prefix>:<path>`.

        Returns:
            The first environment whose prefix followed by a colon starts
            `dest`, or None if no environment matches.
        """
        for env in self.environments:
            if dest.startswith(env.prefix + ":"):
                return env

        logger.debug(f"No matching environment in config for dest {dest!r}")
        return None


def resolve_environment(config: GlobalConfig, dest: str) -> Environment | None:
    """Module-level form of GlobalConfig.environment_for_dest."""
    return config.environment_for_dest(dest)


def _normalize(values: dict[str, Any], path: str) -> dict[str, Any]:
    """Apply URL and env var normalization to shared-style settings."""
    out = dict(values)

    if "gwurl" in out:
        out["gwurl"] = str(out["gwurl"] or "").rstrip("/")

    # A few vars support env var expansion for convenience
    for key in ("gwcert", "gwkey"):
        if key in out:
            out[key] = _expand_env(str(out[key] or ""))

    for key in ("gwpollinterval", "uploadthreads"):
        if key in out:
            try:
                out[key] = int(out[key])
            except (TypeError, ValueError) as e:
                raise ConfigError(
                    f"can't parse {path}: {key} must be an integer, got {out[key]!r}",
                    path,
                ) from e
            if out[key] < 1:
                raise ConfigError(
                    f"can't parse {path}: {key} must be at least 1, got {out[key]}",
                    path,
                )

    return out


def _expand_env(value: str) -> str:
    """Expand $VAR and ${VAR}; unset variables expand to an empty string."""

    def lookup(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        return os.environ.get(name, "")

    return _ENV_REF.sub(lookup, value)


def _parse(data: Any, path: str) -> GlobalConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"can't parse {path}: expected a mapping at top level", path)

    defaults: dict[str, Any] = {
        "gwurl": "",
        "gwcert": "",
        "gwkey": "",
        "gwpollinterval": DEFAULT_POLL_INTERVAL,
        "uploadthreads": DEFAULT_UPLOAD_THREADS,
    }
    defaults.update({k: data[k] for k in SHARED_KEYS if k in data})
    shared = MappingProxyType(_normalize(defaults, path))

    raw_envs = data.get("environments") or []
    if not isinstance(raw_envs, list):
        raise ConfigError(f"can't parse {path}: 'environments' must be a list", path)

    environments: list[Environment] = []
    prefixes: set[str] = set()

    for raw in raw_envs:
        if not isinstance(raw, dict) or not raw.get("prefix"):
            raise ConfigError(
                f"can't parse {path}: each environment needs a 'prefix'", path
            )
        prefix = str(raw["prefix"])
        if prefix in prefixes:
            raise ConfigError(
                f"duplicate environment definitions for '{prefix}'", path
            )
        prefixes.add(prefix)

        overrides = _normalize({k: raw[k] for k in SHARED_KEYS if k in raw}, path)
        environments.append(
            Environment(
                prefix=prefix,
                gwenv=str(raw.get("gwenv") or prefix),
                overrides=MappingProxyType(overrides),
                shared=shared,
            )
        )

    return GlobalConfig(path=path, shared=shared, environments=tuple(environments))


def load_from_path(path: str) -> GlobalConfig:
    """Parse and validate a single config file.

    Args:
        path: Path to a YAML config file.

    Returns:
        Parsed configuration.

    Raises:
        ConfigError: If the file can't be read, parsed or validated.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"can't read {path}: {e}", path) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"can't parse {path}: {e}", path) from e

    return _parse(data, path)


def load_config(path_hint: str | None = None) -> GlobalConfig:
    """Load config from the first usable candidate location.

    Args:
        path_hint: Explicit config path; when given it is the only candidate.

    Returns:
        Parsed configuration.

    Raises:
        ConfigError: If no candidate is usable or the chosen file is invalid.
    """
    candidates = [path_hint] if path_hint else candidate_paths()

    for candidate in candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.R_OK):
            logger.debug(f"Loading config from {candidate}")
            return load_from_path(candidate)
        logger.debug(f"Config file not usable: {candidate}")

    raise ConfigError(f"no existing config file in: {', '.join(candidates)}")
