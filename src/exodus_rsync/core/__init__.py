"""Core module - Configuration and content hashing."""

from exodus_rsync.core.config import (
    ConfigError,
    Environment,
    GlobalConfig,
    candidate_paths,
    load_config,
    load_from_path,
    resolve_environment,
)
from exodus_rsync.core.hashing import compute_file_hash

__all__ = [
    # Config
    "ConfigError",
    "Environment",
    "GlobalConfig",
    "candidate_paths",
    "load_config",
    "load_from_path",
    "resolve_environment",
    # Hashing
    "compute_file_hash",
]
