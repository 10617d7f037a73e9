"""Configuration loading from environment variables and krecord.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_ROOT = Path.home() / ".krecord" / "data"
_CONFIG_FILENAME = "krecord.toml"


@dataclass
class KrecordConfig:
    """Top-level krecord configuration."""

    data_root: Path = _DEFAULT_DATA_ROOT
    log_level: str = "INFO"


def _find_config_file(config_path: Path | None) -> Path | None:
    if config_path and config_path.exists():
        return config_path
    # Search current dir and ~/.krecord/
    for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".krecord" / _CONFIG_FILENAME]:
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Path | None = None) -> KrecordConfig:
    """Load configuration from environment variables and optional krecord.toml.

    Priority: environment variables > krecord.toml > defaults.
    A relative ``data_root`` in the TOML file is resolved against the file's directory.
    """
    file_data: dict = {}
    source = _find_config_file(config_path)
    if source is not None:
        file_data = tomllib.loads(source.read_text(encoding="utf-8"))

    data_root = _DEFAULT_DATA_ROOT
    configured = file_data.get("data_root")
    if configured:
        data_root = Path(configured).expanduser()
        if not data_root.is_absolute() and source is not None:
            data_root = (source.parent / data_root).resolve()

    env_root = os.getenv("KRECORD_DATA_ROOT")
    if env_root:
        data_root = Path(env_root).expanduser()

    return KrecordConfig(
        data_root=data_root,
        log_level=os.getenv("KRECORD_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
