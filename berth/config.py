"""
Configuration - .berth/config.yaml plus environment overrides.

The CLI calls load_dotenv() before load_config(), so BERTH_* variables may
also come from a .env file in the working directory.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigError

log = logging.getLogger(__name__)

CONFIG_DIR = ".berth"
CONFIG_FILE = "config.yaml"


@dataclass
class ProjectConfig:
    name: str = ""
    language: str = ""
    framework: str = ""
    package_manager: str = ""


@dataclass
class ExecutionConfig:
    max_parallel: int = 4
    timeout_per_bead: int = 600  # seconds
    verify_timeout: int = 300  # seconds, per command
    auto_commit: bool = True
    event_buffer: int = 256
    circuit_breaker_threshold: int = 3  # consecutive bead failures before pausing
    claude_command: list[str] = field(default_factory=lambda: ["claude"])


@dataclass
class VerifyConfig:
    security: str = ""


@dataclass
class Config:
    version: int = 1
    project: ProjectConfig = field(default_factory=ProjectConfig)
    model: str = "opus"
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    verify_pipeline: list[str] = field(default_factory=list)
    verify: VerifyConfig = field(default_factory=VerifyConfig)


def default_config() -> Config:
    return Config()


def _section(cls, data, name: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' must be a mapping")

    known = {f.name: f for f in dataclasses.fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            log.debug("Ignoring unknown config key %s.%s", name, key)
            continue
        default = getattr(cls(), key)
        kwargs[key] = _coerce(value, default, f"{name}.{key}")
    return cls(**kwargs)


def _coerce(value, default, name: str):
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"'{name}' must be true or false")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"'{name}' must be an integer")
        return value
    if isinstance(default, list):
        if isinstance(value, str):
            return shlex.split(value)
        if not isinstance(value, list):
            raise ConfigError(f"'{name}' must be a list")
        return [str(v) for v in value]
    if value is None:
        return default
    return str(value)


def parse_config(data: dict | None) -> Config:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("config.yaml must contain a mapping")

    pipeline = data.get("verify_pipeline") or []
    if not isinstance(pipeline, list):
        raise ConfigError("'verify_pipeline' must be a list of commands")

    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ConfigError("'version' must be an integer")

    return Config(
        version=version,
        project=_section(ProjectConfig, data.get("project"), "project"),
        model=str(data.get("model") or "opus"),
        execution=_section(ExecutionConfig, data.get("execution"), "execution"),
        verify_pipeline=[str(cmd) for cmd in pipeline],
        verify=_section(VerifyConfig, data.get("verify"), "verify"),
    )


def read_config(project_root: str) -> Config:
    """Read .berth/config.yaml from the project root."""
    path = Path(project_root) / CONFIG_DIR / CONFIG_FILE
    try:
        content = path.read_text()
    except OSError as e:
        raise ConfigError(f"reading config {path}: {e}") from e
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing config {path}: {e}") from e
    return parse_config(data)


def write_config(project_root: str, config: Config) -> Path:
    config_dir = Path(project_root) / CONFIG_DIR
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / CONFIG_FILE
    path.write_text(yaml.safe_dump(dataclasses.asdict(config), sort_keys=False))
    return path


def apply_env_overrides(config: Config) -> Config:
    model = os.environ.get("BERTH_MODEL")
    if model:
        config.model = model

    max_parallel = os.environ.get("BERTH_MAX_PARALLEL")
    if max_parallel:
        try:
            config.execution.max_parallel = int(max_parallel)
        except ValueError as e:
            raise ConfigError(f"BERTH_MAX_PARALLEL must be an integer, got {max_parallel!r}") from e

    claude_bin = os.environ.get("BERTH_CLAUDE_BIN")
    if claude_bin:
        config.execution.claude_command = shlex.split(claude_bin)

    return config


def load_config(project_root: str) -> Config:
    """Read the project config if present, else defaults; then apply env overrides."""
    path = Path(project_root) / CONFIG_DIR / CONFIG_FILE
    if path.exists():
        config = read_config(project_root)
    else:
        log.info("No %s found, using defaults", path)
        config = default_config()
    return apply_env_overrides(config)
