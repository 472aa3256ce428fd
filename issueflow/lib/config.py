"""
Project settings.

Loads .issueflow/settings.yaml on top of built-in defaults. Every key is
optional; a missing file means "all defaults".

AGENT COMMAND TEMPLATE
======================

`agent_command` is split with shlex first, then {phase} and {issue} are
substituted inside each argument, so a quoted directive such as
"/{phase} {issue}" stays a single argv entry no matter what the values are.
"""

import logging
import shlex
import shutil
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from issueflow.lib import constants
from issueflow.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)


DEFAULT_AGENT_COMMAND = 'claude --print --dangerously-skip-permissions -p "/{phase} {issue}"'

DEFAULT_SETTINGS = {
    "phases": list(constants.DEFAULT_PHASES),
    "mode": constants.MODE_SEQUENTIAL,
    "phase_timeout": 1800,
    "kill_grace_seconds": 5,
    "agent_command": DEFAULT_AGENT_COMMAND,
    "base_branch": "main",
    "qa_cache_ttl": 3600,
    "cleanup_max_age_days": 7,
    "shutdown_timeout": 10,
    "quality_loop": False,
    "max_iterations": 3,
}


class ConfigError(Exception):
    """Invalid configuration or missing prerequisite; fatal before any work starts."""
    pass


@dataclass
class Settings:
    """Project settings from settings.yaml merged over DEFAULT_SETTINGS."""
    phases: list[str] = field(default_factory=lambda: list(constants.DEFAULT_PHASES))
    mode: str = constants.MODE_SEQUENTIAL
    phase_timeout: float = 1800
    kill_grace_seconds: float = 5
    agent_command: str = DEFAULT_AGENT_COMMAND
    base_branch: str = "main"
    qa_cache_ttl: float = 3600
    cleanup_max_age_days: int = 7
    shutdown_timeout: float = 10
    quality_loop: bool = False
    max_iterations: int = 3


def get_data_dir(project_dir: Path) -> Path:
    """Where issueflow keeps its documents for a project."""
    return project_dir / constants.DATA_DIR_NAME


def load_settings(project_dir: Path | None) -> Settings:
    """
    Load settings for a project directory.

    Raises:
        ConfigError: if settings.yaml exists but is not valid YAML or
            does not match the settings schema
    """
    if project_dir is None:
        return Settings()

    settings_path = get_data_dir(project_dir) / constants.SETTINGS_FILE_NAME
    if not settings_path.exists():
        return Settings()

    try:
        data = yaml.safe_load(settings_path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {settings_path}: {e}") from None

    if data is None:
        return Settings()

    try:
        validate(data, "settings")
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {settings_path}: {e}") from None

    merged = dict(DEFAULT_SETTINGS)
    merged.update(data)
    known = {f.name for f in fields(Settings)}
    for key in sorted(set(merged) - known):
        logger.warning(f"Ignoring unknown setting '{key}' in {settings_path}")
    return Settings(**{k: v for k, v in merged.items() if k in known})


def build_agent_command(template: str, phase: str, issue_number: int) -> list[str]:
    """
    Build the argv for one phase invocation.

    Example:
        >>> build_agent_command(DEFAULT_AGENT_COMMAND, "exec", 42)
        ['claude', '--print', '--dangerously-skip-permissions', '-p', '/exec 42']
    """
    try:
        parts = shlex.split(template)
    except ValueError as e:
        raise ConfigError(f"Unparseable agent_command '{template}': {e}") from None
    if not parts:
        raise ConfigError("agent_command is empty")
    return [
        part.replace("{phase}", phase).replace("{issue}", str(issue_number))
        for part in parts
    ]


def get_agent_binary(template: str) -> str:
    """First word of the agent command, used for the availability check."""
    try:
        parts = shlex.split(template)
    except ValueError:
        return ""
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return bool(binary) and shutil.which(binary) is not None


def validate_phases(phases: list[str]) -> None:
    """Reject unknown or duplicated phase names."""
    if not phases:
        raise ConfigError("At least one phase is required")
    unknown = [p for p in phases if p not in constants.KNOWN_PHASES]
    if unknown:
        raise ConfigError(
            f"Unknown phase(s): {', '.join(unknown)}. "
            f"Valid phases: {', '.join(constants.KNOWN_PHASES)}"
        )
    duplicates = sorted({p for p in phases if phases.count(p) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate phase(s): {', '.join(duplicates)}")
