"""Monitor configuration schema and loader."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from pr_monitor.models import ProviderType, Severity

USER_CONFIG_DIRNAME = "pr-monitor"
CONFIG_FILENAME = "config.json"
CONFIG_PATH_ENV_VAR = "PR_MONITOR_CONFIG_PATH"


def default_user_config_dir() -> Path:
    """Resolve a cross-platform user config directory for monitor state."""
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home).expanduser() / USER_CONFIG_DIRNAME

    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata).expanduser() / USER_CONFIG_DIRNAME
        return Path.home() / "AppData" / "Roaming" / USER_CONFIG_DIRNAME

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / USER_CONFIG_DIRNAME

    return Path.home() / ".config" / USER_CONFIG_DIRNAME


class ProjectMapping(BaseModel):
    """Which roadmap project a repository path belongs to.

    A path under any ``corporate_roots`` entry maps to the corporate project,
    otherwise a path under ``client_root_base`` maps to the client project.
    A project with an empty id is treated as unmapped.
    """

    corporate_roots: list[str] = Field(default_factory=list)
    client_root_base: str | None = None
    corporate_project_id: str = ""
    corporate_project_name: str = ""
    client_project_id: str = ""
    client_project_name: str = ""


class NotificationConfig(BaseModel):
    min_severity: Severity = Severity.MEDIUM
    notify_on_failures: bool = True
    notify_on_new_comments: bool = True

    @field_validator("min_severity", mode="before")
    @classmethod
    def _lowercase_severity(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value


class MonitorConfig(BaseModel):
    """Validated daemon configuration."""

    repo_roots: list[str] = Field(default_factory=lambda: ["~/Developer"])
    project_mapping: ProjectMapping = Field(default_factory=ProjectMapping)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    interval_minutes: int = Field(default=15, ge=1)
    command_timeout_seconds: float | None = Field(default=120.0, gt=0)
    max_concurrent_repos: int = Field(default=1, ge=1, le=8)
    provider: ProviderType | None = None
    daily_context_command: list[str] = Field(default_factory=lambda: ["timestory"])
    daily_context_tool: str = "generate_daily_story"

    @field_validator("repo_roots")
    @classmethod
    def _validate_repo_roots(cls, value: list[str]) -> list[str]:
        if any(not root.strip() for root in value):
            raise ValueError("repo_roots entries must be non-empty paths")
        return value

    def expanded_repo_roots(self) -> list[str]:
        return [str(Path(root).expanduser()) for root in self.repo_roots]


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Explicit path, then PR_MONITOR_CONFIG_PATH, then the user config dir."""
    if config_path is not None:
        return Path(config_path).expanduser()
    configured_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if configured_path:
        return Path(configured_path).expanduser()
    return default_user_config_dir() / CONFIG_FILENAME


def load_monitor_config(config_path: str | Path | None = None) -> MonitorConfig:
    """Load the monitor config; a missing file yields the defaults.

    Raises:
    - pydantic ValidationError on invalid values.
    - json.JSONDecodeError for malformed JSON.
    - ValueError when the top level is not an object.
    """
    path = resolve_config_path(config_path)
    if not path.exists():
        return MonitorConfig()

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return MonitorConfig.model_validate(payload)
