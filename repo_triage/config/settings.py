"""
Configuration system using Pydantic for type-safe settings management.

This module provides the configuration sections consumed by the triage
pipeline: repository and label names, confidence thresholds, agent
enablement, agent-runner limits, cross-repository targets, release
correlation switches and the error-monitoring scope.

The pipeline receives a ``TriageSettings`` instance as an explicit
dependency and treats it as read-only.
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from repo_triage.exceptions import ConfigurationError

DEFAULT_AGENTS = ["code_analysis", "pr_correlation", "duplicate", "sentiment", "changelog"]


class RepositoryConfig(BaseModel):
    """Repository under triage and the labels/paths the pipeline uses in it."""

    owner: str = Field(..., description="Repository owner/organization")
    name: str = Field(..., description="Repository name")
    triaged_label: str = Field(default="triaged", description="Label marking an issue as triaged")
    needs_investigation_label: str = Field(
        default="needs-investigation", description="Label for issues without a confident outcome"
    )
    changelog_path: str = Field(default="CHANGELOG.md", description="Changelog file, relative to repo root")
    release_notes_path: str = Field(default="release_notes", description="Release notes directory")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class TrackerConfig(BaseModel):
    """Issue tracker connection."""

    token: SecretStr = Field(default=SecretStr(""), description="API token (supports ${ENV})")
    base_url: str = Field(default="https://api.github.com", description="API base URL")
    web_url: str = Field(default="https://github.com", description="Web URL used in posted links")

    def issue_url(self, repo: str, number: int) -> str:
        return f"{self.web_url.rstrip('/')}/{repo}/issues/{number}"


class ThresholdsConfig(BaseModel):
    """Aggregate-confidence thresholds, evaluated high to low."""

    auto_close: float = Field(default=0.9, ge=0.0, le=1.0)
    suggest_close: float = Field(default=0.7, ge=0.0, le=1.0)
    comment: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_ordering(self) -> ThresholdsConfig:
        if not self.comment <= self.suggest_close <= self.auto_close:
            raise ValueError("thresholds must satisfy comment <= suggest_close <= auto_close")
        return self


class AgentCondition(BaseModel):
    """Precondition an agent must satisfy to be dispatched."""

    require_file: str | None = Field(default=None, description="Path that must exist in the repository")


class AgentsConfig(BaseModel):
    """Which investigation agents may run."""

    enabled: list[str] = Field(default_factory=lambda: list(DEFAULT_AGENTS))
    conditional: dict[str, AgentCondition] = Field(default_factory=dict)

    def is_enabled(self, agent_id: str) -> bool:
        return agent_id in self.enabled

    def required_file(self, agent_id: str) -> str | None:
        condition = self.conditional.get(agent_id)
        return condition.require_file if condition else None


class RunnerConfig(BaseModel):
    """Agent CLI invocation and task executor limits."""

    command: str = Field(default="gemini", description="Agent CLI executable")
    model: str = Field(default="gemini-2.5-pro", description="Model passed to every agent invocation")
    max_turns: int = Field(default=100, ge=1)
    max_concurrent: int = Field(default=4, ge=1, le=32)
    max_retries: int = Field(default=3, ge=1, le=10)
    initial_backoff: float = Field(default=0.5, gt=0.0, description="Seconds before the first retry")
    max_backoff: float = Field(default=30.0, gt=0.0, description="Upper bound on retry delay")
    timeout: float = Field(default=1800.0, gt=0.0, description="Seconds per agent invocation")


class CrossRepoTarget(BaseModel):
    """A dependent repository searched during cross-repo linking."""

    owner: str
    repo: str
    relationship: str = Field(default="dependent")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class CrossRepoConfig(BaseModel):
    enabled: bool = True
    repos: list[CrossRepoTarget] = Field(default_factory=list)


class ReleaseConfig(BaseModel):
    """Switches for the pre-/post-release correlation variant."""

    scan_tracker: bool = True
    scan_error_monitor: bool = True
    close_own_repo: bool = True
    comment_cross_repo: bool = True
    annotate_errors: bool = True


class ErrorMonitorConfig(BaseModel):
    """Scope of the external error-monitoring scan."""

    organization: str = ""
    projects: list[str] = Field(default_factory=list)
    recent_errors_hours: int = Field(default=168, ge=1)

    @property
    def configured(self) -> bool:
        return bool(self.organization and self.projects)


class WorkflowConfig(BaseModel):
    """Run directory and lock file locations."""

    runs_directory: str = Field(default=".triage_runs", description="Run directories, relative to repo root")
    lock_file: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "repo-triage.lock"),
        description="Global lock file, shared by every repository on this host",
    )


class TriageSettings(BaseSettings):
    """Main triage settings.

    Combines all configuration sections and supports loading from YAML
    files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    repository: RepositoryConfig
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    cross_repo: CrossRepoConfig = Field(default_factory=CrossRepoConfig)
    release: ReleaseConfig = Field(default_factory=ReleaseConfig)
    error_monitor: ErrorMonitorConfig = Field(default_factory=ErrorMonitorConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)

    @property
    def lock_path(self) -> Path:
        return Path(self.workflow.lock_file)

    def runs_dir(self, repo_root: Path) -> Path:
        """Resolve the runs directory against a repository checkout."""
        runs = Path(self.workflow.runs_directory)
        return runs if runs.is_absolute() else repo_root / runs

    @classmethod
    def from_yaml(cls, config_path: str) -> TriageSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            TriageSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file) as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except TypeError as e:
            raise ConfigurationError(f"Missing or invalid configuration fields: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Replace ${VAR} / ${VAR:-default} placeholders outside YAML comments.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name, default_value = match.group(1), match.group(2)
            value = os.getenv(var_name)
            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
