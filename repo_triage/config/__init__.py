"""Configuration system for the triage pipeline.

This package provides type-safe configuration management using Pydantic.
The pipeline only ever sees a loaded ``TriageSettings`` snapshot; YAML
parsing and environment interpolation stay in this package.

Key Components:
    - TriageSettings: Main configuration container with YAML loading support
    - ThresholdsConfig: Auto-close / suggest-close / comment thresholds
    - AgentsConfig: Enabled agents and their file preconditions
    - RunnerConfig: Agent CLI and task executor limits
    - CrossRepoConfig: Dependent repositories searched for related issues

Example:
    >>> from repo_triage.config import TriageSettings
    >>> settings = TriageSettings.from_yaml("triage.yaml")
    >>> settings.thresholds.auto_close
    0.9
"""

from repo_triage.config.settings import (
    AgentCondition,
    AgentsConfig,
    CrossRepoConfig,
    CrossRepoTarget,
    ErrorMonitorConfig,
    ReleaseConfig,
    RepositoryConfig,
    RunnerConfig,
    ThresholdsConfig,
    TrackerConfig,
    TriageSettings,
    WorkflowConfig,
)

__all__ = [
    "AgentCondition",
    "AgentsConfig",
    "CrossRepoConfig",
    "CrossRepoTarget",
    "ErrorMonitorConfig",
    "ReleaseConfig",
    "RepositoryConfig",
    "RunnerConfig",
    "ThresholdsConfig",
    "TrackerConfig",
    "TriageSettings",
    "WorkflowConfig",
]
