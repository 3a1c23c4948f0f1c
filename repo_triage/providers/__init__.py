"""External collaborators of the triage engine.

Key Components:
    - IssueTracker: labels, comments, closure and search against a tracker
    - VersionControl: read-only commit history between two revisions
    - AgentRunner: one invocation of an external reasoning agent
    - GitHubTracker / GitHistory / ExternalAgentRunner: production implementations
"""

from repo_triage.providers.base import AgentRunner, IssueTracker, VersionControl

__all__ = ["AgentRunner", "IssueTracker", "VersionControl"]
