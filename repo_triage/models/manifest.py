"""Release correlation manifest.

Produced by the pre-release phase as ``issue_manifest.json`` and consumed by
the post-release phase. The correlation agent rewrites the file in place,
so loading is tolerant: malformed entries are dropped rather than failing
the whole manifest.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

log = structlog.get_logger(__name__)

MIN_MANIFEST_CONFIDENCE = 0.3
REFERENCED_CONFIDENCE = 0.8


def _coerce_confidence(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return 0.0


class ManifestIssue(BaseModel):
    """An issue in this repository or a dependent one that the release may fix."""

    number: int
    title: str = ""
    repo: str = ""
    confidence: float = 0.0
    evidence: str = ""
    category: str = "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, value: Any) -> float:
        return _coerce_confidence(value)

    @field_validator("evidence", mode="before")
    @classmethod
    def join_evidence(cls, value: Any) -> str:
        if isinstance(value, list):
            return "; ".join(str(v) for v in value)
        return "" if value is None else str(value)


class MonitoredError(BaseModel):
    """An error-monitoring issue whose stack trace touches changed files."""

    id: str
    title: str = ""
    project: str = ""
    confidence: float = 0.0
    evidence: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, value: Any) -> float:
        return _coerce_confidence(value)


def parse_entries(model: type[BaseModel], raw: Any) -> list[Any]:
    """Validate a list of manifest entries, skipping the ones that do not parse."""
    if not isinstance(raw, list):
        return []
    entries = []
    for item in raw:
        try:
            entries.append(model.model_validate(item))
        except ValidationError as e:
            log.warning("manifest_entry_skipped", model=model.__name__, error=str(e))
    return entries


class IssueManifest(BaseModel):
    version: str
    prev_tag: str = ""
    github_issues: list[ManifestIssue] = Field(default_factory=list)
    cross_repo_issues: list[ManifestIssue] = Field(default_factory=list)
    error_monitor_issues: list[MonitoredError] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    summary: str = ""

    @field_validator("github_issues", "cross_repo_issues", mode="before")
    @classmethod
    def tolerant_issues(cls, value: Any) -> list[ManifestIssue]:
        return parse_entries(ManifestIssue, value)

    @field_validator("error_monitor_issues", mode="before")
    @classmethod
    def tolerant_errors(cls, value: Any) -> list[MonitoredError]:
        return parse_entries(MonitoredError, value)

    @property
    def total(self) -> int:
        return len(self.github_issues) + len(self.cross_repo_issues) + len(self.error_monitor_issues)

    def merge_correlated(self, data: dict[str, Any]) -> None:
        """Replace candidate lists with the ones the correlation agent produced.

        Lists missing from ``data`` keep their current (unscored) contents.
        Entries under the minimum confidence are stripped.
        """
        if "github_issues" in data:
            self.github_issues = _strip_weak(parse_entries(ManifestIssue, data["github_issues"]))
        if "cross_repo_issues" in data:
            self.cross_repo_issues = _strip_weak(parse_entries(ManifestIssue, data["cross_repo_issues"]))
        if "error_monitor_issues" in data:
            self.error_monitor_issues = _strip_weak(parse_entries(MonitoredError, data["error_monitor_issues"]))

    def build_summary(self) -> str:
        self.summary = (
            f"This release likely addresses {len(self.github_issues)} issues, "
            f"{len(self.cross_repo_issues)} cross-repo issues, "
            f"and {len(self.error_monitor_issues)} monitored errors"
        )
        return self.summary


def _strip_weak(entries: list[Any]) -> list[Any]:
    return [e for e in entries if e.confidence >= MIN_MANIFEST_CONFIDENCE]
