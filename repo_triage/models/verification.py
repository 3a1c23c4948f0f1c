"""Verification report models.

A report is a read-only snapshot of tracker state compared against what a
run's decisions expected. It is written to ``triage_verification.json`` and
never merged back into the game plan.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class VerificationCheck(BaseModel):
    name: str
    passed: bool
    message: str = ""


class IssueVerification(BaseModel):
    issue_number: int
    checks: list[VerificationCheck] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    def check(self, name: str) -> VerificationCheck | None:
        return next((c for c in self.checks if c.name == name), None)


class VerificationReport(BaseModel):
    verifications: list[IssueVerification] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def all_passed(self) -> bool:
        return all(v.passed for v in self.verifications)

    @property
    def passed_count(self) -> int:
        return sum(1 for v in self.verifications if v.passed)

    def to_artifact(self) -> dict:
        return {
            "all_passed": self.all_passed,
            "timestamp": self.timestamp.isoformat(),
            "verifications": [
                {"issue_number": v.issue_number, "passed": v.passed, "checks": [c.model_dump() for c in v.checks]}
                for v in self.verifications
            ],
        }
