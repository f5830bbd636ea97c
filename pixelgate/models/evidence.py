"""Evidence pack manifest and verification structures."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

IssueKind = Literal["missing", "hash_mismatch", "external_url", "malformed"]


class EvidenceManifest(BaseModel):
    run_id: str
    created_at: str
    algorithm: str = "sha256"
    # relative path -> hex digest, per category
    baselines: dict[str, str] = Field(default_factory=dict)
    actuals: dict[str, str] = Field(default_factory=dict)
    diffs: dict[str, str] = Field(default_factory=dict)
    summary: dict[str, str] = Field(default_factory=dict)

    def entries(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for category in (self.baselines, self.actuals, self.diffs, self.summary):
            merged.update(category)
        return merged

    @property
    def file_count(self) -> int:
        return len(self.entries())


class VerificationIssue(BaseModel):
    kind: IssueKind
    path: str = ""
    message: str


class VerificationReport(BaseModel):
    errors: list[VerificationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors
