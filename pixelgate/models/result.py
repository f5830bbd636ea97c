"""Run result data structures produced by the gate."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .policy import LooseningEvent, ScreenThresholds, Tier

RunStatus = Literal["PASS", "WARN", "FAIL"]
ErrorKind = Literal["capture", "comparison", "timeout"]
ChangeType = Literal["position", "size", "color", "added", "removed", "text"]


class DetectedChange(BaseModel):
    type: ChangeType
    selector: Optional[str] = None
    description: str
    confidence: float = Field(ge=0, le=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScreenResult(BaseModel):
    screen_id: str
    name: str
    url: str
    status: RunStatus
    diff_pixels: int = 0
    diff_pixel_ratio: float = 0.0
    total_pixels: int = 0
    originality_percent: float = 0.0
    thresholds: ScreenThresholds
    tier: Tier = Tier.STANDARD
    # paths relative to the run directory
    baseline_path: Optional[str] = None
    actual_path: Optional[str] = None
    diff_path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    changes: list[DetectedChange] = Field(default_factory=list)


class RunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    timestamp: str
    sha: Optional[str] = None
    branch: Optional[str] = None
    policy_hash: str
    total: int = 0
    passed: int = 0
    warned: int = 0
    failed: int = 0
    worst_similarity: float = 1.0
    status: RunStatus = "PASS"
    loosening_events: list[LooseningEvent] = Field(default_factory=list)
    results: list[ScreenResult] = Field(default_factory=list)

    @property
    def loosening_occurred(self) -> bool:
        return bool(self.loosening_events)


class MaskSuggestion(BaseModel):
    screen_id: str = ""
    route: str = ""
    selector: str
    type: Literal["css", "rect"] = "css"
    reason: str
    confidence: float = Field(ge=0, le=1)
    examples: list[str] = Field(default_factory=list)
    bbox: Optional[dict[str, float]] = None
