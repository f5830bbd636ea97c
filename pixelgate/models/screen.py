"""Screen definitions and their policy-resolved form."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import DeterminismConfig, Mask, ViewportConfig, ViewportOverride
from .policy import LooseningEvent, ScreenThresholds, ThresholdOverride, Tier


class DeterminismOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    disable_animations: Optional[bool] = None
    block_external_network: Optional[bool] = None
    wait_until: Optional[Literal["load", "domcontentloaded", "networkidle", "commit"]] = None
    layout_stability_ms: Optional[int] = None
    allowed_domains: Optional[tuple[str, ...]] = None


class ScreenBaseline(BaseModel):
    """One capturable screen. ``tags`` is ordered; the first tag is the primary one."""
    model_config = ConfigDict(frozen=True)

    screen_id: str
    name: str
    url: str
    tags: list[str] = Field(default_factory=list)
    viewport: Optional[ViewportOverride] = None
    thresholds: Optional[ThresholdOverride] = None
    masks: list[Mask] = Field(default_factory=list)
    determinism: Optional[DeterminismOverride] = None
    wait_for_selector: Optional[str] = None
    override_justification: Optional[str] = None


class ResolvedScreen(BaseModel):
    model_config = ConfigDict(frozen=True)

    screen: ScreenBaseline
    viewport: ViewportConfig
    thresholds: ScreenThresholds
    determinism: DeterminismConfig
    tier: Tier
    applied_tags: list[str] = Field(default_factory=list)
    masks: list[Mask] = Field(default_factory=list)
    loosening_events: list[LooseningEvent] = Field(default_factory=list)
    mask_coverage_ratio: float = 0.0

    @property
    def screen_id(self) -> str:
        return self.screen.screen_id

    @property
    def loosening_applied(self) -> bool:
        return any(e.applied for e in self.loosening_events)
