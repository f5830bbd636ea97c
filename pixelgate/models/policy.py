"""Threshold and org-policy data structures."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import DeterminismConfig, ViewportConfig


class Tier(str, Enum):
    STANDARD = "standard"
    CRITICAL = "critical"
    NOISY = "noisy"


class ThresholdBand(BaseModel):
    """Upper bounds; exceeding either one trips the band."""
    model_config = ConfigDict(frozen=True)

    diff_pixel_ratio: float = Field(ge=0)
    diff_pixels: int = Field(ge=0)


class ScreenThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    warn: ThresholdBand
    fail: ThresholdBand
    require_masks: Optional[bool] = None


class BandOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    diff_pixel_ratio: Optional[float] = Field(default=None, ge=0)
    diff_pixels: Optional[int] = Field(default=None, ge=0)


class ThresholdOverride(BaseModel):
    """Per-screen threshold fields; each one independently optional."""
    model_config = ConfigDict(frozen=True)

    warn: Optional[BandOverride] = None
    fail: Optional[BandOverride] = None
    require_masks: Optional[bool] = None


class PixelScaling(BaseModel):
    """Linear viewport-area scaling for a pixel-count bound, clamped to [minimum, maximum]."""
    model_config = ConfigDict(frozen=True)

    coefficient: float = Field(ge=0)
    minimum: int = Field(ge=0)
    maximum: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_clamp(self) -> "PixelScaling":
        if self.minimum > self.maximum:
            raise ValueError("minimum exceeds maximum")
        return self


class TierThresholds(ScreenThresholds):
    warn_scaling: Optional[PixelScaling] = None
    fail_scaling: Optional[PixelScaling] = None

    @model_validator(mode="after")
    def _check_bands(self) -> "TierThresholds":
        if (self.warn.diff_pixel_ratio > self.fail.diff_pixel_ratio
                or self.warn.diff_pixels > self.fail.diff_pixels):
            raise ValueError("warn band exceeds fail band")
        return self


class TierTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    standard: TierThresholds = Field(default_factory=lambda: TierThresholds(
        warn=ThresholdBand(diff_pixel_ratio=0.0002, diff_pixels=250),
        fail=ThresholdBand(diff_pixel_ratio=0.0005, diff_pixels=600),
        warn_scaling=PixelScaling(coefficient=0.00027, minimum=150, maximum=600),
        fail_scaling=PixelScaling(coefficient=0.00065, minimum=300, maximum=1200),
    ))
    critical: TierThresholds = Field(default_factory=lambda: TierThresholds(
        warn=ThresholdBand(diff_pixel_ratio=0.0001, diff_pixels=150),
        fail=ThresholdBand(diff_pixel_ratio=0.0003, diff_pixels=400),
        warn_scaling=PixelScaling(coefficient=0.00016, minimum=100, maximum=450),
        fail_scaling=PixelScaling(coefficient=0.00043, minimum=200, maximum=900),
    ))
    noisy: TierThresholds = Field(default_factory=lambda: TierThresholds(
        warn=ThresholdBand(diff_pixel_ratio=0.0003, diff_pixels=350),
        fail=ThresholdBand(diff_pixel_ratio=0.0008, diff_pixels=900),
        require_masks=True,
        warn_scaling=PixelScaling(coefficient=0.00038, minimum=200, maximum=900),
        fail_scaling=PixelScaling(coefficient=0.00100, minimum=450, maximum=2000),
    ))

    def for_tier(self, tier: Tier) -> TierThresholds:
        return getattr(self, tier.value)


class PolicyDefaults(BaseModel):
    model_config = ConfigDict(frozen=True)

    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    determinism: DeterminismConfig = Field(default_factory=DeterminismConfig)
    thresholds: TierTable = Field(default_factory=TierTable)


class EnforcementConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    allow_loosening: bool = False
    allow_per_screen_viewport_override: bool = True
    allow_per_screen_mask_override: bool = True
    max_mask_coverage_ratio: float = Field(default=0.35, ge=0, le=1)


class TagRules(BaseModel):
    """Route substrings that tag otherwise untagged screens."""
    model_config = ConfigDict(frozen=True)

    critical_routes: list[str] = Field(default_factory=list)
    noisy_routes: list[str] = Field(default_factory=list)


class OrgPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: int = 1
    defaults: PolicyDefaults = Field(default_factory=PolicyDefaults)
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)
    tag_rules: Optional[TagRules] = None


class LooseningEvent(BaseModel):
    """Audit record for a per-screen override that relaxes a tier bound."""
    model_config = ConfigDict(frozen=True)

    screen_id: str
    field: str  # e.g. "warn.diff_pixels", "require_masks"
    requested: float | bool
    baseline: float | bool | None
    applied: bool
    justification: str = ""
    reason: str = ""
