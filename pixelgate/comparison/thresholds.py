"""Tier selection and viewport-scaled threshold resolution."""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from pixelgate.models.config import ViewportConfig
from pixelgate.models.policy import (
    PixelScaling,
    PolicyDefaults,
    ScreenThresholds,
    ThresholdBand,
    ThresholdOverride,
    Tier,
    TierTable,
    TierThresholds,
)
from pixelgate.models.screen import ScreenBaseline

logger = logging.getLogger(__name__)

_TIER_BY_TAG = {tier.value: tier for tier in Tier}


def tier_for_tags(tags: Sequence[str] | None) -> Tier:
    """Map an ordered tag list to its tier; only the primary (first) tag counts."""
    if not tags:
        return Tier.STANDARD
    return _TIER_BY_TAG.get(tags[0].strip().lower(), Tier.STANDARD)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scale_pixel_bound(area: int, scaling: PixelScaling) -> int:
    scaled = _round_half_up(area * scaling.coefficient)
    return max(scaling.minimum, min(scaling.maximum, scaled))


def scale_thresholds_to_viewport(tier_thresholds: TierThresholds, viewport: ViewportConfig) -> ScreenThresholds:
    """Scale the pixel-count bounds to the viewport; ratio bounds stay fixed."""
    area = viewport.area
    warn_pixels = tier_thresholds.warn.diff_pixels
    fail_pixels = tier_thresholds.fail.diff_pixels
    if tier_thresholds.warn_scaling is not None:
        warn_pixels = scale_pixel_bound(area, tier_thresholds.warn_scaling)
    if tier_thresholds.fail_scaling is not None:
        fail_pixels = scale_pixel_bound(area, tier_thresholds.fail_scaling)
    return ScreenThresholds(
        warn=ThresholdBand(diff_pixel_ratio=tier_thresholds.warn.diff_pixel_ratio, diff_pixels=warn_pixels),
        fail=ThresholdBand(diff_pixel_ratio=tier_thresholds.fail.diff_pixel_ratio, diff_pixels=fail_pixels),
        require_masks=tier_thresholds.require_masks,
    )


def tier_thresholds(tier: Tier, viewport: ViewportConfig, table: TierTable | None = None) -> ScreenThresholds:
    table = table or TierTable()
    return scale_thresholds_to_viewport(table.for_tier(tier), viewport)


def apply_threshold_override(base: ScreenThresholds, override: Optional[ThresholdOverride]) -> ScreenThresholds:
    """Overlay every set override field onto the tier thresholds, no governance."""
    if override is None:
        return base
    warn = base.warn.model_dump()
    fail = base.fail.model_dump()
    if override.warn is not None:
        warn.update(override.warn.model_dump(exclude_none=True))
    if override.fail is not None:
        fail.update(override.fail.model_dump(exclude_none=True))
    require_masks = base.require_masks if override.require_masks is None else override.require_masks
    return ScreenThresholds(
        warn=ThresholdBand(**warn), fail=ThresholdBand(**fail), require_masks=require_masks,
    )


def enforce_band_order(thresholds: ScreenThresholds, screen_id: str = "") -> ScreenThresholds:
    """Clamp the warn band down to the fail band wherever it sits above it."""
    warn_ratio = min(thresholds.warn.diff_pixel_ratio, thresholds.fail.diff_pixel_ratio)
    warn_pixels = min(thresholds.warn.diff_pixels, thresholds.fail.diff_pixels)
    if (warn_ratio, warn_pixels) == (thresholds.warn.diff_pixel_ratio, thresholds.warn.diff_pixels):
        return thresholds
    logger.warning("Warn band above fail band for %s; clamping warn to fail", screen_id or "screen")
    return ScreenThresholds(
        warn=ThresholdBand(diff_pixel_ratio=warn_ratio, diff_pixels=warn_pixels),
        fail=thresholds.fail,
        require_masks=thresholds.require_masks,
    )


def resolve_thresholds(
    screen: ScreenBaseline,
    defaults: PolicyDefaults | None = None,
    viewport: ViewportConfig | None = None,
) -> ScreenThresholds:
    """Tier thresholds for the primary tag, scaled to the viewport, overrides winning field by field.

    Loosening governance lives in ``pixelgate.policy.loader.resolve_screen``;
    this function applies overrides unconditionally.
    """
    defaults = defaults or PolicyDefaults()
    viewport = viewport or defaults.viewport.merged(screen.viewport)
    base = tier_thresholds(tier_for_tags(screen.tags), viewport, defaults.thresholds)
    return enforce_band_order(apply_threshold_override(base, screen.thresholds), screen.screen_id)


def compute_originality_percent(diff_pixels: int, total_pixels: int) -> float:
    if total_pixels <= 0:
        return 0.0
    return (1 - diff_pixels / total_pixels) * 100
