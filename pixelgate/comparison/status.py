"""PASS/WARN/FAIL evaluation for a single screen."""

from __future__ import annotations

from typing import Optional

from pixelgate.models.policy import ScreenThresholds, ThresholdBand
from pixelgate.models.result import RunStatus


def exceeds(band: ThresholdBand, diff_pixels: int, diff_pixel_ratio: float) -> bool:
    # Bounds are inclusive: reaching a bound exactly does not trip the band.
    return diff_pixels > band.diff_pixels or diff_pixel_ratio > band.diff_pixel_ratio


def evaluate_status(
    diff_pixels: int,
    diff_pixel_ratio: float,
    thresholds: ScreenThresholds,
    has_masks: bool = False,
    error: Optional[str] = None,
) -> RunStatus:
    """First matching rule wins: error, missing required masks, fail band, warn band."""
    if error:
        return "FAIL"
    if thresholds.require_masks and not has_masks:
        return "FAIL"
    if exceeds(thresholds.fail, diff_pixels, diff_pixel_ratio):
        return "FAIL"
    if exceeds(thresholds.warn, diff_pixels, diff_pixel_ratio):
        return "WARN"
    return "PASS"
