"""Classify the connected regions of a diff mask into human-readable changes."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from pixelgate.models.result import DetectedChange

logger = logging.getLogger(__name__)

MIN_REGION_SIDE = 10
COLOR_DISTANCE_THRESHOLD = 50
POSITION_MIN_SIDE = 50
SEARCH_RADIUS = 100
SEARCH_STEP = 10
SIMILARITY_THRESHOLD = 0.8
PIXEL_MATCH_DELTA = 10
MIN_MOVE_PX = 5
SIZE_AREA_RATIO = 0.01


@dataclass(frozen=True)
class ChangeRegion:
    x: int
    y: int
    width: int
    height: int
    diff_pixels: int


def find_change_regions(diff_mask: np.ndarray, min_side: int = MIN_REGION_SIDE) -> list[ChangeRegion]:
    """4-connected components of the mask whose bounding box has a side >= min_side."""
    labeled, num_features = ndimage.label(diff_mask)
    if num_features == 0:
        return []
    counts = np.bincount(labeled.ravel(), minlength=num_features + 1)
    regions: list[ChangeRegion] = []

    for label_id, bounds in enumerate(ndimage.find_objects(labeled), start=1):
        if bounds is None:
            continue
        rows, cols = bounds
        width = cols.stop - cols.start
        height = rows.stop - rows.start
        if width >= min_side or height >= min_side:
            regions.append(ChangeRegion(
                x=cols.start, y=rows.start, width=width, height=height,
                diff_pixels=int(counts[label_id]),
            ))
    return regions


def _average_color(pixels: np.ndarray, region: ChangeRegion) -> tuple[int, int, int]:
    patch = pixels[region.y:region.y + region.height, region.x:region.x + region.width, :3]
    mean = patch.reshape(-1, 3).astype(np.float64).mean(axis=0)
    return tuple(int(math.floor(c + 0.5)) for c in mean)


def _region_similarity(
    baseline: np.ndarray, actual: np.ndarray, region: ChangeRegion, x: int, y: int,
) -> float:
    a = baseline[region.y:region.y + region.height, region.x:region.x + region.width, :3].astype(np.int16)
    b = actual[y:y + region.height, x:x + region.width, :3].astype(np.int16)
    close = (np.abs(a - b) < PIXEL_MATCH_DELTA).all(axis=2)
    return float(close.mean())


def find_similar_region(
    baseline: np.ndarray, actual: np.ndarray, region: ChangeRegion,
) -> tuple[int, int] | None:
    """Best-matching offset of the baseline region inside the actual image, if any."""
    img_height, img_width = baseline.shape[:2]
    best: tuple[int, int] | None = None
    best_similarity = 0.0
    for dy in range(-SEARCH_RADIUS, SEARCH_RADIUS + 1, SEARCH_STEP):
        for dx in range(-SEARCH_RADIUS, SEARCH_RADIUS + 1, SEARCH_STEP):
            nx, ny = region.x + dx, region.y + dy
            if nx < 0 or ny < 0 or nx + region.width >= img_width or ny + region.height >= img_height:
                continue
            similarity = _region_similarity(baseline, actual, region, nx, ny)
            if similarity > best_similarity and similarity > SIMILARITY_THRESHOLD:
                best_similarity = similarity
                best = (nx, ny)
    return best


def analyze_region(region: ChangeRegion, baseline: np.ndarray, actual: np.ndarray) -> DetectedChange:
    img_height, img_width = baseline.shape[:2]
    old = _average_color(baseline, region)
    new = _average_color(actual, region)
    distance = math.sqrt(sum((o - n) ** 2 for o, n in zip(old, new)))
    bbox = {"x": region.x, "y": region.y, "width": region.width, "height": region.height}

    if distance > COLOR_DISTANCE_THRESHOLD:
        return DetectedChange(
            type="color",
            description=(
                f"Color changed in {region.width}x{region.height}px area "
                f"at ({region.x}, {region.y})"
            ),
            confidence=min(0.95, distance / 255),
            metadata={"old_value": "rgb(%d, %d, %d)" % old, "new_value": "rgb(%d, %d, %d)" % new, **bbox},
        )

    if region.width > POSITION_MIN_SIDE and region.height > POSITION_MIN_SIDE:
        match = find_similar_region(baseline, actual, region)
        if match is not None:
            dx, dy = match[0] - region.x, match[1] - region.y
            if abs(dx) > MIN_MOVE_PX or abs(dy) > MIN_MOVE_PX:
                return DetectedChange(
                    type="position",
                    description=(
                        f"Element moved {abs(dx)}px {'right' if dx > 0 else 'left'}, "
                        f"{abs(dy)}px {'down' if dy > 0 else 'up'}"
                    ),
                    confidence=0.85,
                    metadata={"delta_x": dx, "delta_y": dy, **bbox},
                )

    if (region.width * region.height) / (img_width * img_height) > SIZE_AREA_RATIO:
        return DetectedChange(
            type="size",
            description=f"Element size changed: {region.width}x{region.height}px",
            confidence=0.75,
            metadata={"delta_width": region.width, "delta_height": region.height, **bbox},
        )

    return DetectedChange(
        type="color",
        description=f"Visual change in {region.width}x{region.height}px area",
        confidence=0.6,
        metadata=bbox,
    )


def detect_changes(baseline: np.ndarray, actual: np.ndarray, diff_mask: np.ndarray) -> list[DetectedChange]:
    """Changes for every significant diff region, highest confidence first."""
    if not diff_mask.any():
        return []
    regions = find_change_regions(diff_mask)
    changes = [analyze_region(region, baseline, actual) for region in regions]
    changes.sort(key=lambda c: c.confidence, reverse=True)
    logger.debug("Detected %d change(s) in %d region(s)", len(changes), len(regions))
    return changes
