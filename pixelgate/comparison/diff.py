"""Pixel comparison between a baseline and an actual capture."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from pixelgate.errors import DimensionMismatchError, ImageReadError
from pixelgate.models.config import Mask

logger = logging.getLogger(__name__)

DIFF_COLOR = np.array([255, 0, 0, 255], dtype=np.uint8)
MASK_TINT = np.array([0, 90, 255], dtype=np.float32)
FADE = 0.3  # baseline brightness kept in the diff image


@dataclass
class DiffResult:
    diff_pixels: int
    total_pixels: int
    width: int
    height: int
    diff_mask: np.ndarray  # bool (height, width), True where pixels differ
    diff_image: Optional[Image.Image] = None

    @property
    def diff_pixel_ratio(self) -> float:
        if self.total_pixels == 0:
            return 0.0
        return self.diff_pixels / self.total_pixels


def load_rgba(path: Path) -> np.ndarray:
    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("RGBA"), dtype=np.uint8)
    except FileNotFoundError as e:
        raise ImageReadError(str(path), "file not found") from e
    except (UnidentifiedImageError, OSError) as e:
        raise ImageReadError(str(path), str(e)) from e


def rect_mask_array(masks: list[Mask], width: int, height: int) -> np.ndarray:
    """Boolean array that is True inside any rect mask, clipped to the image."""
    region = np.zeros((height, width), dtype=bool)
    for mask in masks:
        if mask.type != "rect":
            continue
        x0 = max(mask.x, 0)
        y0 = max(mask.y, 0)
        x1 = min(mask.x + mask.width, width)
        y1 = min(mask.y + mask.height, height)
        if x1 > x0 and y1 > y0:
            region[y0:y1, x0:x1] = True
    return region


def compare_arrays(
    baseline: np.ndarray,
    actual: np.ndarray,
    tolerance: int = 5,
    masks: list[Mask] | None = None,
    render_diff: bool = True,
) -> DiffResult:
    if baseline.shape[:2] != actual.shape[:2]:
        bh, bw = baseline.shape[:2]
        ah, aw = actual.shape[:2]
        raise DimensionMismatchError((bw, bh), (aw, ah))

    height, width = baseline.shape[:2]
    delta = np.abs(baseline.astype(np.int16) - actual.astype(np.int16)).max(axis=2)
    differs = delta > tolerance

    masked = rect_mask_array(masks or [], width, height)
    differs &= ~masked

    diff_image = _render_diff(baseline, differs, masked) if render_diff else None
    return DiffResult(
        diff_pixels=int(differs.sum()),
        total_pixels=width * height,
        width=width,
        height=height,
        diff_mask=differs,
        diff_image=diff_image,
    )


def _render_diff(baseline: np.ndarray, differs: np.ndarray, masked: np.ndarray) -> Image.Image:
    gray = baseline[..., :3].astype(np.float32).mean(axis=2)
    faded = 255 - (255 - gray) * FADE
    out = np.empty(baseline.shape[:2] + (4,), dtype=np.uint8)
    out[..., :3] = faded[..., None].astype(np.uint8)
    out[..., 3] = 255
    if masked.any():
        tinted = out[masked, :3].astype(np.float32) * 0.5 + MASK_TINT * 0.5
        out[masked, :3] = tinted.astype(np.uint8)
    out[differs] = DIFF_COLOR
    return Image.fromarray(out)


def compare_images(
    baseline_path: Path,
    actual_path: Path,
    diff_path: Path | None = None,
    tolerance: int = 5,
    masks: list[Mask] | None = None,
) -> DiffResult:
    """Compare two PNG files and optionally write the diff image.

    Raises DimensionMismatchError when the images differ in size and
    ImageReadError when either one cannot be decoded.
    """
    baseline = load_rgba(Path(baseline_path))
    actual = load_rgba(Path(actual_path))
    result = compare_arrays(
        baseline, actual, tolerance=tolerance, masks=masks, render_diff=diff_path is not None,
    )
    if diff_path is not None and result.diff_image is not None:
        diff_path = Path(diff_path)
        diff_path.parent.mkdir(parents=True, exist_ok=True)
        result.diff_image.save(diff_path, format="PNG")
    logger.debug(
        "Compared %s: %d/%d pixels differ",
        Path(actual_path).name, result.diff_pixels, result.total_pixels,
    )
    return result
