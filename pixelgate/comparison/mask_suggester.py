"""Mask suggestion: finds volatile elements by snapshotting a page twice."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from playwright.async_api import Page

from pixelgate.capture.deterministic import wait_for_layout_stability
from pixelgate.models.config import Mask
from pixelgate.models.result import MaskSuggestion

logger = logging.getLogger(__name__)

APPLY_CONFIDENCE = 0.75
BBOX_TOLERANCE_PX = 2
DEFAULT_VIEWPORT_AREA = 1280 * 720
MAX_SAFE_AREA_RATIO = 0.5
CONTAINER_MIN_ELEMENTS = 5
CONTAINER_PROXIMITY_PX = 100

# Selectors that are volatile by convention wherever they appear.
VOLATILE_SELECTOR_PATTERNS = [
    ("[data-timestamp]", "Timestamp elements frequently change", 0.9),
    ("[data-random-id]", "Random ID elements are non-deterministic", 0.85),
    ("canvas", "Canvas elements may have rendering differences", 0.7),
    ("video", "Video frames differ between captures", 0.7),
    (".avatar img", "User avatars may vary", 0.6),
]

VOLATILE_TEXT_PATTERNS = [
    ("time", re.compile(r"\b\d{1,2}:\d{2}(:\d{2})?\s*([ap]\.?m\.?)?\b", re.I)),
    ("date", re.compile(r"\b\d{4}-\d{2}-\d{2}\b|\b\d{1,2}/\d{1,2}/\d{2,4}\b")),
    ("relative_time", re.compile(r"\b(just now|\d+\s+(seconds?|minutes?|hours?|days?)\s+ago)\b", re.I)),
    ("counter", re.compile(r"^\s*\d[\d,.]*\s*(views?|likes?|users?|online)?\s*$", re.I)),
]

_UNSAFE_TEXT = re.compile(r"\b(error|warning|unauthori[sz]ed|blocked|denied|forbidden)\b", re.I)
_STRUCTURAL_SELECTORS = {"html", "body", "main", "header", "footer", "nav", "#root", "#app", "#__next"}
_HASHED_ID = re.compile(r"^(?=.*\d)[A-Za-z0-9]{8,}$|\d{4,}|^:r[0-9a-z]+:$")

_SNAPSHOT_SCRIPT = """(limit) => {
  const cssPath = (el) => {
    const parts = [];
    while (el && el.nodeType === 1 && el !== document.documentElement) {
      let part = el.tagName.toLowerCase();
      const parent = el.parentElement;
      if (parent) {
        const same = Array.from(parent.children).filter((c) => c.tagName === el.tagName);
        if (same.length > 1) part += ':nth-of-type(' + (same.indexOf(el) + 1) + ')';
      }
      parts.unshift(part);
      el = parent;
    }
    return parts.join(' > ');
  };
  const out = [];
  for (const el of document.querySelectorAll('body *')) {
    if (out.length >= limit) break;
    const tag = el.tagName.toLowerCase();
    if (tag === 'script' || tag === 'style' || el.hasAttribute('data-gate-mask')) continue;
    const leaf = el.children.length === 0 || ['canvas', 'video', 'img', 'time'].includes(tag);
    if (!leaf) continue;
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    out.push({
      selector: cssPath(el),
      text: (el.textContent || '').trim().slice(0, 200),
      bbox: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
      visible: style.visibility !== 'hidden' && style.display !== 'none' && rect.width > 0 && rect.height > 0,
      test_id: el.getAttribute('data-testid'),
      id: el.id || null,
      aria_label: el.getAttribute('aria-label'),
    });
  }
  return out;
}"""


@dataclass
class ElementSnapshot:
    selector: str
    text: str
    bbox: dict[str, float]
    visible: bool = True
    test_id: Optional[str] = None
    id: Optional[str] = None
    aria_label: Optional[str] = None


@dataclass
class VolatileElement:
    element: ElementSnapshot
    snapshot_a: Optional[ElementSnapshot]
    snapshot_b: Optional[ElementSnapshot]
    changes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RankedSelector:
    selector: str
    confidence: float
    type: str  # "css" or "rect"


@dataclass(frozen=True)
class RankedSelectorWithBox(RankedSelector):
    bbox: dict[str, float] = field(default_factory=dict)
    members: list[str] = field(default_factory=list)


def _bbox_changed(a: dict[str, float], b: dict[str, float], tolerance: float) -> bool:
    return any(abs(a[k] - b[k]) > tolerance for k in ("x", "y", "width", "height"))


def detect_volatile_elements(
    snapshot_a: list[ElementSnapshot],
    snapshot_b: list[ElementSnapshot],
    tolerance: float = BBOX_TOLERANCE_PX,
) -> list[VolatileElement]:
    """Compare two snapshots of the same page keyed by selector."""
    by_selector_a = {s.selector: s for s in snapshot_a}
    by_selector_b = {s.selector: s for s in snapshot_b}
    volatile: list[VolatileElement] = []

    for selector, a in by_selector_a.items():
        b = by_selector_b.get(selector)
        if b is None:
            volatile.append(VolatileElement(a, a, None, ["disappeared"]))
            continue
        changes = []
        if a.text != b.text:
            changes.append("text_changed")
        if _bbox_changed(a.bbox, b.bbox, tolerance):
            changes.append("bbox_changed")
        if a.visible != b.visible:
            changes.append("visibility_changed")
        if changes:
            volatile.append(VolatileElement(b, a, b, changes))

    for selector, b in by_selector_b.items():
        if selector not in by_selector_a:
            volatile.append(VolatileElement(b, None, b, ["appeared"]))
    return volatile


def detect_volatile_text(snapshot: list[ElementSnapshot], already: set[str] | None = None) -> list[VolatileElement]:
    """Elements whose text looks like a clock, date or counter even if it did not change."""
    already = already or set()
    found = []
    for element in snapshot:
        if element.selector in already or not element.text:
            continue
        for name, pattern in VOLATILE_TEXT_PATTERNS:
            if pattern.search(element.text):
                found.append(VolatileElement(element, element, element, [f"looks_like_{name}"]))
                break
    return found


def _is_stable_id(element_id: str) -> bool:
    return not _HASHED_ID.search(element_id)


def rank_selector(element: ElementSnapshot) -> RankedSelector:
    """Pick the most durable way to address an element."""
    if element.test_id:
        return RankedSelector(f'[data-testid="{element.test_id}"]', 0.95, "css")
    if element.id and _is_stable_id(element.id):
        return RankedSelector(f"#{element.id}", 0.9, "css")
    if element.aria_label:
        return RankedSelector(f'[aria-label="{element.aria_label}"]', 0.85, "css")
    return RankedSelector(element.selector, 0.5, "rect")


def is_safe_to_mask(element: ElementSnapshot, viewport_area: int = DEFAULT_VIEWPORT_AREA) -> bool:
    """Refuse masks that could hide real failures or most of the page."""
    if element.text and _UNSAFE_TEXT.search(element.text):
        return False
    if element.selector.strip().lower() in _STRUCTURAL_SELECTORS:
        return False
    area = element.bbox.get("width", 0) * element.bbox.get("height", 0)
    if viewport_area > 0 and area / viewport_area > MAX_SAFE_AREA_RATIO:
        return False
    return True


def _close(a: dict[str, float], b: dict[str, float], proximity: float) -> bool:
    gap_x = max(0.0, max(a["x"], b["x"]) - min(a["x"] + a["width"], b["x"] + b["width"]))
    gap_y = max(0.0, max(a["y"], b["y"]) - min(a["y"] + a["height"], b["y"] + b["height"]))
    return gap_x <= proximity and gap_y <= proximity


def detect_container_volatility(
    volatile: list[VolatileElement],
    min_elements: int = CONTAINER_MIN_ELEMENTS,
    proximity: float = CONTAINER_PROXIMITY_PX,
) -> list[RankedSelectorWithBox]:
    """Cluster nearby volatile elements; big clusters become one rect mask."""
    clusters: list[list[VolatileElement]] = []
    for item in volatile:
        home = None
        for cluster in clusters:
            if any(_close(item.element.bbox, other.element.bbox, proximity) for other in cluster):
                home = cluster
                break
        if home is None:
            clusters.append([item])
        else:
            home.append(item)

    containers = []
    for cluster in clusters:
        if len(cluster) < min_elements:
            continue
        boxes = [c.element.bbox for c in cluster]
        x0 = min(b["x"] for b in boxes)
        y0 = min(b["y"] for b in boxes)
        x1 = max(b["x"] + b["width"] for b in boxes)
        y1 = max(b["y"] + b["height"] for b in boxes)
        containers.append(RankedSelectorWithBox(
            selector=f"cluster of {len(cluster)} elements",
            confidence=0.7,
            type="rect",
            bbox={"x": x0, "y": y0, "width": x1 - x0, "height": y1 - y0},
            members=[c.element.selector for c in cluster],
        ))
    return containers


def generate_mask_suggestions(
    volatile: list[VolatileElement],
    screen_id: str,
    max_suggestions: int = 8,
    route: str = "",
) -> list[MaskSuggestion]:
    suggestions: dict[str, MaskSuggestion] = {}

    def keep(s: MaskSuggestion) -> None:
        existing = suggestions.get(s.selector)
        if existing is None or existing.confidence < s.confidence:
            suggestions[s.selector] = s

    for item in volatile:
        if not is_safe_to_mask(item.element):
            continue
        ranked = rank_selector(item.element)
        examples = [s.text for s in (item.snapshot_a, item.snapshot_b) if s is not None and s.text]
        keep(MaskSuggestion(
            screen_id=screen_id,
            route=route,
            selector=ranked.selector,
            type=ranked.type,
            reason=f"Element {', '.join(item.changes)}",
            confidence=ranked.confidence,
            examples=list(dict.fromkeys(examples)),
            bbox=dict(item.element.bbox),
        ))

    for container in detect_container_volatility(volatile):
        keep(MaskSuggestion(
            screen_id=screen_id,
            route=route,
            selector=container.selector,
            type="rect",
            reason=f"Volatile region containing {len(container.members)} elements",
            confidence=container.confidence,
            examples=container.members[:3],
            bbox=container.bbox,
        ))

    ordered = sorted(suggestions.values(), key=lambda s: s.confidence, reverse=True)
    return ordered[:max_suggestions]


def convert_to_mask(suggestion: MaskSuggestion) -> Mask:
    if suggestion.type == "rect" and suggestion.bbox:
        b = suggestion.bbox
        return Mask(
            type="rect",
            x=int(round(b["x"])), y=int(round(b["y"])),
            width=int(round(b["width"])), height=int(round(b["height"])),
        )
    return Mask(type="css", selector=suggestion.selector)


async def take_snapshot(page: Page, limit: int = 500) -> list[ElementSnapshot]:
    raw = await page.evaluate(_SNAPSHOT_SCRIPT, limit)
    return [ElementSnapshot(**item) for item in raw or []]


async def _present_patterns(page: Page, screen_id: str, route: str) -> list[MaskSuggestion]:
    found = []
    for selector, reason, confidence in VOLATILE_SELECTOR_PATTERNS:
        count = await page.locator(selector).count()
        if count:
            found.append(MaskSuggestion(
                screen_id=screen_id, route=route, selector=selector, type="css",
                reason=reason, confidence=confidence, examples=[f"{count} element(s) on {route or screen_id}"],
            ))
    return found


async def suggest_masks_for_screen(
    page: Page,
    screen_id: str,
    max_suggestions: int = 8,
    reload: bool = False,
    layout_stability_ms: int = 300,
    route: str = "",
) -> list[MaskSuggestion]:
    """Snapshot a loaded page twice and suggest masks for what moved or changed.

    The page must already be navigated. With ``reload`` the second snapshot is
    taken after a full reload, which also catches per-load randomness.
    """
    snapshot_a = await take_snapshot(page)
    if reload:
        await page.reload(wait_until="networkidle")
    else:
        await page.wait_for_timeout(layout_stability_ms)
    await wait_for_layout_stability(page, stability_ms=layout_stability_ms)
    snapshot_b = await take_snapshot(page)

    volatile = detect_volatile_elements(snapshot_a, snapshot_b)
    volatile += detect_volatile_text(snapshot_b, {v.element.selector for v in volatile})
    logger.debug("%s: %d volatile element(s)", screen_id, len(volatile))

    suggestions = generate_mask_suggestions(volatile, screen_id, max_suggestions, route)
    merged = {s.selector: s for s in suggestions}
    for s in await _present_patterns(page, screen_id, route):
        if s.selector not in merged or merged[s.selector].confidence < s.confidence:
            merged[s.selector] = s
    ordered = sorted(merged.values(), key=lambda s: s.confidence, reverse=True)
    return ordered[:max_suggestions]
