"""Determinism controller: removes run-to-run pixel noise before a capture."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from playwright.async_api import Page, Route

from pixelgate.models.config import DeterminismConfig
from pixelgate.url_utils import is_allowed_domain

from .clock import FixedClock

logger = logging.getLogger(__name__)

BLOCKED_ABORT_REASON = "blockedbyclient"

ANIMATION_BLOCKING_CSS = """
*, *::before, *::after {
  animation-duration: 0s !important;
  animation-delay: 0s !important;
  transition-duration: 0s !important;
  transition-delay: 0s !important;
  animation-iteration-count: 1 !important;
}
@media (prefers-reduced-motion: reduce) {
  * { animation: none !important; transition: none !important; }
}
* { caret-color: transparent !important; }
"""

# Re-applied on every navigation: a style tag added to the current document
# would be lost when the page navigates.
_STYLE_INIT_SCRIPT = """
(() => {
  const css = %s;
  const install = () => {
    if (document.getElementById('__gate_determinism_css')) return;
    const style = document.createElement('style');
    style.id = '__gate_determinism_css';
    style.textContent = css;
    (document.head || document.documentElement).appendChild(style);
  };
  if (document.readyState === 'loading') {
    document.addEventListener('DOMContentLoaded', install);
  } else {
    install();
  }
})();
"""

_FREEZE_TIME_SCRIPT = """
(() => {
  const fixedTime = %d;
  const fixedMonotonic = %s;
  const OriginalDate = Date;
  class FrozenDate extends OriginalDate {
    constructor(...args) {
      if (args.length === 0) {
        super(fixedTime);
      } else {
        super(...args);
      }
    }
    static now() { return fixedTime; }
  }
  FrozenDate.parse = OriginalDate.parse;
  FrozenDate.UTC = OriginalDate.UTC;
  globalThis.Date = FrozenDate;
  if (typeof performance !== 'undefined' && performance.now) {
    performance.now = () => fixedMonotonic;
  }
})();
"""

_LAYOUT_BOX_SCRIPT = """() => {
  const root = document.body || document.documentElement;
  if (!root) return null;
  const rect = root.getBoundingClientRect();
  return { x: rect.x, y: rect.y, width: rect.width, height: rect.height };
}"""


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float


@dataclass
class DebugInfo:
    console_errors: list[str] = field(default_factory=list)
    request_failures: list[dict[str, str]] = field(default_factory=list)
    blocked_requests: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def debug_enabled(config: DeterminismConfig) -> bool:
    return config.debug or os.environ.get("GATE_DEBUG") == "1"


async def prepare_deterministic_page(
    page: Page,
    config: DeterminismConfig | None = None,
    clock: FixedClock | None = None,
) -> Optional[DebugInfo]:
    """Apply animation blocking, time freezing and network filtering, in that order.

    Returns the DebugInfo being filled by the page listeners when debug mode
    is on, otherwise None.
    """
    config = config or DeterminismConfig()
    debug_info: Optional[DebugInfo] = None

    if debug_enabled(config):
        debug_info = DebugInfo()
        _attach_debug_listeners(page, debug_info)

    if config.disable_animations:
        await inject_animation_blocking_css(page)

    if clock is None and config.fixed_instant is not None:
        clock = FixedClock(config.fixed_instant)
    if clock is not None:
        await freeze_time(page, clock)

    if config.block_external_network:
        await block_external_requests(
            page,
            list(config.allowed_domains),
            blocked_log=debug_info.blocked_requests if debug_info else None,
        )

    logger.debug(
        "Deterministic page ready (animations=%s, frozen=%s, network_filter=%s)",
        "off" if config.disable_animations else "on",
        clock is not None,
        config.block_external_network,
    )
    return debug_info


def _attach_debug_listeners(page: Page, debug_info: DebugInfo) -> None:
    def on_console(msg) -> None:
        if msg.type == "error":
            debug_info.console_errors.append(msg.text)

    def on_request_failed(request) -> None:
        debug_info.request_failures.append({
            "url": request.url,
            "error": request.failure or "Unknown error",
        })

    page.on("console", on_console)
    page.on("requestfailed", on_request_failed)


async def inject_animation_blocking_css(page: Page) -> None:
    await page.add_init_script(_STYLE_INIT_SCRIPT % json.dumps(ANIMATION_BLOCKING_CSS))


def build_freeze_time_script(clock: FixedClock) -> str:
    return _FREEZE_TIME_SCRIPT % (clock.epoch_ms(), json.dumps(clock.monotonic_ms()))


async def freeze_time(page: Page, clock: FixedClock) -> None:
    await page.add_init_script(build_freeze_time_script(clock))


async def block_external_requests(
    page: Page,
    allowed_domains: list[str],
    blocked_log: list[str] | None = None,
) -> None:
    """Abort every request whose host is not on the allow-list."""

    async def handler(route: Route) -> None:
        url = route.request.url
        if is_allowed_domain(url, allowed_domains):
            await route.continue_()
            return
        logger.debug("Blocked external request: %s", url)
        if blocked_log is not None:
            blocked_log.append(url)
        await route.abort(BLOCKED_ABORT_REASON)

    await page.route("**/*", handler)


async def get_layout_box(page: Page) -> Optional[BoundingBox]:
    data = await page.evaluate(_LAYOUT_BOX_SCRIPT)
    if not data:
        return None
    return BoundingBox(
        x=data["x"], y=data["y"], width=data["width"], height=data["height"],
    )


def is_layout_stable(
    box1: Optional[BoundingBox],
    box2: Optional[BoundingBox],
    tolerance: float = 1,
) -> bool:
    if box1 is None or box2 is None:
        return False
    changes = (
        abs(box1.x - box2.x),
        abs(box1.y - box2.y),
        abs(box1.width - box2.width),
        abs(box1.height - box2.height),
    )
    return all(change <= tolerance for change in changes)


async def wait_for_layout_stability(
    page: Page,
    stability_ms: int = 300,
    max_attempts: int = 10,
    tolerance: float = 1,
) -> bool:
    """Poll the root element's box until two samples one window apart agree.

    Returns False once ``max_attempts`` windows have elapsed without a stable
    pair; callers decide whether to capture anyway.
    """
    for attempt in range(max(max_attempts, 0)):
        box1 = await get_layout_box(page)
        await page.wait_for_timeout(stability_ms)
        box2 = await get_layout_box(page)
        if is_layout_stable(box1, box2, tolerance):
            logger.debug("Layout stable after %d attempt(s)", attempt + 1)
            return True
    logger.debug("Layout never settled within %d attempts", max_attempts)
    return False


def save_debug_info(debug_info: DebugInfo, screenshot_path: Path, timestamp: str) -> Path:
    """Write debug records next to a capture as ``<name>.debug.json``."""
    out = screenshot_path.with_suffix(".debug.json")
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w") as f:
        json.dump({**debug_info.to_dict(), "timestamp": timestamp}, f, indent=2)
    return out
