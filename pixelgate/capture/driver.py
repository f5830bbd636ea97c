"""Screen capture driver built on Playwright."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright

from pixelgate.models.config import DeterminismConfig, ViewportConfig
from pixelgate.models.screen import ResolvedScreen
from pixelgate.url_utils import screen_url

from .browser import create_deterministic_context, launch_browser
from .clock import FixedClock, SystemClock, iso_timestamp
from .deterministic import (
    DebugInfo,
    prepare_deterministic_page,
    save_debug_info,
    wait_for_layout_stability,
)
from .masks import apply_masks

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    success: bool
    error: Optional[str] = None
    debug_info: Optional[DebugInfo] = None
    layout_stable: bool = True
    screenshot_path: Optional[Path] = None


class CaptureDriver(Protocol):
    async def capture(
        self,
        base_url: str,
        screen: ResolvedScreen,
        viewport: ViewportConfig,
        determinism: DeterminismConfig,
        output_path: Path,
    ) -> CaptureResult: ...


class PlaywrightCaptureDriver:
    """Captures screens in isolated contexts of a shared browser per engine.

    Use as an async context manager so the browsers are closed once the run
    has finished with them.
    """

    def __init__(self, navigation_timeout_ms: int = 30000, headless: bool = True):
        self.navigation_timeout_ms = navigation_timeout_ms
        self.headless = headless
        self._playwright_cm = None
        self._playwright: Playwright | None = None
        self._browsers: dict[str, Browser] = {}

    async def __aenter__(self) -> "PlaywrightCaptureDriver":
        self._playwright_cm = async_playwright()
        self._playwright = await self._playwright_cm.__aenter__()
        return self

    async def __aexit__(self, *exc) -> None:
        for browser in self._browsers.values():
            await browser.close()
        self._browsers.clear()
        if self._playwright_cm is not None:
            await self._playwright_cm.__aexit__(*exc)
        self._playwright_cm = None
        self._playwright = None

    async def _browser(self, name: str) -> Browser:
        if self._playwright is None:
            raise RuntimeError("PlaywrightCaptureDriver used outside 'async with'")
        if name not in self._browsers:
            logger.debug("Launching %s for capture...", name)
            self._browsers[name] = await launch_browser(self._playwright, name, self.headless)
        return self._browsers[name]

    async def capture(
        self,
        base_url: str,
        screen: ResolvedScreen,
        viewport: ViewportConfig,
        determinism: DeterminismConfig,
        output_path: Path,
    ) -> CaptureResult:
        url = screen_url(base_url, screen.screen.url)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        browser = await self._browser(viewport.browser)
        context = await create_deterministic_context(browser, viewport, determinism)
        clock = FixedClock(determinism.fixed_instant) if determinism.fixed_instant else None
        debug_info: DebugInfo | None = None
        try:
            page = await context.new_page()
            page.set_default_navigation_timeout(self.navigation_timeout_ms)
            debug_info = await prepare_deterministic_page(page, determinism, clock)

            try:
                logger.debug("Navigating to %s (wait_until=%s)", url, determinism.wait_until)
                await page.goto(url, wait_until=determinism.wait_until)
                if screen.screen.wait_for_selector:
                    await page.wait_for_selector(
                        screen.screen.wait_for_selector, timeout=self.navigation_timeout_ms,
                    )
            except PlaywrightError as e:
                logger.warning("Navigation failed for %s: %s", screen.screen_id, e)
                await self._best_effort_screenshot(page, output_path)
                return CaptureResult(
                    success=False,
                    error=f"Navigation to {screen.screen.url} failed: {e}",
                    debug_info=debug_info,
                    screenshot_path=output_path if output_path.exists() else None,
                )

            stable = await wait_for_layout_stability(
                page,
                stability_ms=determinism.layout_stability_ms,
                max_attempts=determinism.layout_stability_attempts,
                tolerance=determinism.layout_tolerance_px,
            )
            if not stable:
                if determinism.screenshot_after_settled_only:
                    await self._best_effort_screenshot(page, output_path)
                    return CaptureResult(
                        success=False,
                        error="Layout did not stabilize before capture",
                        debug_info=debug_info,
                        layout_stable=False,
                        screenshot_path=output_path if output_path.exists() else None,
                    )
                logger.warning("Capturing %s with unstable layout", screen.screen_id)

            await apply_masks(page, screen.masks)
            await page.screenshot(path=str(output_path), full_page=False, animations="disabled")
            logger.debug("Captured %s -> %s", screen.screen_id, output_path)
            return CaptureResult(
                success=True, debug_info=debug_info,
                layout_stable=stable, screenshot_path=output_path,
            )
        except PlaywrightError as e:
            return CaptureResult(success=False, error=str(e), debug_info=debug_info)
        finally:
            if debug_info is not None:
                save_debug_info(debug_info, output_path, iso_timestamp(SystemClock()))
            await context.close()

    @staticmethod
    async def _best_effort_screenshot(page, output_path: Path) -> None:
        try:
            await page.screenshot(path=str(output_path), full_page=False)
        except PlaywrightError as e:
            logger.debug("Best-effort screenshot failed: %s", e)