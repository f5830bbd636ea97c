"""Browser launch and deterministic context creation for Playwright."""

from __future__ import annotations

from playwright.async_api import Browser, BrowserContext, Playwright

from pixelgate.models.config import DeterminismConfig, ViewportConfig

_CHROMIUM_ARGS = [
    "--font-render-hinting=none",
    "--disable-lcd-text",
    "--disable-skia-runtime-opts",
    "--force-color-profile=srgb",
    "--hide-scrollbars",
]


async def launch_browser(playwright: Playwright, name: str = "chromium", headless: bool = True) -> Browser:
    """Launch the named browser engine with rendering flags that keep output stable."""
    browser_type = getattr(playwright, name)
    kwargs: dict = {"headless": headless}
    if name == "chromium":
        kwargs["args"] = list(_CHROMIUM_ARGS)
    return await browser_type.launch(**kwargs)


def context_options(viewport: ViewportConfig, determinism: DeterminismConfig) -> dict:
    return {
        "viewport": {"width": viewport.width, "height": viewport.height},
        "device_scale_factor": viewport.device_scale_factor,
        "locale": determinism.locale,
        "timezone_id": determinism.timezone_id,
        "color_scheme": determinism.color_scheme,
        "reduced_motion": determinism.reduce_motion,
        "service_workers": "block",
        "extra_http_headers": {
            "Accept-Language": determinism.locale,
        },
    }


async def create_deterministic_context(
    browser: Browser,
    viewport: ViewportConfig,
    determinism: DeterminismConfig,
) -> BrowserContext:
    """Create an isolated context pinned to the screen's viewport, locale and timezone."""
    return await browser.new_context(**context_options(viewport, determinism))
