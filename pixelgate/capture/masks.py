"""Capture-time mask application."""

from __future__ import annotations

import json
import logging

from playwright.async_api import Page

from pixelgate.models.config import Mask

logger = logging.getLogger(__name__)

MASK_ATTRIBUTE = "data-gate-mask"

_HIDE_SELECTOR_SCRIPT = """(selector) => {
  const nodes = document.querySelectorAll(selector);
  nodes.forEach((el) => { el.style.setProperty('opacity', '0', 'important'); });
  return nodes.length;
}"""

_OVERLAY_SCRIPT = """(rect) => {
  const el = document.createElement('div');
  el.setAttribute('%s', 'rect');
  Object.assign(el.style, {
    position: 'absolute',
    left: rect.x + 'px',
    top: rect.y + 'px',
    width: rect.width + 'px',
    height: rect.height + 'px',
    background: '#000',
    zIndex: '2147483647',
    pointerEvents: 'none',
  });
  document.documentElement.appendChild(el);
}""" % MASK_ATTRIBUTE


async def apply_masks(page: Page, masks: list[Mask]) -> int:
    """Hide CSS-masked elements and paint rect overlays.

    Rect masks are also excluded from the pixel comparison, so the overlay only
    keeps the stored images readable. Returns the number of elements hidden.
    """
    hidden = 0
    for mask in masks:
        if mask.type == "css":
            count = await page.evaluate(_HIDE_SELECTOR_SCRIPT, mask.selector)
            if not count:
                logger.warning("Mask selector matched nothing: %s", mask.selector)
            hidden += count or 0
        else:
            await page.evaluate(_OVERLAY_SCRIPT, {
                "x": mask.x, "y": mask.y, "width": mask.width, "height": mask.height,
            })
    if masks:
        logger.debug("Applied %d mask(s): %s", len(masks), json.dumps(
            [m.selector or f"rect({m.x},{m.y},{m.width},{m.height})" for m in masks]
        ))
    return hidden
