"""Tests for volatile-element detection and mask suggestions."""

import pytest

from pixelgate.comparison.mask_suggester import (
    ElementSnapshot,
    VolatileElement,
    convert_to_mask,
    detect_container_volatility,
    detect_volatile_elements,
    detect_volatile_text,
    generate_mask_suggestions,
    is_safe_to_mask,
    rank_selector,
    suggest_masks_for_screen,
)
from pixelgate.models.result import MaskSuggestion


def _el(selector, text="", x=0, y=0, w=50, h=20, **kwargs) -> ElementSnapshot:
    return ElementSnapshot(selector=selector, text=text, bbox={"x": x, "y": y, "width": w, "height": h}, **kwargs)


class TestDetectVolatileElements:
    def test_text_change(self):
        a = [_el("span.clock", "12:00")]
        b = [_el("span.clock", "12:01")]
        volatile = detect_volatile_elements(a, b)
        assert len(volatile) == 1
        assert volatile[0].changes == ["text_changed"]

    def test_small_jitter_ignored(self):
        a = [_el("div.card", x=10)]
        b = [_el("div.card", x=12)]
        assert detect_volatile_elements(a, b) == []

    def test_move_beyond_tolerance(self):
        a = [_el("div.card", x=10)]
        b = [_el("div.card", x=13)]
        assert detect_volatile_elements(a, b)[0].changes == ["bbox_changed"]

    def test_appeared_and_disappeared(self):
        volatile = detect_volatile_elements([_el("div.old")], [_el("div.new")])
        kinds = sorted(v.changes[0] for v in volatile)
        assert kinds == ["appeared", "disappeared"]

    def test_visibility(self):
        a = [_el("div.toast", visible=True)]
        b = [_el("div.toast", visible=False)]
        assert detect_volatile_elements(a, b)[0].changes == ["visibility_changed"]


class TestDetectVolatileText:
    @pytest.mark.parametrize("text,kind", [
        ("Updated 10:45 AM", "looks_like_time"),
        ("2024-01-15", "looks_like_date"),
        ("5 minutes ago", "looks_like_relative_time"),
        ("1,204 views", "looks_like_counter"),
    ])
    def test_patterns(self, text, kind):
        found = detect_volatile_text([_el("span", text)])
        assert found[0].changes == [kind]

    def test_plain_text_ignored(self):
        assert detect_volatile_text([_el("h1", "Welcome back")]) == []

    def test_already_seen_skipped(self):
        assert detect_volatile_text([_el("span", "10:45")], already={"span"}) == []


class TestRankSelector:
    def test_test_id_preferred(self):
        ranked = rank_selector(_el("div > span", test_id="clock", id="clock-id", aria_label="Clock"))
        assert ranked.selector == '[data-testid="clock"]'
        assert ranked.confidence == 0.95
        assert ranked.type == "css"

    def test_stable_id(self):
        assert rank_selector(_el("div", id="last-updated")).selector == "#last-updated"

    def test_hashed_id_skipped(self):
        ranked = rank_selector(_el("div > span", id="a8f3k29dkq1", aria_label="Time"))
        assert ranked.selector == '[aria-label="Time"]'
        assert ranked.confidence == 0.85

    def test_fallback_to_rect(self):
        ranked = rank_selector(_el("div > span:nth-of-type(2)"))
        assert ranked.type == "rect"
        assert ranked.confidence == 0.5


class TestIsSafeToMask:
    def test_error_text_unsafe(self):
        assert is_safe_to_mask(_el("div.alert", "Error: payment declined")) is False

    def test_structural_unsafe(self):
        assert is_safe_to_mask(_el("body")) is False

    def test_huge_element_unsafe(self):
        assert is_safe_to_mask(_el("div.hero", w=1280, h=600)) is False

    def test_small_element_safe(self):
        assert is_safe_to_mask(_el("span.clock", "12:00")) is True


class TestSuggestions:
    def test_container_cluster(self):
        volatile = [
            VolatileElement(_el(f"li:nth-of-type({i})", x=0, y=i * 25), None, None, ["text_changed"])
            for i in range(6)
        ]
        containers = detect_container_volatility(volatile)
        assert len(containers) == 1
        assert containers[0].type == "rect"
        assert len(containers[0].members) == 6
        assert containers[0].bbox["height"] == 5 * 25 + 20

    def test_small_cluster_ignored(self):
        volatile = [VolatileElement(_el(f"li{i}", y=i * 25), None, None, ["text_changed"]) for i in range(3)]
        assert detect_container_volatility(volatile) == []

    def test_generate_dedupes_and_sorts(self):
        clock = _el("span", "12:00", test_id="clock")
        volatile = [
            VolatileElement(clock, clock, clock, ["text_changed"]),
            VolatileElement(clock, clock, clock, ["looks_like_time"]),
            VolatileElement(_el("div > p"), None, None, ["appeared"]),
            VolatileElement(_el("div.err", "Error 500"), None, None, ["appeared"]),
        ]
        suggestions = generate_mask_suggestions(volatile, "home", route="/")
        assert [s.selector for s in suggestions] == ['[data-testid="clock"]', "div > p"]
        assert suggestions[0].screen_id == "home"
        assert suggestions[0].route == "/"
        assert suggestions[0].examples == ["12:00"]

    def test_max_suggestions(self):
        volatile = [
            VolatileElement(_el(f"#item-{chr(97 + i)}", x=i * 500), None, None, ["appeared"])
            for i in range(5)
        ]
        assert len(generate_mask_suggestions(volatile, "home", max_suggestions=2)) == 2

    def test_convert_css(self):
        mask = convert_to_mask(MaskSuggestion(selector="#clock", reason="r", confidence=0.9))
        assert mask.type == "css"
        assert mask.selector == "#clock"

    def test_convert_rect(self):
        suggestion = MaskSuggestion(
            selector="div > p", type="rect", reason="r", confidence=0.5,
            bbox={"x": 10.4, "y": 20.6, "width": 30, "height": 40},
        )
        mask = convert_to_mask(suggestion)
        assert (mask.type, mask.x, mask.y, mask.width, mask.height) == ("rect", 10, 21, 30, 40)


class TestSuggestMasksForScreen:
    @pytest.mark.asyncio
    async def test_two_snapshots_compared(self, mock_page):
        snap_a = [{"selector": "span.time", "text": "12:00:01", "bbox": {"x": 0, "y": 0, "width": 50, "height": 20}}]
        snap_b = [{"selector": "span.time", "text": "12:00:02", "bbox": {"x": 0, "y": 0, "width": 50, "height": 20}}]
        layout = {"x": 0, "y": 0, "width": 1280, "height": 720}
        responses = iter([snap_a, layout, layout, snap_b, []])
        mock_page.evaluate.side_effect = lambda *args: next(responses)

        suggestions = await suggest_masks_for_screen(mock_page, "home", layout_stability_ms=1)

        assert len(suggestions) == 1
        assert suggestions[0].selector == "span.time"
        assert suggestions[0].type == "rect"
        mock_page.reload.assert_not_awaited()
