"""Tests for the determinism controls applied to capture pages."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pixelgate.capture.clock import FixedClock, SystemClock, iso_timestamp
from pixelgate.capture.deterministic import (
    ANIMATION_BLOCKING_CSS,
    BLOCKED_ABORT_REASON,
    BoundingBox,
    DebugInfo,
    block_external_requests,
    build_freeze_time_script,
    is_layout_stable,
    prepare_deterministic_page,
    save_debug_info,
    wait_for_layout_stability,
)
from pixelgate.models.config import DeterminismConfig

INSTANT = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def _route(url: str) -> MagicMock:
    route = MagicMock()
    route.request.url = url
    route.continue_ = AsyncMock()
    route.abort = AsyncMock()
    return route


class TestIsLayoutStable:
    """Tests for comparing two layout samples."""

    BOX = BoundingBox(x=0, y=0, width=1280, height=2000)

    def test_identical_boxes_stable(self):
        assert is_layout_stable(self.BOX, self.BOX) is True

    def test_within_tolerance_stable(self):
        moved = BoundingBox(x=1, y=0, width=1280, height=2001)
        assert is_layout_stable(self.BOX, moved) is True

    def test_beyond_tolerance_unstable(self):
        grown = BoundingBox(x=0, y=0, width=1280, height=2002)
        assert is_layout_stable(self.BOX, grown) is False

    def test_custom_tolerance(self):
        grown = BoundingBox(x=0, y=0, width=1280, height=2002)
        assert is_layout_stable(self.BOX, grown, tolerance=2) is True

    def test_missing_sample_unstable(self):
        assert is_layout_stable(None, self.BOX) is False
        assert is_layout_stable(self.BOX, None) is False
        assert is_layout_stable(None, None) is False


class TestWaitForLayoutStability:
    @pytest.mark.asyncio
    async def test_stable_on_first_attempt(self, mock_page):
        mock_page.evaluate.return_value = {"x": 0, "y": 0, "width": 1280, "height": 720}
        assert await wait_for_layout_stability(mock_page, stability_ms=10) is True
        mock_page.wait_for_timeout.assert_awaited_once_with(10)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, mock_page):
        heights = iter(range(0, 10000, 50))
        mock_page.evaluate.side_effect = lambda *_: {"x": 0, "y": 0, "width": 1280, "height": next(heights)}
        assert await wait_for_layout_stability(mock_page, stability_ms=10, max_attempts=3) is False
        assert mock_page.evaluate.await_count == 6

    @pytest.mark.asyncio
    async def test_missing_root_never_stable(self, mock_page):
        mock_page.evaluate.return_value = None
        assert await wait_for_layout_stability(mock_page, stability_ms=1, max_attempts=2) is False


class TestPrepareDeterministicPage:
    """Tests for the order and selection of page controls."""

    @pytest.mark.asyncio
    async def test_all_controls_applied_by_default(self, mock_page):
        with patch.dict("os.environ", {}, clear=True):
            debug_info = await prepare_deterministic_page(mock_page, DeterminismConfig())

        assert debug_info is None
        scripts = [c.args[0] for c in mock_page.add_init_script.await_args_list]
        assert len(scripts) == 2
        assert json.dumps(ANIMATION_BLOCKING_CSS) in scripts[0]
        assert "FrozenDate" in scripts[1]
        mock_page.route.assert_awaited_once()
        assert mock_page.route.await_args.args[0] == "**/*"

    @pytest.mark.asyncio
    async def test_controls_can_be_disabled(self, mock_page):
        config = DeterminismConfig(disable_animations=False, block_external_network=False, fixed_instant=None)
        with patch.dict("os.environ", {}, clear=True):
            await prepare_deterministic_page(mock_page, config)
        mock_page.add_init_script.assert_not_awaited()
        mock_page.route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_injected_clock_used(self, mock_page):
        clock = FixedClock(datetime(2030, 6, 1, tzinfo=timezone.utc))
        config = DeterminismConfig(disable_animations=False, block_external_network=False)
        await prepare_deterministic_page(mock_page, config, clock)
        script = mock_page.add_init_script.await_args.args[0]
        assert str(clock.epoch_ms()) in script

    @pytest.mark.asyncio
    async def test_debug_mode_attaches_listeners(self, mock_page):
        debug_info = await prepare_deterministic_page(mock_page, DeterminismConfig(debug=True))
        assert isinstance(debug_info, DebugInfo)
        events = [c.args[0] for c in mock_page.on.call_args_list]
        assert "console" in events
        assert "requestfailed" in events

    @pytest.mark.asyncio
    async def test_debug_mode_from_environment(self, mock_page):
        with patch.dict("os.environ", {"GATE_DEBUG": "1"}):
            debug_info = await prepare_deterministic_page(mock_page, DeterminismConfig())
        assert debug_info is not None


class TestBlockExternalRequests:
    """Tests for the network allow-list route handler."""

    async def _handler(self, mock_page, blocked_log=None):
        await block_external_requests(mock_page, ["localhost", "127.0.0.1"], blocked_log)
        return mock_page.route.await_args.args[1]

    @pytest.mark.asyncio
    async def test_allowed_request_continues(self, mock_page):
        handler = await self._handler(mock_page)
        route = _route("http://localhost:5173/app.js")
        await handler(route)
        route.continue_.assert_awaited_once()
        route.abort.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_external_request_aborted(self, mock_page):
        blocked = []
        handler = await self._handler(mock_page, blocked)
        route = _route("https://www.google-analytics.com/collect")
        await handler(route)
        route.abort.assert_awaited_once_with(BLOCKED_ABORT_REASON)
        route.continue_.assert_not_awaited()
        assert blocked == ["https://www.google-analytics.com/collect"]

    @pytest.mark.asyncio
    async def test_lookalike_host_aborted(self, mock_page):
        handler = await self._handler(mock_page)
        route = _route("http://notlocalhost.com/")
        await handler(route)
        route.abort.assert_awaited_once_with("blockedbyclient")


class TestClock:
    def test_fixed_clock_never_advances(self):
        clock = FixedClock(INSTANT, monotonic_offset_ms=42.0)
        assert clock.now() == clock.now() == INSTANT
        assert clock.monotonic_ms() == 42.0

    def test_fixed_clock_epoch(self):
        assert FixedClock(INSTANT).epoch_ms() == 1705320000000

    def test_naive_instant_treated_as_utc(self):
        assert FixedClock(datetime(2024, 1, 15, 12, 0, 0)).epoch_ms() == 1705320000000

    def test_iso_timestamp(self):
        assert iso_timestamp(FixedClock(INSTANT)) == "2024-01-15T12:00:00Z"

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo is timezone.utc

    def test_freeze_script_embeds_instant(self):
        script = build_freeze_time_script(FixedClock(INSTANT))
        assert "1705320000000" in script


class TestSaveDebugInfo:
    def test_writes_next_to_screenshot(self, tmp_path):
        info = DebugInfo(console_errors=["boom"], blocked_requests=["https://cdn.example.com/x.js"])
        out = save_debug_info(info, tmp_path / "actual" / "home.png", "2024-01-15T12:00:00Z")
        assert out == tmp_path / "actual" / "home.debug.json"
        data = json.loads(out.read_text())
        assert data["console_errors"] == ["boom"]
        assert data["blocked_requests"] == ["https://cdn.example.com/x.js"]
        assert data["timestamp"] == "2024-01-15T12:00:00Z"
