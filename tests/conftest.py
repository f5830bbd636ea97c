"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from pixelgate.models.config import GateConfig, ViewportConfig
from pixelgate.models.policy import ScreenThresholds, ThresholdBand, Tier
from pixelgate.models.result import DetectedChange, RunSummary, ScreenResult
from pixelgate.models.screen import ScreenBaseline
from tests.imaging import solid_image, write_png


# ============================================================================
# Image Fixtures
# ============================================================================


@pytest.fixture
def white_png(tmp_path: Path) -> Path:
    return write_png(tmp_path / "white.png", solid_image())


@pytest.fixture
def changed_png(tmp_path: Path) -> Path:
    """White image with a 10x10 black block at (20, 30)."""
    arr = solid_image()
    arr[30:40, 20:30] = (0, 0, 0, 255)
    return write_png(tmp_path / "changed.png", arr)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def viewport() -> ViewportConfig:
    return ViewportConfig(width=1280, height=720)


@pytest.fixture
def gate_config(tmp_path: Path) -> GateConfig:
    """Config rooted in the temp dir with CI side effects disabled."""
    return GateConfig(
        base_url="http://localhost:5173",
        baselines_dir=str(tmp_path / "baselines"),
        runs_dir=str(tmp_path / "runs"),
        policy_path=str(tmp_path / ".gate" / "policy.json"),
        comment_on_pr=False,
        screen_timeout_seconds=5,
    )


@pytest.fixture
def screen() -> ScreenBaseline:
    return ScreenBaseline(screen_id="home", name="Home", url="/")


@pytest.fixture
def standard_thresholds() -> ScreenThresholds:
    return ScreenThresholds(
        warn=ThresholdBand(diff_pixel_ratio=0.0002, diff_pixels=250),
        fail=ThresholdBand(diff_pixel_ratio=0.0005, diff_pixels=600),
    )


# ============================================================================
# Result Fixtures
# ============================================================================


@pytest.fixture
def screen_result(standard_thresholds: ScreenThresholds) -> ScreenResult:
    return ScreenResult(
        screen_id="home",
        name="Home",
        url="/",
        status="PASS",
        diff_pixels=0,
        total_pixels=10000,
        originality_percent=100.0,
        thresholds=standard_thresholds,
        tier=Tier.STANDARD,
        baseline_path="baselines/home.png",
        actual_path="actual/home.png",
        diff_path="diff/home.png",
    )


@pytest.fixture
def failed_result(standard_thresholds: ScreenThresholds) -> ScreenResult:
    return ScreenResult(
        screen_id="checkout",
        name="Checkout",
        url="/checkout",
        status="FAIL",
        diff_pixels=1200,
        diff_pixel_ratio=0.12,
        total_pixels=10000,
        originality_percent=88.0,
        thresholds=standard_thresholds,
        baseline_path="baselines/checkout.png",
        actual_path="actual/checkout.png",
        diff_path="diff/checkout.png",
        changes=[DetectedChange(
            type="color", description="Color changed in 10x10px area at (20, 30)", confidence=0.95,
        )],
    )


@pytest.fixture
def run_summary(screen_result: ScreenResult, failed_result: ScreenResult) -> RunSummary:
    return RunSummary(
        run_id="run_test",
        timestamp="2024-01-15T12:00:00Z",
        sha="0123456789abcdef",
        branch="feature/x",
        policy_hash="abcdef0123456789",
        total=2,
        passed=1,
        failed=1,
        worst_similarity=0.88,
        status="FAIL",
        results=[screen_result, failed_result],
    )


@pytest.fixture
def run_dir(tmp_path: Path, run_summary: RunSummary) -> Path:
    """Run directory with every image the summary references."""
    d = tmp_path / "runs" / run_summary.run_id
    for r in run_summary.results:
        for rel in (r.baseline_path, r.actual_path, r.diff_path):
            write_png(d / rel, solid_image(20, 20))
    return d


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_page() -> MagicMock:
    """Playwright page double: sync ``on``/``set_default_*``, async everything else."""
    page = MagicMock()
    page.add_init_script = AsyncMock()
    page.route = AsyncMock()
    page.evaluate = AsyncMock()
    page.goto = AsyncMock()
    page.reload = AsyncMock()
    page.screenshot = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.locator.return_value.count = AsyncMock(return_value=0)
    return page
