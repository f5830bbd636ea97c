"""Gate runner: capture every screen, compare, decide, report."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from playwright.async_api import Error as PlaywrightError, async_playwright

from pixelgate.baselines.store import BaselineStore
from pixelgate.capture.browser import create_deterministic_context, launch_browser
from pixelgate.capture.clock import Clock, SystemClock, iso_timestamp
from pixelgate.capture.deterministic import prepare_deterministic_page
from pixelgate.capture.driver import CaptureDriver, PlaywrightCaptureDriver
from pixelgate.ci.github import detect_github_context, post_or_update_pr_comment
from pixelgate.ci.pr_summary import (
    PRSummaryData,
    compute_run_status,
    compute_worst_similarity,
    format_pr_summary,
    workflow_run_url,
)
from pixelgate.comparison.change_detector import detect_changes
from pixelgate.comparison.diff import compare_images, load_rgba
from pixelgate.comparison.mask_suggester import suggest_masks_for_screen
from pixelgate.comparison.status import evaluate_status
from pixelgate.comparison.thresholds import compute_originality_percent
from pixelgate.errors import BaselineError, CaptureError, ComparisonError, IntegrationError
from pixelgate.models.config import GateConfig
from pixelgate.models.policy import OrgPolicy
from pixelgate.models.result import MaskSuggestion, RunSummary, ScreenResult
from pixelgate.models.screen import ResolvedScreen, ScreenBaseline
from pixelgate.policy.loader import compute_policy_hash, load_org_policy_file, resolve_screen, resolve_screens
from pixelgate.reporter.evidence import EvidencePackResult
from pixelgate.reporter.reporter import Reporter
from pixelgate.url_utils import screen_url

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    summary: RunSummary
    run_dir: Path
    reports: dict[str, str] = field(default_factory=dict)
    evidence: Optional[EvidencePackResult] = None
    comment_id: Optional[int] = None

    def exit_code(self, fail_on_warn: bool = False) -> int:
        if self.summary.status == "FAIL":
            return 1
        if self.summary.status == "WARN" and fail_on_warn:
            return 1
        return 0


def _git(*args: str) -> Optional[str]:
    try:
        result = subprocess.run(["git", *args], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git %s failed: %s", " ".join(args), e)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_revision(env: Mapping[str, str] | None = None) -> tuple[Optional[str], Optional[str]]:
    """Commit SHA and branch, preferring the CI environment over the local checkout."""
    env = os.environ if env is None else env
    sha = env.get("GITHUB_SHA") or _git("rev-parse", "HEAD")
    branch = env.get("GITHUB_HEAD_REF") or env.get("GITHUB_REF_NAME") or _git("rev-parse", "--abbrev-ref", "HEAD")
    return sha, branch


def new_run_id() -> str:
    return f"run_{time.strftime('%Y%m%d-%H%M%S')}_{uuid.uuid4().hex[:6]}"


class GateRunner:
    """Runs the gate over stored baselines.

    ``driver`` is any CaptureDriver; when omitted a Playwright driver is
    opened for the duration of the run.
    """

    def __init__(
        self,
        config: GateConfig,
        driver: CaptureDriver | None = None,
        clock: Clock | None = None,
        root: str | Path = ".",
        env: Mapping[str, str] | None = None,
    ):
        self.config = config
        self.driver = driver
        self.clock = clock or SystemClock()
        self.root = Path(root)
        self.env = os.environ if env is None else env
        self.store = BaselineStore(self.root / config.baselines_dir)
        self.runs_dir = self.root / config.runs_dir

    def load_policy(self) -> Optional[OrgPolicy]:
        return load_org_policy_file(self.root / self.config.policy_path)

    def resolve(self, screen_ids: list[str] | None = None) -> tuple[Optional[OrgPolicy], list[ResolvedScreen]]:
        """Resolve every selected screen up front; a PolicyError here aborts before any capture."""
        policy = self.load_policy()
        screens = self.store.load_screens(screen_ids)
        if not screens:
            raise BaselineError(f"No baselines found in {self.store.baselines_dir}")
        resolved = resolve_screens(screens, policy)
        if self.config.debug:
            resolved = [
                rs.model_copy(update={"determinism": rs.determinism.model_copy(update={"debug": True})})
                for rs in resolved
            ]
        return policy, resolved

    def run(self, screen_ids: list[str] | None = None, base_url: str | None = None) -> RunOutcome:
        return asyncio.run(self.run_async(screen_ids, base_url))

    async def run_async(self, screen_ids: list[str] | None = None, base_url: str | None = None) -> RunOutcome:
        start = time.time()
        base_url = base_url or self.config.base_url
        policy, resolved = self.resolve(screen_ids)

        run_id = new_run_id()
        run_dir = self.runs_dir / run_id
        for sub in ("baselines", "actual", "diff"):
            (run_dir / sub).mkdir(parents=True, exist_ok=True)
        logger.info("=== Gate run %s: %d screen(s) against %s ===", run_id, len(resolved), base_url)

        if self.driver is not None:
            results = await self._run_screens(self.driver, resolved, base_url, run_dir)
        else:
            async with PlaywrightCaptureDriver(self.config.navigation_timeout_ms) as driver:
                results = await self._run_screens(driver, resolved, base_url, run_dir)

        summary = self.build_summary(run_id, results, resolved, policy)
        logger.info(
            "Run complete: %d passed, %d warned, %d failed (%.1fs)",
            summary.passed, summary.warned, summary.failed, time.time() - start,
        )

        reporter = Reporter(self.config)
        reports = reporter.generate_reports(summary, run_dir)
        evidence = reporter.pack(run_dir)
        if evidence is not None:
            reports["evidence"] = str(evidence.path)

        outcome = RunOutcome(summary=summary, run_dir=run_dir, reports=reports, evidence=evidence)
        if self.config.comment_on_pr:
            outcome.comment_id = self.publish_comment(summary)
        return outcome

    async def _run_screens(
        self,
        driver: CaptureDriver,
        resolved: list[ResolvedScreen],
        base_url: str,
        run_dir: Path,
    ) -> list[ScreenResult]:
        semaphore = asyncio.Semaphore(self.config.max_parallel_screens)
        total = len(resolved)

        async def _run_one(index: int, rs: ResolvedScreen) -> ScreenResult:
            async with semaphore:
                logger.info("Checking screen [%d/%d]: %s", index + 1, total, rs.screen_id)
                try:
                    return await asyncio.wait_for(
                        self.check_screen(driver, rs, base_url, run_dir),
                        timeout=self.config.screen_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    logger.error("%s timed out after %ss", rs.screen_id, self.config.screen_timeout_seconds)
                    return self._failed(
                        rs, f"Timed out after {self.config.screen_timeout_seconds}s", "timeout", run_dir,
                    )

        gathered = await asyncio.gather(
            *(_run_one(i, rs) for i, rs in enumerate(resolved)),
            return_exceptions=True,
        )

        results = []
        for rs, outcome in zip(resolved, gathered):
            if isinstance(outcome, asyncio.CancelledError):
                results.append(self._failed(rs, "Screen check was cancelled", "timeout", run_dir))
            elif isinstance(outcome, BaseException):
                logger.error("%s failed unexpectedly: %s", rs.screen_id, outcome)
                results.append(self._failed(rs, str(outcome), "capture", run_dir))
            else:
                results.append(outcome)
        return results

    async def check_screen(
        self,
        driver: CaptureDriver,
        rs: ResolvedScreen,
        base_url: str,
        run_dir: Path,
    ) -> ScreenResult:
        """Capture one screen and compare it against its stored baseline."""
        screen_id = rs.screen_id
        baseline_rel = self._copy_baseline(rs, run_dir)
        actual_rel = f"actual/{screen_id}.png"
        diff_rel = f"diff/{screen_id}.png"

        capture = await driver.capture(base_url, rs, rs.viewport, rs.determinism, run_dir / actual_rel)
        if not capture.success:
            logger.warning("[FAIL] %s: %s", screen_id, capture.error)
            actual = actual_rel if (run_dir / actual_rel).exists() else None
            return self._result(rs, "FAIL", baseline_path=baseline_rel, actual_path=actual,
                                error=capture.error or "Capture failed", error_kind="capture")

        if baseline_rel is None:
            return self._result(rs, "FAIL", actual_path=actual_rel,
                                error=f"Baseline image missing for {screen_id}", error_kind="comparison")

        rect_masks = [m for m in rs.masks if m.type == "rect"]
        try:
            diff = await asyncio.to_thread(
                compare_images,
                run_dir / baseline_rel,
                run_dir / actual_rel,
                run_dir / diff_rel,
                self.config.anti_aliasing_tolerance,
                rect_masks,
            )
        except ComparisonError as e:
            logger.warning("[FAIL] %s: %s", screen_id, e)
            return self._result(rs, "FAIL", baseline_path=baseline_rel, actual_path=actual_rel,
                                error=str(e), error_kind="comparison")

        changes = []
        if diff.diff_pixels > 0:
            changes = await asyncio.to_thread(
                detect_changes,
                load_rgba(run_dir / baseline_rel),
                load_rgba(run_dir / actual_rel),
                diff.diff_mask,
            )

        status = evaluate_status(diff.diff_pixels, diff.diff_pixel_ratio, rs.thresholds, has_masks=bool(rs.masks))
        logger.info("[%s] %s: %d/%d pixels differ", status, screen_id, diff.diff_pixels, diff.total_pixels)
        return self._result(
            rs, status,
            baseline_path=baseline_rel,
            actual_path=actual_rel,
            diff_path=diff_rel,
            diff_pixels=diff.diff_pixels,
            diff_pixel_ratio=diff.diff_pixel_ratio,
            total_pixels=diff.total_pixels,
            originality_percent=compute_originality_percent(diff.diff_pixels, diff.total_pixels),
            changes=changes,
        )

    def _copy_baseline(self, rs: ResolvedScreen, run_dir: Path) -> Optional[str]:
        source = self.store.image_path(rs.screen_id)
        if not source.exists():
            return None
        rel = f"baselines/{rs.screen_id}.png"
        shutil.copy2(source, run_dir / rel)
        return rel

    def _failed(self, rs: ResolvedScreen, error: str, error_kind: str, run_dir: Path) -> ScreenResult:
        baseline_rel = f"baselines/{rs.screen_id}.png"
        actual_rel = f"actual/{rs.screen_id}.png"
        return self._result(
            rs, "FAIL",
            baseline_path=baseline_rel if (run_dir / baseline_rel).exists() else None,
            actual_path=actual_rel if (run_dir / actual_rel).exists() else None,
            error=error, error_kind=error_kind,
        )

    @staticmethod
    def _result(rs: ResolvedScreen, status: str, **fields) -> ScreenResult:
        return ScreenResult(
            screen_id=rs.screen_id,
            name=rs.screen.name,
            url=rs.screen.url,
            status=status,
            thresholds=rs.thresholds,
            tier=rs.tier,
            **fields,
        )

    def build_summary(
        self,
        run_id: str,
        results: list[ScreenResult],
        resolved: list[ResolvedScreen],
        policy: Optional[OrgPolicy],
    ) -> RunSummary:
        passed = sum(1 for r in results if r.status == "PASS")
        warned = sum(1 for r in results if r.status == "WARN")
        failed = sum(1 for r in results if r.status == "FAIL")
        sha, branch = git_revision(self.env)
        return RunSummary(
            run_id=run_id,
            timestamp=iso_timestamp(self.clock),
            sha=sha,
            branch=branch,
            policy_hash=compute_policy_hash(policy),
            total=len(results),
            passed=passed,
            warned=warned,
            failed=failed,
            worst_similarity=compute_worst_similarity(results),
            status=compute_run_status(passed, warned, failed),
            loosening_events=[e for rs in resolved for e in rs.loosening_events],
            results=results,
        )

    def publish_comment(self, summary: RunSummary) -> Optional[int]:
        """Upsert the PR summary comment when running for a pull request.

        Integration errors are logged, not raised: the gate decision stands
        whether or not the comment could be posted.
        """
        context = detect_github_context(self.env)
        if context is None:
            logger.debug("Not running for a pull request; skipping PR comment")
            return None
        if self.config.github_token:
            context = replace(context, token=self.config.github_token)
        if "GITHUB_API_URL" not in self.env:
            context = replace(context, api_url=self.config.github_api_url)
        body = format_pr_summary(PRSummaryData.from_summary(summary, run_url=workflow_run_url(dict(self.env))))
        try:
            comment = post_or_update_pr_comment(context, body)
        except IntegrationError as e:
            logger.error("Could not post PR comment: %s", e)
            return None
        return comment.id


async def capture_baseline(
    config: GateConfig,
    screen: ScreenBaseline,
    store: BaselineStore,
    driver: CaptureDriver,
    base_url: str | None = None,
    policy: Optional[OrgPolicy] = None,
) -> Path:
    """Capture a screen under the same determinism controls and store it as the approved baseline."""
    rs = resolve_screen(screen, policy)
    staging = store.baselines_dir / ".staging" / f"{screen.screen_id}.png"
    staging.parent.mkdir(parents=True, exist_ok=True)
    result = await driver.capture(base_url or config.base_url, rs, rs.viewport, rs.determinism, staging)
    if not result.success:
        raise CaptureError(result.error or f"Capture failed for {screen.screen_id}")
    try:
        store.add_baseline(screen, staging)
    finally:
        staging.unlink(missing_ok=True)
    return store.image_path(screen.screen_id)


async def suggest_masks(
    config: GateConfig,
    screen: ScreenBaseline,
    base_url: str | None = None,
    policy: Optional[OrgPolicy] = None,
    max_suggestions: int = 8,
    reload: bool = False,
) -> list[MaskSuggestion]:
    """Open a screen under determinism controls and look for volatile regions."""
    rs = resolve_screen(screen, policy)
    url = screen_url(base_url or config.base_url, screen.url)
    async with async_playwright() as p:
        browser = await launch_browser(p, rs.viewport.browser)
        try:
            context = await create_deterministic_context(browser, rs.viewport, rs.determinism)
            page = await context.new_page()
            page.set_default_navigation_timeout(config.navigation_timeout_ms)
            await prepare_deterministic_page(page, rs.determinism)
            try:
                await page.goto(url, wait_until=rs.determinism.wait_until)
            except PlaywrightError as e:
                raise CaptureError(f"Navigation to {screen.url} failed: {e}") from e
            return await suggest_masks_for_screen(
                page, screen.screen_id,
                max_suggestions=max_suggestions,
                reload=reload,
                layout_stability_ms=rs.determinism.layout_stability_ms,
                route=screen.url,
            )
        finally:
            await browser.close()
