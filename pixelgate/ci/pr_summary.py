"""Pull-request summary markdown."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pixelgate.models.result import RunStatus, RunSummary, ScreenResult

STATUS_EMOJI = {"PASS": "✅", "WARN": "⚠️", "FAIL": "❌"}
STATUS_TEXT = {"PASS": "Passed", "WARN": "Warning", "FAIL": "Failed"}

EVIDENCE_ARTIFACT_NAME = "gate-evidence"


@dataclass(frozen=True)
class PRSummaryData:
    status: RunStatus
    total_screens: int
    passed_screens: int = 0
    warned_screens: int = 0
    failed_screens: int = 0
    worst_similarity: float = 1.0
    run_id: Optional[str] = None
    commit_sha: Optional[str] = None
    run_url: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: RunSummary, run_url: str | None = None) -> "PRSummaryData":
        return cls(
            status=summary.status,
            total_screens=summary.total,
            passed_screens=summary.passed,
            warned_screens=summary.warned,
            failed_screens=summary.failed,
            worst_similarity=summary.worst_similarity,
            run_id=summary.run_id,
            commit_sha=summary.sha,
            run_url=run_url,
        )


def format_pr_summary(data: PRSummaryData) -> str:
    """Deterministic markdown: the same data always yields the same text."""
    lines = [f"## {STATUS_EMOJI[data.status]} Visual Regression Gate: {STATUS_TEXT[data.status]}", ""]

    if data.run_id or data.commit_sha:
        lines += ["### Run Information", ""]
        if data.run_id:
            lines.append(f"- **Run ID**: `{data.run_id}`")
        if data.commit_sha:
            lines.append(f"- **Commit**: `{data.commit_sha[:7]}`")
        lines.append("")

    lines += ["### Summary", ""]
    lines.append(f"- **Status**: {data.status}")
    lines.append(f"- **Total Screens**: {data.total_screens}")
    if data.passed_screens > 0:
        lines.append(f"- **Passed**: {data.passed_screens}")
    if data.warned_screens > 0:
        lines.append(f"- **Warned**: {data.warned_screens}")
    if data.failed_screens > 0:
        lines.append(f"- **Failed**: {data.failed_screens}")
    if data.worst_similarity < 1.0:
        lines.append(f"- **Worst Similarity**: {data.worst_similarity * 100:.2f}%")

    lines += [
        "",
        "### How to Download Evidence",
        "",
        "The evidence bundle includes side-by-side comparison images and an offline HTML report:",
        "",
        "1. Go to the **Checks** tab on this PR",
        "2. Click on the workflow run that executed the visual tests",
        "3. Scroll to the **Artifacts** section at the bottom",
        f"4. Download the `{EVIDENCE_ARTIFACT_NAME}` artifact (ZIP file)",
        "5. Unzip and open `report.html` in a browser",
        "",
        "The report works offline and shows:",
        "- Run summary with commit SHA and status counts",
        "- Per-screen comparisons: Baseline / Current / Diff overlay",
        "- Originality % and detailed pixel metrics",
        "",
    ]
    if data.run_url:
        lines += [f"📎 [View workflow run and download artifacts]({data.run_url})", ""]

    return "\n".join(lines)


def compute_run_status(passed: int, warned: int, failed: int) -> RunStatus:
    if failed > 0:
        return "FAIL"
    if warned > 0:
        return "WARN"
    return "PASS"


def compute_worst_similarity(results: list[ScreenResult]) -> float:
    """1 minus the largest diff ratio among compared screens; 1.0 when nothing was compared."""
    ratios = [r.diff_pixel_ratio for r in results if r.total_pixels > 0]
    if not ratios:
        return 1.0
    return 1.0 - max(ratios)


def workflow_run_url(env: dict[str, str]) -> Optional[str]:
    server = env.get("GITHUB_SERVER_URL")
    repository = env.get("GITHUB_REPOSITORY")
    run_id = env.get("GITHUB_RUN_ID")
    if server and repository and run_id:
        return f"{server}/{repository}/actions/runs/{run_id}"
    return None
