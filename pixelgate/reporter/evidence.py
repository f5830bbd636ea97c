"""Evidence pack assembly.

A pack is a zip archive whose first entry is ``manifest.json``: every other
file in the archive, grouped by category, with its SHA-256. The same manifest
is written into the run directory so the directory verifies on its own.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path

from pixelgate.errors import EvidenceError
from pixelgate.hashing import hash_bytes, hash_file
from pixelgate.models.evidence import EvidenceManifest
from pixelgate.models.result import RunSummary

from .json_report import load_summary

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
SUMMARY_NAME = "summary.json"
CHANGES_NAME = "changes.json"
REPORT_NAME = "report.html"
DECISION_NAME = "DECISION.md"

# category -> run-directory subfolder
IMAGE_CATEGORIES = {"baselines": "baselines", "actuals": "actual", "diffs": "diff"}
SUMMARY_FILES = (SUMMARY_NAME, CHANGES_NAME, REPORT_NAME, DECISION_NAME)


@dataclass
class EvidencePackResult:
    path: Path
    manifest: EvidenceManifest

    @property
    def file_count(self) -> int:
        return self.manifest.file_count


def generate_decision_md(summary: RunSummary) -> str:
    """Human-readable record of why the gate decided what it did."""
    lines = ["# Gate Run Decision", "", "## Run Metadata", ""]
    lines.append(f"- **Run ID**: {summary.run_id}")
    lines.append(f"- **Timestamp**: {summary.timestamp}")
    if summary.sha:
        lines.append(f"- **Git SHA**: {summary.sha}")
    if summary.branch:
        lines.append(f"- **Git Branch**: {summary.branch}")
    lines.append(f"- **Policy Hash**: {summary.policy_hash}")
    lines.append(f"- **Decision**: {summary.status}")
    lines += ["", "## Thresholds", "", "Per-screen thresholds applied (see table below)", ""]

    lines += [
        "## Screen Results",
        "",
        "| Screen ID | Route | Tier | Diff Pixels | Warn / Fail | Originality % | Status |",
        "|-----------|-------|------|-------------|-------------|---------------|--------|",
    ]
    for r in summary.results:
        bounds = f"{r.thresholds.warn.diff_pixels} / {r.thresholds.fail.diff_pixels}"
        lines.append(
            f"| {r.screen_id} | {r.url} | {r.tier.value} | {r.diff_pixels} | {bounds} "
            f"| {r.originality_percent:.2f}% | {r.status} |"
        )
    lines.append("")

    if summary.loosening_occurred:
        lines += ["## Threshold Loosening", ""]
        for e in summary.loosening_events:
            outcome = "applied" if e.applied else f"rejected ({e.reason})"
            justification = f" Justification: {e.justification}" if e.justification else ""
            lines.append(f"- **{e.screen_id}** `{e.field}` {e.baseline} -> {e.requested}: {outcome}.{justification}")
        lines.append("")

    errors = [r for r in summary.results if r.error]
    if errors:
        lines += ["## Notes", "", "### Errors", ""]
        for r in errors:
            lines.append(f"- **{r.screen_id}**: {r.error}")
        lines.append("")

    return "\n".join(lines)


def write_decision_md(summary: RunSummary, run_dir: Path) -> Path:
    path = run_dir / DECISION_NAME
    path.write_text(generate_decision_md(summary), encoding="utf-8")
    return path


def collect_manifest(run_dir: Path, run_id: str | None = None) -> EvidenceManifest:
    """Hash every evidence file in the run directory into a manifest."""
    manifest = EvidenceManifest(
        run_id=run_id or run_dir.name,
        created_at=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
    )
    for category, folder in IMAGE_CATEGORIES.items():
        entries = getattr(manifest, category)
        base = run_dir / folder
        if not base.is_dir():
            continue
        for p in sorted(base.rglob("*")):
            if p.is_file():
                entries[p.relative_to(run_dir).as_posix()] = hash_file(p)
    for name in SUMMARY_FILES:
        p = run_dir / name
        if p.is_file():
            manifest.summary[name] = hash_file(p)
    return manifest


def write_manifest(manifest: EvidenceManifest, run_dir: Path) -> Path:
    path = run_dir / MANIFEST_NAME
    with open(path, "w") as f:
        f.write(_manifest_json(manifest))
    return path


def _manifest_json(manifest: EvidenceManifest) -> str:
    return json.dumps(manifest.model_dump(mode="json"), indent=2, sort_keys=True)


def build_evidence_pack(run_dir: Path, output_path: Path | None = None) -> EvidencePackResult:
    """Assemble ``run_dir`` into a zip; either the complete archive exists or nothing does.

    Raises EvidenceError when summary.json is missing or a file changes while
    it is being packed.
    """
    run_dir = Path(run_dir)
    summary_path = run_dir / SUMMARY_NAME
    if not summary_path.exists():
        raise EvidenceError(f"Summary file not found: {summary_path}")
    output_path = Path(output_path) if output_path else run_dir.parent / f"{run_dir.name}-evidence.zip"

    summary = load_summary(summary_path)
    write_decision_md(summary, run_dir)
    manifest = collect_manifest(run_dir, summary.run_id)
    write_manifest(manifest, run_dir)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=output_path.parent, suffix=".zip.tmp")
    try:
        with os.fdopen(fd, "wb") as raw, zipfile.ZipFile(raw, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(MANIFEST_NAME, _manifest_json(manifest))
            for rel_path, expected in manifest.entries().items():
                data = (run_dir / rel_path).read_bytes()
                if hash_bytes(data) != expected:
                    raise EvidenceError(f"File changed while packing: {rel_path}")
                zf.writestr(rel_path, data)
        os.replace(tmp, output_path)
    except OSError as e:
        _discard(tmp)
        raise EvidenceError(f"Failed to write evidence pack: {e}") from e
    except BaseException:
        _discard(tmp)
        raise

    logger.info("Evidence pack written to %s (%d files)", output_path, manifest.file_count)
    return EvidencePackResult(path=output_path, manifest=manifest)


def _discard(tmp: str) -> None:
    try:
        os.unlink(tmp)
    except FileNotFoundError:
        pass
