"""Offline verification of an evidence bundle (a run directory or a packed zip)."""

from __future__ import annotations

import json
import logging
import re
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from pydantic import ValidationError

from pixelgate.hashing import hash_file
from pixelgate.models.evidence import EvidenceManifest, VerificationIssue, VerificationReport
from pixelgate.models.result import RunSummary

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"https?://[^\s\"'<>)]+", re.I)
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}
LOCAL_REF_RE = re.compile(r"""(?:src|href)\s*=\s*["']([^"']+)["']""", re.I)
CHECKED_EXTENSIONS = {".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".svg"}
HTML_FILES = ("report.html", "index.html")


class _Collector:
    """Accumulates issues; a missing path is reported once however many checks hit it."""

    def __init__(self):
        self.report = VerificationReport()
        self._missing: set[str] = set()

    def missing(self, path: str, message: str) -> None:
        if path in self._missing:
            return
        self._missing.add(path)
        self.report.errors.append(VerificationIssue(kind="missing", path=path, message=message))

    def error(self, kind: str, path: str, message: str) -> None:
        self.report.errors.append(VerificationIssue(kind=kind, path=path, message=message))

    def warn(self, message: str) -> None:
        self.report.warnings.append(message)


def _normalize(rel: str) -> str:
    rel = rel.replace("\\", "/")
    while rel.startswith("./"):
        rel = rel[2:]
    return PurePosixPath(rel).as_posix()


def _is_external(url: str) -> bool:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return True
    return host not in LOCAL_HOSTS


def _check_html(root: Path, out: _Collector) -> None:
    for name in HTML_FILES:
        page = root / name
        if not page.is_file():
            continue
        text = page.read_text(encoding="utf-8", errors="replace")
        for match in URL_RE.finditer(text):
            if not _is_external(match.group(0)):
                continue
            out.error("external_url", name, f"External URL in {name}: {match.group(0)}")
        for ref in LOCAL_REF_RE.findall(text):
            if ref.startswith(("data:", "#", "mailto:", "javascript:")) or "://" in ref:
                continue
            target = ref.split("?", 1)[0].split("#", 1)[0]
            if PurePosixPath(target).suffix.lower() not in CHECKED_EXTENSIONS:
                continue
            rel = _normalize(target)
            if not (root / rel).is_file():
                out.missing(rel, f"{name} references missing file {rel}")


def _check_failed_screens(root: Path, out: _Collector) -> None:
    summary_path = root / "summary.json"
    if not summary_path.is_file():
        out.missing("summary.json", "summary.json not found")
        return
    try:
        with open(summary_path) as f:
            summary = RunSummary.model_validate(json.load(f))
    except (json.JSONDecodeError, ValidationError) as e:
        out.error("malformed", "summary.json", f"summary.json is malformed: {e}")
        return

    for r in summary.results:
        if r.status != "FAIL":
            continue
        for label, rel in (("baseline", r.baseline_path), ("actual", r.actual_path), ("diff", r.diff_path)):
            if rel is None:
                # Capture errors legitimately leave no actual or diff image.
                if r.error is None:
                    out.error("missing", "", f"{r.screen_id}: failed screen has no {label} image recorded")
                continue
            rel = _normalize(rel)
            if not (root / rel).is_file():
                out.missing(rel, f"{r.screen_id}: {label} image missing ({rel})")


def _check_manifest(root: Path, out: _Collector) -> None:
    manifest_path = root / "manifest.json"
    if not manifest_path.is_file():
        out.warn("manifest.json not found; hash checks skipped")
        return
    try:
        with open(manifest_path) as f:
            manifest = EvidenceManifest.model_validate(json.load(f))
    except (json.JSONDecodeError, ValidationError) as e:
        out.error("malformed", "manifest.json", f"manifest.json is malformed: {e}")
        return

    for rel, expected in manifest.entries().items():
        rel = _normalize(rel)
        p = root / rel
        if not p.is_file():
            out.missing(rel, f"Manifest entry missing: {rel}")
        elif hash_file(p) != expected:
            out.error("hash_mismatch", rel, f"Hash mismatch: {rel}")


def verify_directory(root: Path) -> VerificationReport:
    out = _Collector()
    _check_manifest(root, out)
    _check_html(root, out)
    _check_failed_screens(root, out)
    return out.report


def _safe_extract(zf: zipfile.ZipFile, dest: Path) -> None:
    dest_resolved = dest.resolve()
    for member in zf.namelist():
        target = (dest / member).resolve()
        if dest_resolved not in target.parents and target != dest_resolved:
            raise zipfile.BadZipFile(f"Unsafe path in archive: {member}")
    zf.extractall(dest)


def verify_evidence(path: str | Path) -> VerificationReport:
    """Check a bundle is complete, untampered and renders offline."""
    path = Path(path)
    if path.is_dir():
        return verify_directory(path)
    if not path.is_file():
        report = VerificationReport()
        report.errors.append(VerificationIssue(kind="missing", path=str(path), message=f"Not found: {path}"))
        return report

    with tempfile.TemporaryDirectory(prefix="gate-verify-") as tmp:
        try:
            with zipfile.ZipFile(path) as zf:
                _safe_extract(zf, Path(tmp))
        except zipfile.BadZipFile as e:
            report = VerificationReport()
            report.errors.append(VerificationIssue(kind="malformed", path=path.name, message=f"Invalid archive: {e}"))
            return report
        logger.debug("Extracted %s to %s", path, tmp)
        return verify_directory(Path(tmp))
