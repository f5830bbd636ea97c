"""Tests for evidence pack assembly and offline verification."""

import json
import zipfile
from unittest.mock import patch

import pytest

from pixelgate.errors import EvidenceError
from pixelgate.models.config import GateConfig
from pixelgate.models.policy import LooseningEvent
from pixelgate.models.result import DetectedChange
from pixelgate.reporter.evidence import build_evidence_pack, collect_manifest
from pixelgate.reporter.reporter import Reporter
from pixelgate.reporter.verify import verify_evidence


@pytest.fixture
def reported_run(run_summary, run_dir):
    Reporter(GateConfig()).generate_reports(run_summary, run_dir)
    return run_dir


class TestCollectManifest:
    def test_categories(self, reported_run):
        manifest = collect_manifest(reported_run, "run_test")
        assert set(manifest.baselines) == {"baselines/home.png", "baselines/checkout.png"}
        assert set(manifest.actuals) == {"actual/home.png", "actual/checkout.png"}
        assert set(manifest.diffs) == {"diff/home.png", "diff/checkout.png"}
        assert set(manifest.summary) == {"summary.json", "changes.json", "report.html", "DECISION.md"}
        assert manifest.file_count == 10


class TestBuildEvidencePack:
    """Tests for the zip archive."""

    def test_manifest_first(self, reported_run):
        result = build_evidence_pack(reported_run)
        assert result.path == reported_run.parent / "run_test-evidence.zip"
        with zipfile.ZipFile(result.path) as zf:
            names = zf.namelist()
            assert names[0] == "manifest.json"
            manifest = json.loads(zf.read("manifest.json"))
        assert manifest["run_id"] == "run_test"
        assert set(names[1:]) == set(result.manifest.entries())

    def test_manifest_written_to_run_dir(self, reported_run):
        build_evidence_pack(reported_run)
        assert (reported_run / "manifest.json").exists()
        assert (reported_run / "DECISION.md").exists()

    def test_custom_output(self, reported_run, tmp_path):
        out = tmp_path / "out" / "evidence.zip"
        assert build_evidence_pack(reported_run, out).path == out
        assert out.exists()

    def test_missing_summary(self, run_dir):
        with pytest.raises(EvidenceError, match="Summary file not found"):
            build_evidence_pack(run_dir)

    def test_no_partial_archive_on_failure(self, reported_run):
        with patch("pixelgate.reporter.evidence.hash_bytes", return_value="tampered"):
            with pytest.raises(EvidenceError, match="changed while packing"):
                build_evidence_pack(reported_run)
        leftovers = [p.name for p in reported_run.parent.iterdir() if p.suffix in (".zip", ".tmp")]
        assert leftovers == []


class TestVerifyEvidence:
    """Tests for offline verification of packs and run directories."""

    def test_pack_round_trip_passes(self, reported_run):
        result = build_evidence_pack(reported_run)
        report = verify_evidence(result.path)
        assert report.passed, report.errors
        assert report.errors == []

    def test_directory_passes(self, reported_run):
        build_evidence_pack(reported_run)
        assert verify_evidence(reported_run).passed

    def test_deleted_file_reported_once(self, reported_run):
        build_evidence_pack(reported_run)
        (reported_run / "diff" / "checkout.png").unlink()
        report = verify_evidence(reported_run)
        assert len(report.errors) == 1
        assert report.errors[0].kind == "missing"
        assert report.errors[0].path == "diff/checkout.png"

    def test_deleted_file_in_zip(self, reported_run, tmp_path):
        result = build_evidence_pack(reported_run)
        trimmed = tmp_path / "trimmed.zip"
        with zipfile.ZipFile(result.path) as src, zipfile.ZipFile(trimmed, "w") as dst:
            for name in src.namelist():
                if name != "actual/checkout.png":
                    dst.writestr(name, src.read(name))
        report = verify_evidence(trimmed)
        assert [(e.kind, e.path) for e in report.errors] == [("missing", "actual/checkout.png")]

    def test_tampered_file(self, reported_run):
        build_evidence_pack(reported_run)
        (reported_run / "baselines" / "home.png").write_bytes(b"tampered")
        report = verify_evidence(reported_run)
        assert [e.kind for e in report.errors] == ["hash_mismatch"]

    def test_external_url_flagged(self, reported_run):
        build_evidence_pack(reported_run)
        report_html = reported_run / "report.html"
        report_html.write_text(report_html.read_text() + '<script src="https://cdn.example.com/x.js"></script>')
        (reported_run / "manifest.json").unlink()
        report = verify_evidence(reported_run)
        assert any(e.kind == "external_url" for e in report.errors)

    @pytest.mark.parametrize("url", [
        "http://localhost.evil.com/x.png",
        "http://127.0.0.1.nip.io/",
        "https://localhostcdn.example.com/a.js",
    ])
    def test_lookalike_local_hosts_flagged(self, reported_run, url):
        report_html = reported_run / "report.html"
        report_html.write_text(report_html.read_text() + f'<img src="{url}"/>')
        report = verify_evidence(reported_run)
        assert [e.kind for e in report.errors] == ["external_url"]
        assert url in report.errors[0].message

    def test_loopback_urls_allowed(self, reported_run):
        report_html = reported_run / "report.html"
        report_html.write_text(
            report_html.read_text()
            + "<p>http://localhost:5173/checkout http://127.0.0.1:8080/ http://[::1]:3000/x</p>"
        )
        assert verify_evidence(reported_run).passed

    def test_urls_in_free_text_do_not_break_verification(self, run_summary, failed_result, run_dir):
        linked = failed_result.model_copy(update={
            "name": "Checkout (see https://wiki.example.com/checkout)",
            "changes": [DetectedChange(
                type="text", description="Text changed near http://cdn.example.com/logo", confidence=0.8,
            )],
        })
        summary = run_summary.model_copy(update={
            "results": [run_summary.results[0], linked],
            "loosening_events": [LooseningEvent(
                screen_id="checkout", field="fail.diff_pixels", requested=900, baseline=600,
                applied=True, justification="approved in https://jira.example.com/browse/GATE-12",
            )],
        })
        Reporter(GateConfig()).generate_reports(summary, run_dir)
        build_evidence_pack(run_dir)
        report = verify_evidence(run_dir)
        assert report.passed, report.errors
        assert "example.com/browse" not in (run_dir / "report.html").read_text()

    def test_missing_manifest_is_warning(self, reported_run):
        assert verify_evidence(reported_run).passed
        assert any("manifest.json" in w for w in verify_evidence(reported_run).warnings)

    def test_invalid_archive(self, tmp_path):
        bad = tmp_path / "bad.zip"
        bad.write_bytes(b"not a zip")
        report = verify_evidence(bad)
        assert report.errors[0].kind == "malformed"

    def test_missing_path(self, tmp_path):
        report = verify_evidence(tmp_path / "nope.zip")
        assert report.errors[0].kind == "missing"
