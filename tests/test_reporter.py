"""Tests for JSON, HTML and decision reports."""

import json

from pixelgate.models.config import GateConfig
from pixelgate.models.policy import LooseningEvent
from pixelgate.reporter.evidence import generate_decision_md
from pixelgate.reporter.html_report import display_path, generate_html_report, strip_origins
from pixelgate.reporter.json_report import load_summary, write_changes, write_json_summary
from pixelgate.reporter.reporter import Reporter


class TestJsonReport:
    def test_summary_round_trip(self, run_summary, tmp_path):
        path = write_json_summary(run_summary, tmp_path / "summary.json")
        assert load_summary(path) == run_summary

    def test_changes_keyed_by_screen(self, run_summary, tmp_path):
        path = write_changes(run_summary, tmp_path / "changes.json")
        data = json.loads(path.read_text())
        assert data["home"] == []
        assert data["checkout"][0]["type"] == "color"


class TestHtmlReport:
    """Tests for the offline HTML report."""

    def test_display_path_drops_origin(self):
        assert display_path("http://localhost:5173/checkout?step=2") == "/checkout?step=2"
        assert display_path("/about") == "/about"

    def test_strip_origins(self):
        assert strip_origins("Navigation to http://localhost:5173/x failed") == "Navigation to /x failed"

    def test_small_images_inlined(self, run_summary, run_dir):
        path = generate_html_report(run_summary, run_dir)
        text = path.read_text()
        assert "data:image/png;base64," in text
        assert "http://" not in text
        assert "https://" not in text

    def test_large_images_linked(self, run_summary, run_dir):
        path = generate_html_report(run_summary, run_dir, inline_max_bytes=1)
        text = path.read_text()
        assert 'src="actual/checkout.png"' in text
        assert "data:image/png" not in text

    def test_screens_and_changes_listed(self, run_summary, run_dir):
        text = generate_html_report(run_summary, run_dir).read_text()
        assert "screen-checkout" in text
        assert "Color changed in 10x10px area" in text

    def test_loosening_justification_origin_dropped(self, run_summary, run_dir):
        summary = run_summary.model_copy(update={"loosening_events": [LooseningEvent(
            screen_id="home", field="warn.diff_pixels", requested=300, baseline=250,
            applied=True, justification="approved in https://jira.example.com/browse/GATE-12",
        )]})
        text = generate_html_report(summary, run_dir).read_text()
        assert "approved in /browse/GATE-12" in text
        assert "https://" not in text

    def test_query_string_origin_dropped(self, run_summary, run_dir, screen_result):
        redirected = screen_result.model_copy(update={"url": "/login?next=https://sso.example.com/cb"})
        summary = run_summary.model_copy(update={"results": [redirected]})
        text = generate_html_report(summary, run_dir).read_text()
        assert "sso.example.com" not in text

    def test_missing_image_not_referenced(self, run_summary, run_dir):
        (run_dir / "diff" / "checkout.png").unlink()
        text = generate_html_report(run_summary, run_dir, inline_max_bytes=1).read_text()
        assert "diff/checkout.png" not in text


class TestDecisionMarkdown:
    def test_sections(self, run_summary):
        md = generate_decision_md(run_summary)
        assert md.startswith("# Gate Run Decision")
        assert "- **Decision**: FAIL" in md
        assert "- **Policy Hash**: abcdef0123456789" in md
        assert "| checkout | /checkout | standard | 1200 | 250 / 600 | 88.00% | FAIL |" in md
        assert "## Threshold Loosening" not in md

    def test_loosening_listed(self, run_summary):
        summary = run_summary.model_copy(update={"loosening_events": [LooseningEvent(
            screen_id="home", field="fail.diff_pixels", requested=800, baseline=599,
            applied=True, justification="Map tiles",
        )]})
        md = generate_decision_md(summary)
        assert "## Threshold Loosening" in md
        assert "Justification: Map tiles" in md

    def test_errors_listed(self, run_summary, failed_result):
        errored = failed_result.model_copy(update={"error": "Layout did not stabilize before capture"})
        md = generate_decision_md(run_summary.model_copy(update={"results": [errored]}))
        assert "### Errors" in md
        assert "- **checkout**: Layout did not stabilize before capture" in md


class TestReporter:
    def test_generates_every_format(self, run_summary, run_dir):
        reports = Reporter(GateConfig()).generate_reports(run_summary, run_dir)
        assert set(reports) == {"json", "changes", "html", "decision"}
        for path in reports.values():
            assert (run_dir / path.split("/")[-1]).exists()

    def test_pack_disabled(self, run_summary, run_dir):
        reporter = Reporter(GateConfig(create_evidence_pack=False))
        reporter.generate_reports(run_summary, run_dir)
        assert reporter.pack(run_dir) is None
