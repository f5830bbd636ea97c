"""Report generation orchestration."""

from __future__ import annotations

import logging
from pathlib import Path

from pixelgate.models.config import GateConfig
from pixelgate.models.result import RunSummary

from .evidence import CHANGES_NAME, REPORT_NAME, SUMMARY_NAME, EvidencePackResult, build_evidence_pack, write_decision_md
from .html_report import generate_html_report
from .json_report import write_changes, write_json_summary

logger = logging.getLogger(__name__)


class Reporter:
    """Writes every report format for a finished run into its run directory."""

    def __init__(self, config: GateConfig):
        self.config = config

    def generate_reports(self, summary: RunSummary, run_dir: Path) -> dict[str, str]:
        """Generate all report files. Returns format -> file path."""
        run_dir.mkdir(parents=True, exist_ok=True)
        generated = {}
        logger.debug("Report output directory: %s", run_dir)

        generated["json"] = str(write_json_summary(summary, run_dir / SUMMARY_NAME))
        generated["changes"] = str(write_changes(summary, run_dir / CHANGES_NAME))

        logger.debug("Generating HTML report...")
        path = generate_html_report(
            summary, run_dir, run_dir / REPORT_NAME,
            inline_max_bytes=self.config.inline_image_max_bytes,
        )
        generated["html"] = str(path)
        logger.info("HTML report: %s", path)

        generated["decision"] = str(write_decision_md(summary, run_dir))
        return generated

    def pack(self, run_dir: Path, output_path: Path | None = None) -> EvidencePackResult | None:
        if not self.config.create_evidence_pack:
            logger.debug("Evidence pack disabled by config")
            return None
        return build_evidence_pack(run_dir, output_path)
