"""JSON report output."""

from __future__ import annotations

import json
from pathlib import Path

from pixelgate.models.result import RunSummary


def write_json_summary(summary: RunSummary, output_path: Path) -> Path:
    """Write the machine-readable run summary (``summary.json``)."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(summary.model_dump(mode="json"), f, indent=2, sort_keys=True)
    return output_path


def write_changes(summary: RunSummary, output_path: Path) -> Path:
    """Write detected changes keyed by screen id (``changes.json``)."""
    changes = {
        r.screen_id: [c.model_dump(mode="json") for c in r.changes]
        for r in summary.results
    }
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(changes, f, indent=2, sort_keys=True)
    return output_path


def load_summary(path: Path) -> RunSummary:
    with open(path) as f:
        return RunSummary.model_validate(json.load(f))
