"""Tests for CLI commands."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from pixelgate.baselines.store import BaselineStore
from pixelgate.cli import cli
from pixelgate.errors import PolicyError
from pixelgate.models.config import GateConfig, Mask
from pixelgate.models.result import MaskSuggestion
from pixelgate.reporter.reporter import Reporter
from pixelgate.runner import RunOutcome

runner = CliRunner()


@pytest.fixture
def config_path(gate_config, tmp_path) -> str:
    path = tmp_path / "gate-config.json"
    gate_config.save(path)
    return str(path)


@pytest.fixture
def store(gate_config) -> BaselineStore:
    return BaselineStore(gate_config.baselines_dir)


def _add(config_path, image, *extra):
    return runner.invoke(cli, ["baseline", "add", "--name", "Home Page", "--url", "/",
                               "--image", str(image), "--config", config_path, *extra])


class TestBaselineCommands:
    def test_add_derives_id(self, config_path, store, white_png):
        result = _add(config_path, white_png, "--tag", "critical", "--mask", ".clock")
        assert result.exit_code == 0, result.output
        assert "Added baseline" in result.output
        screen = store.load_screen("home-page")
        assert screen.tags == ["critical"]
        assert screen.masks == [Mask(type="css", selector=".clock")]

    def test_list(self, config_path, white_png):
        _add(config_path, white_png)
        result = runner.invoke(cli, ["baseline", "list", "--config", config_path])
        assert result.exit_code == 0
        assert "home-page" in result.output

    def test_list_empty(self, config_path):
        result = runner.invoke(cli, ["baseline", "list", "--config", config_path])
        assert "No baselines stored" in result.output

    def test_validate(self, config_path, store, white_png, changed_png):
        _add(config_path, white_png)
        result = runner.invoke(cli, ["baseline", "validate", "--check-hash", "--config", config_path])
        assert result.exit_code == 0
        assert "Baselines valid" in result.output

        store.image_path("home-page").write_bytes(changed_png.read_bytes())
        result = runner.invoke(cli, ["baseline", "validate", "--check-hash", "--config", config_path])
        assert result.exit_code == 1
        assert "hash mismatch" in result.output

    def test_add_rejects_unsafe_id(self, config_path, gate_config, white_png):
        result = _add(config_path, white_png, "--id", "../escape")
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Invalid screen id" in result.output
        assert not (Path(gate_config.baselines_dir).parent / "escape").exists()

    def test_capture_needs_name_and_url(self, config_path):
        result = runner.invoke(cli, ["baseline", "capture", "--name", "Home", "--config", config_path])
        assert result.exit_code != 0
        assert "--name and --url" in result.output


class TestPolicyCommand:
    def test_missing_policy_is_valid(self, config_path):
        result = runner.invoke(cli, ["policy", "validate", "--config", config_path])
        assert result.exit_code == 0
        assert "Policy valid" in result.output

    def test_invalid_policy(self, config_path, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"schema_version": 3}))
        result = runner.invoke(cli, ["policy", "validate", "--path", str(path), "--config", config_path])
        assert result.exit_code == 1
        assert "Failed to load policy" in result.output


class TestConfigErrors:
    """A broken config file is reported, not raised."""

    @pytest.mark.parametrize("content", ["{not json", json.dumps({"screen_timeout_seconds": "soon"})])
    @pytest.mark.parametrize("command", [
        ["run"],
        ["baseline", "list"],
        ["baseline", "validate"],
        ["policy", "validate"],
    ])
    def test_malformed_config(self, tmp_path, command, content):
        path = tmp_path / "gate-config.json"
        path.write_text(content)
        result = runner.invoke(cli, [*command, "--config", str(path)])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Invalid config" in result.output


class TestRunCommand:
    """Tests for exit codes of the gate run."""

    def _invoke(self, config_path, summary, tmp_path, *args):
        outcome = RunOutcome(summary=summary, run_dir=tmp_path)
        with patch("pixelgate.cli.GateRunner") as runner_cls:
            runner_cls.return_value.run.return_value = outcome
            result = runner.invoke(cli, ["run", "--config", config_path, *args])
        return result, runner_cls

    def test_fail_exits_one(self, config_path, run_summary, tmp_path):
        result, _ = self._invoke(config_path, run_summary, tmp_path)
        assert result.exit_code == 1
        assert "checkout" in result.output

    def test_pass_exits_zero(self, config_path, run_summary, tmp_path):
        summary = run_summary.model_copy(update={"status": "PASS", "failed": 0, "passed": 2})
        result, _ = self._invoke(config_path, summary, tmp_path)
        assert result.exit_code == 0

    def test_warn_respects_flag(self, config_path, run_summary, tmp_path):
        summary = run_summary.model_copy(update={"status": "WARN", "failed": 0, "warned": 1})
        assert self._invoke(config_path, summary, tmp_path)[0].exit_code == 0
        assert self._invoke(config_path, summary, tmp_path, "--fail-on-warn")[0].exit_code == 1

    def test_screen_selection_and_no_comment(self, config_path, run_summary, tmp_path):
        _, runner_cls = self._invoke(config_path, run_summary, tmp_path, "-s", "home", "--no-comment")
        cfg = runner_cls.call_args.args[0]
        assert cfg.comment_on_pr is False
        runner_cls.return_value.run.assert_called_once_with(["home"], None)

    def test_gate_error_reported(self, config_path):
        with patch("pixelgate.cli.GateRunner") as runner_cls:
            runner_cls.return_value.run.side_effect = PolicyError("mask coverage exceeds limit")
            result = runner.invoke(cli, ["run", "--config", config_path])
        assert result.exit_code == 1
        assert "mask coverage exceeds limit" in result.output


class TestEvidenceCommands:
    def test_pack_then_verify(self, run_summary, run_dir, tmp_path):
        Reporter(GateConfig()).generate_reports(run_summary, run_dir)
        out = tmp_path / "evidence.zip"
        result = runner.invoke(cli, ["pack", str(run_dir), "--output", str(out)])
        assert result.exit_code == 0, result.output
        assert "Evidence pack" in result.output

        result = runner.invoke(cli, ["verify", str(out)])
        assert result.exit_code == 0
        assert "Evidence verified" in result.output

    def test_pack_without_summary(self, run_dir):
        result = runner.invoke(cli, ["pack", str(run_dir)])
        assert result.exit_code == 1
        assert "Summary file not found" in result.output

    def test_verify_detects_missing_file(self, run_summary, run_dir):
        Reporter(GateConfig()).generate_reports(run_summary, run_dir)
        (run_dir / "diff" / "checkout.png").unlink()
        result = runner.invoke(cli, ["verify", str(run_dir)])
        assert result.exit_code == 1
        assert "Verification failed: 1 error(s)" in result.output


class TestMasksCommand:
    def test_apply_high_confidence(self, config_path, store, white_png):
        _add(config_path, white_png)
        suggestions = [
            MaskSuggestion(selector=".clock", reason="Text changed", confidence=0.9),
            MaskSuggestion(selector=".ad", reason="Attribute changed", confidence=0.5),
        ]
        with patch("pixelgate.cli.suggest_masks", new=AsyncMock(return_value=suggestions)):
            result = runner.invoke(cli, ["masks", "suggest", "home-page", "--apply", "--config", config_path])
        assert result.exit_code == 0, result.output
        assert "Applied 1 mask(s)" in result.output
        assert store.load_screen("home-page").masks == [Mask(type="css", selector=".clock")]

    def test_nothing_found(self, config_path, white_png):
        _add(config_path, white_png)
        with patch("pixelgate.cli.suggest_masks", new=AsyncMock(return_value=[])):
            result = runner.invoke(cli, ["masks", "suggest", "home-page", "--config", config_path])
        assert "No volatile regions found" in result.output

    def test_unknown_screen(self, config_path):
        result = runner.invoke(cli, ["masks", "suggest", "nope", "--config", config_path])
        assert result.exit_code == 1
