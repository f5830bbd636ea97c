"""CLI entry point for the visual regression gate."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pixelgate.baselines.store import BaselineStore
from pixelgate.capture.driver import PlaywrightCaptureDriver
from pixelgate.comparison.mask_suggester import APPLY_CONFIDENCE, convert_to_mask
from pixelgate.errors import ConfigError, GateError
from pixelgate.models.config import GateConfig, Mask
from pixelgate.models.screen import ScreenBaseline
from pixelgate.policy.loader import load_org_policy_file, validate_policy
from pixelgate.reporter.evidence import build_evidence_pack
from pixelgate.reporter.verify import verify_evidence
from pixelgate.runner import GateRunner, capture_baseline, suggest_masks
from pixelgate.url_utils import screen_id_from_name

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "gate-config.json"
STATUS_STYLE = {"PASS": "green", "WARN": "yellow", "FAIL": "red"}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_config(path: str) -> GateConfig:
    if not Path(path).exists():
        logger.debug("No config at %s, using defaults", path)
        return GateConfig()
    try:
        return GateConfig.load(path)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e


def handle_errors(func):
    """Report gate failures as a red one-liner and exit 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except GateError as e:
            console.print(str(e), style="red", markup=False)
            sys.exit(1)

    return wrapper


config_option = click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Deterministic visual regression gate for CI"""
    setup_logging(verbose)


@cli.command()
@click.option("--base-url", "-u", prompt="Base URL", help="URL of the app under test")
def init(base_url: str) -> None:
    """Create a default configuration file."""
    config_path = Path(DEFAULT_CONFIG)
    if config_path.exists():
        if not click.confirm(f"{DEFAULT_CONFIG} already exists. Overwrite?"):
            return

    cfg = GateConfig(base_url=base_url)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nAdd a baseline, then run the gate:")
    console.print('  [blue]pixelgate baseline capture --name "Home" --url /[/blue]')
    console.print("  [blue]pixelgate run[/blue]")


@cli.command()
@config_option
@click.option("--screen", "-s", "screens", multiple=True, help="Only check these screen ids")
@click.option("--base-url", "-u", default=None, help="Override the configured base URL")
@click.option("--fail-on-warn", is_flag=True, help="Exit non-zero when any screen warns")
@click.option("--no-comment", is_flag=True, help="Skip the pull request comment")
@handle_errors
def run(config: str, screens: tuple[str, ...], base_url: str | None, fail_on_warn: bool, no_comment: bool) -> None:
    """Capture every screen, compare against baselines and decide."""
    cfg = load_config(config)
    if no_comment:
        cfg = cfg.model_copy(update={"comment_on_pr": False})

    outcome = GateRunner(cfg).run(list(screens) or None, base_url)
    summary = outcome.summary

    table = Table(title=f"Gate Run {summary.run_id}")
    table.add_column("Screen", style="bold")
    table.add_column("Tier")
    table.add_column("Diff Pixels", justify="right")
    table.add_column("Warn / Fail", justify="right")
    table.add_column("Status")
    for r in summary.results:
        style = STATUS_STYLE[r.status]
        table.add_row(
            r.screen_id,
            r.tier.value,
            str(r.diff_pixels),
            f"{r.thresholds.warn.diff_pixels} / {r.thresholds.fail.diff_pixels}",
            f"[{style}]{r.status}[/{style}]",
        )
    console.print(table)

    for r in summary.results:
        if r.error:
            console.print(f"  [red]{r.screen_id}:[/red] {r.error}")
    for fmt, path in outcome.reports.items():
        console.print(f"  {fmt.upper()}: [blue]{path}[/blue]")

    style = STATUS_STYLE[summary.status]
    console.print(
        f"\n[bold {style}]{summary.status}[/bold {style}] "
        f"{summary.passed} passed, {summary.warned} warned, {summary.failed} failed"
    )
    sys.exit(outcome.exit_code(fail_on_warn or cfg.fail_on_warn))


@cli.command()
@click.argument("run_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", default=None, help="Zip path (default: <run_dir>-evidence.zip)")
@handle_errors
def pack(run_dir: str, output: str | None) -> None:
    """Assemble a run directory into an evidence zip."""
    result = build_evidence_pack(Path(run_dir), Path(output) if output else None)
    console.print(f"[green]Evidence pack:[/green] {result.path} ({result.file_count} files)")


@cli.command()
@click.argument("path", type=click.Path(exists=True))
@handle_errors
def verify(path: str) -> None:
    """Check an evidence zip or run directory is complete and offline-viewable."""
    report = verify_evidence(path)
    for warning in report.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for issue in report.errors:
        console.print(f"[red]{issue.kind}:[/red] {issue.message}")
    if not report.passed:
        console.print(f"[red]Verification failed: {len(report.errors)} error(s)[/red]")
        sys.exit(1)
    console.print("[green]Evidence verified[/green]")


@cli.group()
def baseline() -> None:
    """Manage approved baseline screenshots."""
    pass


def _store(cfg: GateConfig) -> BaselineStore:
    return BaselineStore(Path(cfg.baselines_dir))


def _new_screen(name: str, url: str, tags: tuple[str, ...], mask_selectors: tuple[str, ...],
                screen_id: str | None) -> ScreenBaseline:
    return ScreenBaseline(
        screen_id=screen_id or screen_id_from_name(name),
        name=name,
        url=url,
        tags=list(tags),
        masks=[Mask(type="css", selector=s) for s in mask_selectors],
    )


@baseline.command("add")
@click.option("--name", "-n", required=True, help="Screen name")
@click.option("--url", required=True, help="Route relative to the base URL")
@click.option("--image", "-i", required=True, type=click.Path(exists=True, dir_okay=False), help="Approved PNG")
@click.option("--id", "screen_id", default=None, help="Screen id (default: derived from the name)")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag; the first one decides the tier")
@click.option("--mask", "-m", "masks", multiple=True, help="CSS selector to mask")
@config_option
@handle_errors
def baseline_add(name: str, url: str, image: str, screen_id: str | None,
                 tags: tuple[str, ...], masks: tuple[str, ...], config: str) -> None:
    """Register an existing screenshot as a baseline."""
    cfg = load_config(config)
    screen = _new_screen(name, url, tags, masks, screen_id)
    entry = _store(cfg).add_baseline(screen, Path(image))
    console.print(f"[green]Added baseline:[/green] {entry.screen_id} ({entry.hash[:12]})")


@baseline.command("capture")
@click.option("--name", "-n", default=None, help="Name of a new screen to capture")
@click.option("--url", default=None, help="Route of the new screen")
@click.option("--id", "screen_id", default=None, help="Screen id (default: derived from the name)")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag for a new screen")
@click.option("--mask", "-m", "masks", multiple=True, help="CSS selector to mask on a new screen")
@click.option("--screen", "-s", "screens", multiple=True, help="Re-capture existing screen ids")
@click.option("--base-url", "-u", default=None, help="Override the configured base URL")
@config_option
@handle_errors
def baseline_capture(name: str | None, url: str | None, screen_id: str | None, tags: tuple[str, ...],
                     masks: tuple[str, ...], screens: tuple[str, ...], base_url: str | None, config: str) -> None:
    """Capture baselines from the running app.

    With --name/--url a new screen is created; otherwise the listed (or all)
    stored screens are re-captured.
    """
    cfg = load_config(config)
    store = _store(cfg)
    if name or url:
        if not (name and url):
            raise click.UsageError("--name and --url must be given together")
        targets = [_new_screen(name, url, tags, masks, screen_id)]
    else:
        targets = store.load_screens(list(screens) or None)
    if not targets:
        console.print("[yellow]No screens to capture[/yellow]")
        return

    policy = load_org_policy_file(Path(cfg.policy_path))

    async def _capture_all() -> list[Path]:
        async with PlaywrightCaptureDriver(cfg.navigation_timeout_ms) as driver:
            return [
                await capture_baseline(cfg, screen, store, driver, base_url, policy)
                for screen in targets
            ]

    for path in asyncio.run(_capture_all()):
        console.print(f"[green]Captured:[/green] {path}")


@baseline.command("list")
@config_option
@handle_errors
def baseline_list(config: str) -> None:
    """List stored baselines."""
    cfg = load_config(config)
    manifest = _store(cfg).load()
    if not manifest.baselines:
        console.print("[yellow]No baselines stored[/yellow]")
        return

    table = Table(title="Baselines")
    table.add_column("Screen", style="bold")
    table.add_column("Route")
    table.add_column("Tags")
    table.add_column("Hash")
    table.add_column("Captured")
    for entry in manifest.baselines:
        table.add_row(entry.screen_id, entry.url, ", ".join(entry.tags), entry.hash[:12], entry.captured_at)
    console.print(table)


@baseline.command("validate")
@click.option("--check-hash", is_flag=True, help="Re-hash every baseline image")
@config_option
@handle_errors
def baseline_validate(check_hash: bool, config: str) -> None:
    """Check the baseline store for missing or inconsistent entries."""
    cfg = load_config(config)
    result = _store(cfg).validate(check_hash=check_hash)
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for error in result.errors:
        console.print(f"[red]error:[/red] {error}")
    if not result.valid:
        sys.exit(1)
    console.print("[green]Baselines valid[/green]")


@cli.group()
def masks() -> None:
    """Find regions that should be masked."""
    pass


@masks.command("suggest")
@click.argument("screen_id")
@click.option("--apply", "apply_", is_flag=True, help=f"Save suggestions with confidence >= {APPLY_CONFIDENCE}")
@click.option("--max-suggestions", default=8, show_default=True, help="Maximum suggestions to show")
@click.option("--reload", "reload_", is_flag=True, help="Reload between snapshots")
@click.option("--base-url", "-u", default=None, help="Override the configured base URL")
@config_option
@handle_errors
def masks_suggest(screen_id: str, apply_: bool, max_suggestions: int, reload_: bool,
                  base_url: str | None, config: str) -> None:
    """Snapshot a screen twice and suggest masks for what changed."""
    cfg = load_config(config)
    store = _store(cfg)
    screen = store.load_screen(screen_id)
    policy = load_org_policy_file(Path(cfg.policy_path))

    suggestions = asyncio.run(suggest_masks(cfg, screen, base_url, policy, max_suggestions, reload_))
    if not suggestions:
        console.print("[green]No volatile regions found[/green]")
        return

    table = Table(title=f"Mask Suggestions: {screen_id}")
    table.add_column("Selector", style="bold")
    table.add_column("Type")
    table.add_column("Confidence", justify="right")
    table.add_column("Reason")
    for s in suggestions:
        table.add_row(s.selector, s.type, f"{s.confidence:.2f}", s.reason)
    console.print(table)

    if not apply_:
        return
    new_masks = [convert_to_mask(s) for s in suggestions if s.confidence >= APPLY_CONFIDENCE]
    merged = list(screen.masks) + [m for m in new_masks if m not in screen.masks]
    added = len(merged) - len(screen.masks)
    if added:
        store.save_screen(screen.model_copy(update={"masks": merged}))
    console.print(f"[green]Applied {added} mask(s) to {screen_id}[/green]")


@cli.group()
def policy() -> None:
    """Inspect the organization policy."""
    pass


@policy.command("validate")
@click.option("--path", "-p", "policy_path", default=None, help="Policy file (default: from config)")
@config_option
@handle_errors
def policy_validate(policy_path: str | None, config: str) -> None:
    """Validate the policy file."""
    cfg = load_config(config)
    result = validate_policy(policy_path=policy_path or cfg.policy_path)
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for error in result.errors:
        console.print(f"[red]error:[/red] {error}")
    if not result.valid:
        sys.exit(1)
    console.print("[green]Policy valid[/green]")


def main() -> None:
    cli()


if __name__ == "__main__":
    cli()
