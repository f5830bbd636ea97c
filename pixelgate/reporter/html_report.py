"""HTML report generator: a self-contained page that works offline and inside the evidence pack."""

from __future__ import annotations

import base64
import html
import logging
import re
from pathlib import Path
from urllib.parse import urlparse

from pixelgate.models.result import RunSummary, ScreenResult

logger = logging.getLogger(__name__)

DEFAULT_INLINE_MAX_BYTES = 256 * 1024
_ORIGIN_RE = re.compile(r"https?://[^/\s\"'<>]+", re.I)


def display_path(url: str) -> str:
    """Path (plus query) of a screen URL; the origin is never rendered."""
    parsed = urlparse(url)
    if not parsed.scheme:
        return url
    path = parsed.path or "/"
    return f"{path}?{parsed.query}" if parsed.query else path


def strip_origins(text: str) -> str:
    return _ORIGIN_RE.sub("", text)


def _text(value: str) -> str:
    """Escape free text for the page; any embedded origin is dropped first."""
    return html.escape(strip_origins(value))


def _image_src(run_dir: Path, rel_path: str | None, inline_max_bytes: int) -> str:
    """Data URI for small images, the relative path otherwise; empty if missing."""
    if not rel_path:
        return ""
    p = run_dir / rel_path
    if not p.exists():
        logger.warning("Report image missing: %s", p)
        return ""
    size = p.stat().st_size
    if size == 0:
        return ""
    if size > inline_max_bytes:
        return Path(rel_path).as_posix()
    data = base64.b64encode(p.read_bytes()).decode()
    return f"data:image/png;base64,{data}"


def _status_badge(status: str) -> str:
    return f'<span class="badge {status.lower()}">{status}</span>'


def _build_screen_card(r: ScreenResult, run_dir: Path, inline_max_bytes: int) -> str:
    border_color = {"PASS": "#22c55e", "WARN": "#eab308", "FAIL": "#ef4444"}.get(r.status, "#94a3b8")
    expanded = " expanded" if r.status != "PASS" else ""

    card = f'''
    <div class="screen-card{expanded}" id="screen-{_text(r.screen_id)}" data-status="{r.status.lower()}">
      <div class="screen-header" style="border-left: 4px solid {border_color};" onclick="this.parentElement.classList.toggle('expanded')">
        <div class="screen-header-left">
          {_status_badge(r.status)}
          <strong>{_text(r.name)}</strong>
          <span class="badge tier">{r.tier.value}</span>
          <code>{_text(display_path(r.url))}</code>
          <span class="screen-meta">{r.diff_pixels} px &middot; {r.diff_pixel_ratio:.5%} &middot; {r.originality_percent:.3f}% similar</span>
        </div>
        <span class="expand-arrow">&#9660;</span>
      </div>
      <div class="screen-body">
    '''

    if r.error:
        kind = f" ({r.error_kind})" if r.error_kind else ""
        card += f'<div class="failure-banner"><strong>Error{kind}:</strong> {_text(r.error)}</div>'

    t = r.thresholds
    card += (
        '<div class="section"><h4>Thresholds</h4><table class="thresholds">'
        '<tr><th></th><th>Pixels</th><th>Ratio</th></tr>'
        f'<tr><td>Warn</td><td>{t.warn.diff_pixels}</td><td>{t.warn.diff_pixel_ratio}</td></tr>'
        f'<tr><td>Fail</td><td>{t.fail.diff_pixels}</td><td>{t.fail.diff_pixel_ratio}</td></tr>'
        '</table>'
    )
    if t.require_masks:
        card += '<p class="screen-meta">Masks required for this tier.</p>'
    card += '</div>'

    images = []
    for label, rel in (("Baseline", r.baseline_path), ("Actual", r.actual_path), ("Diff", r.diff_path)):
        src = _image_src(run_dir, rel, inline_max_bytes)
        if src:
            images.append(
                f'<div class="screenshot-item"><img src="{html.escape(src)}" alt="{label}" '
                f'onclick="this.classList.toggle(\'zoomed\')"/>'
                f'<div class="screenshot-label">{label}</div></div>'
            )
    if images:
        card += f'<div class="section"><h4>Images</h4><div class="screenshots-grid">{"".join(images)}</div></div>'

    if r.changes:
        rows = "".join(
            f'<li><span class="badge change">{c.type}</span> {_text(c.description)} '
            f'<span class="screen-meta">({c.confidence:.0%})</span></li>'
            for c in r.changes
        )
        card += f'<div class="section"><h4>Detected changes</h4><ul class="changes">{rows}</ul></div>'

    card += '</div></div>'
    return card


def generate_html_report(
    summary: RunSummary,
    run_dir: Path,
    output_path: Path | None = None,
    inline_max_bytes: int = DEFAULT_INLINE_MAX_BYTES,
) -> Path:
    """Write ``report.html`` for a run. Image paths in results are relative to ``run_dir``."""
    output_path = output_path or run_dir / "report.html"

    loosening = ""
    if summary.loosening_events:
        items = "".join(
            f"<li><strong>{_text(e.screen_id)}</strong> {_text(e.field)}: "
            f"{e.baseline} &rarr; {e.requested} "
            f"({'applied' if e.applied else 'rejected'}"
            f"{': ' + _text(e.justification) if e.justification else ''})</li>"
            for e in summary.loosening_events
        )
        loosening = f'<div class="loosening"><h2>&#9888; Threshold loosening ({len(summary.loosening_events)})</h2><ul>{items}</ul></div>'

    cards = "".join(_build_screen_card(r, run_dir, inline_max_bytes) for r in summary.results)
    sha = _text((summary.sha or "")[:7]) or "&ndash;"

    report_html = f'''<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Visual Gate Report &mdash; {_text(summary.run_id)}</title>
<style>
  :root {{ --pass: #22c55e; --warn: #eab308; --fail: #ef4444; --bg: #f8fafc; --card: white; --border: #e2e8f0; --text: #1e293b; --muted: #64748b; --accent: #6366f1; }}
  * {{ margin: 0; padding: 0; box-sizing: border-box; }}
  body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: var(--bg); color: var(--text); line-height: 1.6; padding: 1.5rem; }}
  .container {{ max-width: 1400px; margin: 0 auto; }}
  h1 {{ font-size: 1.8rem; margin-bottom: 0.3rem; }}
  .meta {{ color: var(--muted); margin-bottom: 1.5rem; font-size: 0.9rem; }}
  .summary {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(130px, 1fr)); gap: 0.8rem; margin-bottom: 1.5rem; }}
  .stat {{ background: var(--card); border-radius: 8px; padding: 1rem; box-shadow: 0 1px 3px rgba(0,0,0,0.08); text-align: center; }}
  .stat .value {{ font-size: 1.8rem; font-weight: 700; }}
  .stat .label {{ font-size: 0.8rem; color: var(--muted); }}
  .stat.pass .value {{ color: var(--pass); }}
  .stat.warn .value {{ color: var(--warn); }}
  .stat.fail .value {{ color: var(--fail); }}
  .badge {{ display: inline-block; padding: 0.15rem 0.55rem; border-radius: 9999px; font-size: 0.7rem; font-weight: 600; text-transform: uppercase; white-space: nowrap; }}
  .badge.pass {{ background: #dcfce7; color: #166534; }}
  .badge.warn {{ background: #fef9c3; color: #854d0e; }}
  .badge.fail {{ background: #fecaca; color: #991b1b; }}
  .badge.tier {{ background: #e0e7ff; color: #3730a3; }}
  .badge.change {{ background: #f1f5f9; color: #334155; }}
  .loosening {{ background: #fefce8; border-radius: 8px; padding: 1.2rem; margin-bottom: 1.5rem; border-left: 4px solid var(--warn); }}
  .loosening h2 {{ color: #854d0e; font-size: 1rem; margin-bottom: 0.4rem; }}
  .loosening ul, ul.changes {{ margin-left: 1.2rem; font-size: 0.9rem; }}
  .screen-card {{ background: var(--card); border-radius: 8px; margin-bottom: 0.6rem; box-shadow: 0 1px 3px rgba(0,0,0,0.08); overflow: hidden; }}
  .screen-header {{ display: flex; justify-content: space-between; align-items: center; padding: 0.7rem 1rem; cursor: pointer; user-select: none; }}
  .screen-header:hover {{ background: #f8fafc; }}
  .screen-header-left {{ display: flex; align-items: center; gap: 0.5rem; flex-wrap: wrap; }}
  .screen-meta {{ font-size: 0.78rem; color: var(--muted); }}
  .expand-arrow {{ color: var(--muted); font-size: 0.7rem; transition: transform 0.2s; }}
  .screen-card.expanded .expand-arrow {{ transform: rotate(180deg); }}
  .screen-body {{ display: none; padding: 0 1rem 1rem 1rem; }}
  .screen-card.expanded .screen-body {{ display: block; }}
  .failure-banner {{ background: #fef2f2; border: 1px solid #fecaca; color: #991b1b; border-radius: 6px; padding: 0.6rem 0.8rem; margin-bottom: 0.8rem; font-size: 0.88rem; }}
  .section {{ margin-bottom: 1rem; }}
  .section h4 {{ font-size: 0.85rem; color: var(--muted); text-transform: uppercase; letter-spacing: 0.05em; margin-bottom: 0.4rem; padding-bottom: 0.25rem; border-bottom: 1px solid var(--border); }}
  table.thresholds {{ font-size: 0.85rem; border-collapse: collapse; }}
  table.thresholds td, table.thresholds th {{ padding: 0.2rem 0.8rem 0.2rem 0; text-align: left; }}
  .screenshots-grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(280px, 1fr)); gap: 0.6rem; }}
  .screenshot-item {{ text-align: center; }}
  .screenshot-item img {{ width: 100%; border-radius: 6px; border: 1px solid var(--border); cursor: pointer; }}
  .screenshot-item img.zoomed {{ position: fixed; top: 5%; left: 5%; width: 90%; height: 90%; object-fit: contain; z-index: 1000; background: rgba(0,0,0,0.85); border: none; border-radius: 8px; padding: 1rem; }}
  .screenshot-label {{ font-size: 0.75rem; color: var(--muted); margin-top: 0.2rem; }}
  .filter-bar {{ display: flex; gap: 0.5rem; margin-bottom: 1rem; flex-wrap: wrap; }}
  .filter-btn {{ padding: 0.3rem 0.8rem; border-radius: 6px; border: 1px solid var(--border); background: var(--card); cursor: pointer; font-size: 0.82rem; }}
  .filter-btn.active {{ background: var(--accent); color: white; border-color: var(--accent); }}
</style>
</head>
<body>
<div class="container">
  <h1>Visual Gate Report {_status_badge(summary.status)}</h1>
  <p class="meta">Run: {_text(summary.run_id)} &middot; Commit: {sha} &middot; {_text(summary.timestamp)} &middot; Policy: {_text(summary.policy_hash)}</p>

  <div class="summary">
    <div class="stat"><div class="value">{summary.total}</div><div class="label">Total Screens</div></div>
    <div class="stat pass"><div class="value">{summary.passed}</div><div class="label">Passed</div></div>
    <div class="stat warn"><div class="value">{summary.warned}</div><div class="label">Warned</div></div>
    <div class="stat fail"><div class="value">{summary.failed}</div><div class="label">Failed</div></div>
    <div class="stat"><div class="value">{summary.worst_similarity * 100:.2f}%</div><div class="label">Worst Similarity</div></div>
  </div>

  {loosening}

  <div class="filter-bar">
    <button class="filter-btn active" onclick="filterScreens(event, 'all')">All</button>
    <button class="filter-btn" onclick="filterScreens(event, 'fail')">Failed</button>
    <button class="filter-btn" onclick="filterScreens(event, 'warn')">Warned</button>
    <button class="filter-btn" onclick="filterScreens(event, 'pass')">Passed</button>
  </div>

  <div id="screen-list">
    {cards}
  </div>
</div>

<script>
function filterScreens(event, status) {{
  document.querySelectorAll('.filter-btn').forEach(b => b.classList.remove('active'));
  event.target.classList.add('active');
  document.querySelectorAll('.screen-card').forEach(card => {{
    card.style.display = status === 'all' || card.dataset.status === status ? '' : 'none';
  }});
}}
</script>
</body>
</html>'''

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(report_html)
    logger.debug("HTML report written to %s", output_path)
    return output_path
