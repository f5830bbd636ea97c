"""Org policy loading and per-screen resolution.

The policy file (``.gate/policy.json``) is optional. Every section of it is
deep-merged over the built-in defaults, so a policy only needs to list what it
changes. Screens are resolved against the merged policy before any capture
starts; a screen the policy rejects outright raises ``PolicyError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from pixelgate.comparison.thresholds import enforce_band_order, tier_for_tags, tier_thresholds
from pixelgate.errors import PolicyError
from pixelgate.models.config import DeterminismConfig, Mask, ViewportConfig
from pixelgate.models.policy import (
    EnforcementConfig,
    LooseningEvent,
    OrgPolicy,
    PolicyDefaults,
    ScreenThresholds,
    ThresholdBand,
    Tier,
)
from pixelgate.models.screen import ResolvedScreen, ScreenBaseline

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMA_VERSION = 1
POLICY_RELATIVE_PATH = Path(".gate") / "policy.json"

# Determinism switches that may only be turned off as a governed loosening.
ESSENTIAL_DETERMINISM_FIELDS = ("disable_animations", "block_external_network")


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_org_policy(data: dict[str, Any]) -> OrgPolicy:
    """Build an OrgPolicy from raw JSON data, filling gaps from the defaults."""
    if not isinstance(data, dict):
        raise PolicyError("Policy file must contain a JSON object")
    version = data.get("schema_version")
    if version != SUPPORTED_SCHEMA_VERSION:
        raise PolicyError(f"Invalid or unsupported policy schema version: {version!r}")

    base = OrgPolicy().model_dump(mode="json")
    try:
        return OrgPolicy.model_validate(_deep_merge(base, data))
    except ValidationError as e:
        raise PolicyError(f"Invalid policy: {e}") from e


def load_org_policy(base_path: str | Path = ".") -> Optional[OrgPolicy]:
    """Read ``<base_path>/.gate/policy.json``; None when it does not exist."""
    return load_org_policy_file(Path(base_path) / POLICY_RELATIVE_PATH)


def load_org_policy_file(policy_path: str | Path) -> Optional[OrgPolicy]:
    policy_path = Path(policy_path)
    if not policy_path.exists():
        logger.debug("No policy at %s, using built-in defaults", policy_path)
        return None
    try:
        with open(policy_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise PolicyError(f"Policy file {policy_path} is not valid JSON: {e}") from e
    policy = parse_org_policy(data)
    logger.info("Loaded org policy from %s (hash %s)", policy_path, compute_policy_hash(policy))
    return policy


def merge_defaults(policy: Optional[OrgPolicy]) -> PolicyDefaults:
    return policy.defaults if policy is not None else PolicyDefaults()


def merge_enforcement(policy: Optional[OrgPolicy]) -> EnforcementConfig:
    return policy.enforcement if policy is not None else EnforcementConfig()


def apply_tag_rules(screen: ScreenBaseline, policy: Optional[OrgPolicy]) -> list[str]:
    """Screen tags if it has any, otherwise at most one tag derived from route rules."""
    if screen.tags:
        return list(screen.tags)
    if policy is None or policy.tag_rules is None:
        return []
    rules = policy.tag_rules
    if any(route in screen.url for route in rules.critical_routes):
        return [Tier.CRITICAL.value]
    if any(route in screen.url for route in rules.noisy_routes):
        return [Tier.NOISY.value]
    return []


def compute_mask_coverage_ratio(masks: list[Mask], viewport: ViewportConfig) -> float:
    """Share of the viewport covered by rect masks; css masks have no known area."""
    if not masks or viewport.area == 0:
        return 0.0
    return sum(m.area for m in masks) / viewport.area


def compute_policy_hash(policy: Optional[OrgPolicy]) -> str:
    data = policy.model_dump(mode="json") if policy is not None else {}
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def _loosening_decision(
    screen: ScreenBaseline, enforcement: EnforcementConfig,
) -> tuple[bool, str]:
    justification = (screen.override_justification or "").strip()
    if not enforcement.allow_loosening:
        return False, "Policy enforcement does not allow loosening"
    if not justification:
        return False, "Loosening requires override_justification"
    return True, ""


def _governed_thresholds(
    screen: ScreenBaseline,
    base: ScreenThresholds,
    enforcement: EnforcementConfig,
) -> tuple[ScreenThresholds, list[LooseningEvent]]:
    """Apply each override field, letting loosening fields through only when permitted."""
    override = screen.thresholds
    if override is None:
        return base, []

    bands = {"warn": base.warn.model_dump(), "fail": base.fail.model_dump()}
    events: list[LooseningEvent] = []
    allowed, reason = _loosening_decision(screen, enforcement)

    for band_name in ("warn", "fail"):
        band_override = getattr(override, band_name)
        if band_override is None:
            continue
        for name, requested in band_override.model_dump(exclude_none=True).items():
            current = bands[band_name][name]
            if requested <= current:
                bands[band_name][name] = requested
                continue
            events.append(LooseningEvent(
                screen_id=screen.screen_id,
                field=f"{band_name}.{name}",
                requested=requested,
                baseline=current,
                applied=allowed,
                justification=screen.override_justification or "",
                reason=reason,
            ))
            if allowed:
                bands[band_name][name] = requested

    require_masks = base.require_masks
    if override.require_masks is not None:
        if override.require_masks is False and base.require_masks is True:
            events.append(LooseningEvent(
                screen_id=screen.screen_id,
                field="require_masks",
                requested=False,
                baseline=True,
                applied=allowed,
                justification=screen.override_justification or "",
                reason=reason,
            ))
            if allowed:
                require_masks = False
        else:
            require_masks = override.require_masks

    resolved = ScreenThresholds(
        warn=ThresholdBand(**bands["warn"]),
        fail=ThresholdBand(**bands["fail"]),
        require_masks=require_masks,
    )
    return resolved, events


def _governed_determinism(
    screen: ScreenBaseline,
    base: DeterminismConfig,
    enforcement: EnforcementConfig,
) -> tuple[DeterminismConfig, list[LooseningEvent]]:
    override = screen.determinism
    if override is None:
        return base, []

    updates = override.model_dump(exclude_none=True)
    events: list[LooseningEvent] = []
    allowed, reason = _loosening_decision(screen, enforcement)

    for name in ESSENTIAL_DETERMINISM_FIELDS:
        if updates.get(name) is False and getattr(base, name) is True:
            events.append(LooseningEvent(
                screen_id=screen.screen_id,
                field=f"determinism.{name}",
                requested=False,
                baseline=True,
                applied=allowed,
                justification=screen.override_justification or "",
                reason=reason,
            ))
            if not allowed:
                del updates[name]

    if "allowed_domains" in updates:
        updates["allowed_domains"] = tuple(updates["allowed_domains"])
    return base.model_copy(update=updates), events


def resolve_screen(screen: ScreenBaseline, policy: Optional[OrgPolicy] = None) -> ResolvedScreen:
    """Merge policy defaults, tier thresholds and governed screen overrides.

    Raises PolicyError when the screen's masks cover more of the viewport than
    the policy allows.
    """
    defaults = merge_defaults(policy)
    enforcement = merge_enforcement(policy)

    applied_tags = apply_tag_rules(screen, policy)
    tier = tier_for_tags(applied_tags)

    viewport = defaults.viewport
    if screen.viewport is not None:
        if enforcement.allow_per_screen_viewport_override:
            viewport = viewport.merged(screen.viewport)
        else:
            logger.warning("Viewport override ignored for %s: not allowed by policy", screen.screen_id)

    masks = list(screen.masks)
    if masks and not enforcement.allow_per_screen_mask_override:
        logger.warning("Masks ignored for %s: per-screen masks not allowed by policy", screen.screen_id)
        masks = []

    base = tier_thresholds(tier, viewport, defaults.thresholds)
    thresholds, threshold_events = _governed_thresholds(screen, base, enforcement)
    thresholds = enforce_band_order(thresholds, screen.screen_id)

    determinism, determinism_events = _governed_determinism(screen, defaults.determinism, enforcement)
    determinism = determinism.model_copy(update={
        "browser": viewport.browser,
        "device_scale_factor": viewport.device_scale_factor,
    })

    events = threshold_events + determinism_events
    for event in events:
        if event.applied:
            logger.warning("Loosening applied on %s: %s %s -> %s (%s)",
                           screen.screen_id, event.field, event.baseline,
                           event.requested, event.justification)
        else:
            logger.warning("Loosening rejected on %s: %s (%s)",
                           screen.screen_id, event.field, event.reason)

    coverage = compute_mask_coverage_ratio(masks, viewport)
    if coverage > enforcement.max_mask_coverage_ratio:
        raise PolicyError(
            f'Screen "{screen.name}" mask coverage ({coverage * 100:.1f}%) exceeds '
            f"policy limit ({enforcement.max_mask_coverage_ratio * 100:.1f}%)"
        )

    return ResolvedScreen(
        screen=screen,
        viewport=viewport,
        thresholds=thresholds,
        determinism=determinism,
        tier=tier,
        applied_tags=applied_tags,
        masks=masks,
        loosening_events=events,
        mask_coverage_ratio=coverage,
    )


def resolve_screens(screens: list[ScreenBaseline], policy: Optional[OrgPolicy] = None) -> list[ResolvedScreen]:
    return [resolve_screen(screen, policy) for screen in screens]


@dataclass
class PolicyValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    policy: Optional[OrgPolicy] = None


def validate_policy(base_path: str | Path = ".", policy_path: str | Path | None = None) -> PolicyValidation:
    """Load the policy (bounds are enforced by the models) and collect advisory warnings."""
    warnings: list[str] = []
    path = Path(policy_path) if policy_path else Path(base_path) / POLICY_RELATIVE_PATH

    try:
        policy = load_org_policy_file(path)
    except PolicyError as e:
        return PolicyValidation(valid=False, errors=[f"Failed to load policy: {e}"])

    if policy is None:
        warnings.append(f"No {POLICY_RELATIVE_PATH.as_posix()} found, using core defaults")
        return PolicyValidation(valid=True, warnings=warnings)

    if policy.tag_rules is not None:
        overlap = [r for r in policy.tag_rules.critical_routes if r in policy.tag_rules.noisy_routes]
        if overlap:
            warnings.append(f"Tag rules overlap for routes: {', '.join(overlap)}")

    if policy.enforcement.allow_loosening:
        warnings.append("enforcement.allow_loosening is enabled; justified overrides may relax thresholds")

    return PolicyValidation(valid=True, warnings=warnings, policy=policy)
