"""Configuration models for the visual gate."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

BrowserName = Literal["chromium", "firefox", "webkit"]

DEFAULT_FIXED_INSTANT = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class ViewportConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)
    device_scale_factor: float = Field(default=1, gt=0)
    browser: BrowserName = "chromium"

    @property
    def area(self) -> int:
        return self.width * self.height

    def merged(self, override: Optional["ViewportOverride"]) -> "ViewportConfig":
        if override is None:
            return self
        return self.model_copy(update=override.model_dump(exclude_none=True))


class ViewportOverride(BaseModel):
    """Per-screen viewport fields; anything left unset comes from the defaults."""
    model_config = ConfigDict(frozen=True)

    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    device_scale_factor: Optional[float] = Field(default=None, gt=0)
    browser: Optional[BrowserName] = None


class Mask(BaseModel):
    """A region excluded from comparison: a CSS-addressed element or a rectangle."""
    model_config = ConfigDict(frozen=True)

    type: Literal["css", "rect"]
    selector: Optional[str] = None
    x: Optional[int] = None
    y: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "Mask":
        if self.type == "css" and not self.selector:
            raise ValueError("css mask requires a selector")
        if self.type == "rect":
            coords = (self.x, self.y, self.width, self.height)
            if any(c is None for c in coords):
                raise ValueError("rect mask requires x, y, width and height")
            if self.width < 0 or self.height < 0:
                raise ValueError("rect mask width and height must be non-negative")
        return self

    @property
    def area(self) -> int:
        if self.type != "rect":
            return 0
        return self.width * self.height


class DeterminismConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    browser: BrowserName = "chromium"
    device_scale_factor: float = 1
    locale: str = "en-US"
    timezone_id: str = "UTC"
    color_scheme: Literal["light", "dark"] = "light"
    reduce_motion: Literal["reduce", "no-preference"] = "reduce"
    disable_animations: bool = True
    block_external_network: bool = True
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "networkidle"
    layout_stability_ms: int = 300
    layout_stability_attempts: int = 10
    layout_tolerance_px: float = 1
    screenshot_after_settled_only: bool = True
    fixed_instant: Optional[datetime] = DEFAULT_FIXED_INSTANT
    allowed_domains: tuple[str, ...] = ("localhost", "127.0.0.1", "[::1]")
    debug: bool = False


class GateConfig(BaseModel):
    # Target
    base_url: str = "http://localhost:5173"

    # Storage
    baselines_dir: str = "baselines"
    runs_dir: str = "runs"
    policy_path: str = ".gate/policy.json"

    # Execution limits
    max_parallel_screens: int = Field(default=3, ge=1)
    screen_timeout_seconds: float = Field(default=60, gt=0)
    navigation_timeout_ms: int = 30000

    # Comparison
    anti_aliasing_tolerance: int = Field(default=5, ge=0, le=255)

    # Reporting
    inline_image_max_bytes: int = 256 * 1024
    create_evidence_pack: bool = True
    fail_on_warn: bool = False

    # CI
    comment_on_pr: bool = True
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"

    debug: bool = False

    @field_validator("github_token", mode="before")
    @classmethod
    def resolve_env_token(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v

    @classmethod
    def load(cls, path: str | Path) -> "GateConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
