"""Stored baseline index structures."""

from __future__ import annotations

from pydantic import BaseModel, Field


class BaselineEntry(BaseModel):
    screen_id: str
    name: str
    url: str
    hash: str  # SHA-256 hex digest of baseline.png
    tags: list[str] = Field(default_factory=list)
    captured_at: str = ""  # ISO timestamp


class BaselineManifest(BaseModel):
    last_updated: str = ""
    baselines: list[BaselineEntry] = Field(default_factory=list)

    def get(self, screen_id: str) -> BaselineEntry | None:
        for entry in self.baselines:
            if entry.screen_id == screen_id:
                return entry
        return None
