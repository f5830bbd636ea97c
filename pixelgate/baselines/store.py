"""Baseline store: screen definitions and approved images on disk.

Layout::

    baselines/
      manifest.json
      <screen_id>/
        baseline.png
        screen.json
"""

from __future__ import annotations

import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from pixelgate.errors import BaselineError
from pixelgate.hashing import hash_file
from pixelgate.models.baseline import BaselineEntry, BaselineManifest
from pixelgate.models.screen import ScreenBaseline
from pixelgate.url_utils import is_valid_screen_id

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
IMAGE_NAME = "baseline.png"
SCREEN_NAME = "screen.json"


@dataclass
class BaselineValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class BaselineStore:
    """Manages baseline images, their screen.json definitions and the manifest."""

    def __init__(self, baselines_dir: Path):
        self.baselines_dir = Path(baselines_dir)

    @property
    def manifest_path(self) -> Path:
        return self.baselines_dir / MANIFEST_NAME

    def screen_dir(self, screen_id: str) -> Path:
        if not is_valid_screen_id(screen_id):
            raise BaselineError(f"Invalid screen id: {screen_id!r}")
        return self.baselines_dir / screen_id

    def image_path(self, screen_id: str) -> Path:
        return self.screen_dir(screen_id) / IMAGE_NAME

    def screen_path(self, screen_id: str) -> Path:
        return self.screen_dir(screen_id) / SCREEN_NAME

    def load(self) -> BaselineManifest:
        """Load the manifest, rebuilding it from screen.json files if unreadable."""
        if self.manifest_path.exists():
            try:
                with open(self.manifest_path) as f:
                    data = json.load(f)
                return BaselineManifest(**data)
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Failed to load baseline manifest: %s. Recovering from screen files.", e)
                return self.recover_manifest()
        return BaselineManifest()

    def save(self, manifest: BaselineManifest) -> None:
        self.baselines_dir.mkdir(parents=True, exist_ok=True)
        manifest.last_updated = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        with open(self.manifest_path, "w") as f:
            json.dump(manifest.model_dump(), f, indent=2)
        logger.debug("Saved baseline manifest to %s", self.manifest_path)

    def recover_manifest(self) -> BaselineManifest:
        manifest = BaselineManifest()
        if not self.baselines_dir.exists():
            return manifest
        for screen_file in sorted(self.baselines_dir.glob(f"*/{SCREEN_NAME}")):
            try:
                screen = self.load_screen(screen_file.parent.name)
            except BaselineError as e:
                logger.warning("Skipping %s during recovery: %s", screen_file.parent.name, e)
                continue
            image = self.image_path(screen.screen_id)
            manifest.baselines.append(BaselineEntry(
                screen_id=screen.screen_id,
                name=screen.name,
                url=screen.url,
                hash=hash_file(image) if image.exists() else "",
                tags=list(screen.tags),
            ))
        logger.info("Recovered %d baseline(s) from screen files", len(manifest.baselines))
        return manifest

    def load_screen(self, screen_id: str) -> ScreenBaseline:
        path = self.screen_path(screen_id)
        if not path.exists():
            raise BaselineError(f"screen.json not found for {screen_id}: {path}")
        try:
            with open(path) as f:
                data = json.load(f)
            screen = ScreenBaseline(**data)
        except json.JSONDecodeError as e:
            raise BaselineError(f"screen.json for {screen_id} is not valid JSON: {e}") from e
        except ValidationError as e:
            raise BaselineError(f"screen.json for {screen_id} is invalid: {e}") from e
        if not is_valid_screen_id(screen.screen_id):
            raise BaselineError(f"screen.json for {screen_id} declares invalid id {screen.screen_id!r}")
        return screen

    def save_screen(self, screen: ScreenBaseline) -> Path:
        path = self.screen_path(screen.screen_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(screen.model_dump(exclude_none=True), f, indent=2)
        return path

    def load_screens(self, screen_ids: list[str] | None = None) -> list[ScreenBaseline]:
        """Screens in manifest order, optionally restricted to the given ids."""
        manifest = self.load()
        ids = [e.screen_id for e in manifest.baselines]
        if screen_ids:
            unknown = [s for s in screen_ids if s not in ids]
            if unknown:
                raise BaselineError(f"Unknown screen id(s): {', '.join(unknown)}")
            ids = [s for s in ids if s in screen_ids]
        return [self.load_screen(screen_id) for screen_id in ids]

    def add_baseline(self, screen: ScreenBaseline, source_image: Path) -> BaselineEntry:
        """Copy an approved image into the store and register its screen."""
        source_image = Path(source_image)
        if not source_image.exists():
            raise BaselineError(f"Baseline image not found: {source_image}")

        dest = self.image_path(screen.screen_id)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if source_image.resolve() != dest.resolve():
            shutil.copy2(source_image, dest)
        self.save_screen(screen)

        entry = BaselineEntry(
            screen_id=screen.screen_id,
            name=screen.name,
            url=screen.url,
            hash=hash_file(dest),
            tags=list(screen.tags),
            captured_at=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
        manifest = self.load()
        manifest.baselines = [e for e in manifest.baselines if e.screen_id != screen.screen_id]
        manifest.baselines.append(entry)
        self.save(manifest)
        logger.info("Stored baseline for %s (%s)", screen.screen_id, screen.url)
        return entry

    def validate(self, check_hash: bool = False) -> BaselineValidation:
        result = BaselineValidation()
        if not self.manifest_path.exists():
            result.errors.append(f"Manifest not found: {self.manifest_path}")
            return result

        manifest = self.load()
        seen: set[str] = set()
        for entry in manifest.baselines:
            if entry.screen_id in seen:
                result.errors.append(f"Duplicate screen id: {entry.screen_id}")
                continue
            seen.add(entry.screen_id)

            if not is_valid_screen_id(entry.screen_id):
                result.errors.append(f"Invalid screen id: {entry.screen_id!r}")
                continue

            image = self.image_path(entry.screen_id)
            if not image.exists():
                result.errors.append(f"{entry.screen_id}: missing {IMAGE_NAME}")
            elif check_hash and entry.hash and hash_file(image) != entry.hash:
                result.errors.append(f"{entry.screen_id}: hash mismatch for {IMAGE_NAME}")

            try:
                screen = self.load_screen(entry.screen_id)
            except BaselineError as e:
                result.errors.append(str(e))
                continue
            if screen.screen_id != entry.screen_id:
                result.errors.append(
                    f"{entry.screen_id}: screen.json declares id {screen.screen_id}"
                )
            if screen.thresholds and not screen.override_justification:
                result.warnings.append(f"{entry.screen_id}: threshold override without justification")

        for screen_file in self.baselines_dir.glob(f"*/{SCREEN_NAME}"):
            if screen_file.parent.name not in seen:
                result.warnings.append(f"{screen_file.parent.name}: not listed in manifest")
        return result
