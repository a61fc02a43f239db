"""File-system artifact store.

Each artifact is an image file `img_<epoch_ms>.<ext>` with a companion
`img_<epoch_ms>.json` metadata record in the same directory. The store is
append-only from the service's point of view: files are created, never
rewritten, and removed only by outside housekeeping.

Write order is metadata first, then the image via temp file + rename.
Anything that lists images (the watcher, the fallback selector) therefore
never sees an image whose bytes are incomplete.
"""

import json
import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from tabloid.prompts.schemas import ArtifactMetadata

logger = logging.getLogger(__name__)

IMAGE_RE = re.compile(r"\.(png|jpe?g|webp)$", re.IGNORECASE)
IGNORED_NAMES = (".DS_Store",)


def metadata_name(image_name: str) -> str:
    """img_123.png -> img_123.json"""
    return IMAGE_RE.sub(".json", image_name)


def is_image_name(name: str) -> bool:
    return bool(IMAGE_RE.search(name)) and not name.startswith("._") and name not in IGNORED_NAMES


class ArtifactStore:
    """Directory of images plus metadata JSON files."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._name_lock = threading.Lock()
        self._last_stamp = 0

    # --- Reads ---

    def list_images(self) -> list[str]:
        """All image file names, most recent first."""
        if not self.root.exists():
            return []
        names = [p.name for p in self.root.iterdir() if p.is_file() and is_image_name(p.name)]
        return sorted(names, reverse=True)

    def has_metadata(self, image_name: str) -> bool:
        return (self.root / metadata_name(image_name)).exists()

    def list_images_with_metadata(self) -> list[str]:
        return [name for name in self.list_images() if self.has_metadata(name)]

    def read_metadata(self, image_name: str) -> Optional[ArtifactMetadata]:
        """Parsed metadata, or None when missing or unreadable."""
        path = self.root / metadata_name(image_name)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return ArtifactMetadata.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Unreadable metadata {path.name}: {e}")
            return None

    def image_path(self, image_name: str) -> Path:
        return self.root / image_name

    # --- Writes ---

    def new_artifact_name(self, ext: str = "png") -> str:
        """Fresh `img_<epoch_ms>.<ext>` that never repeats within this process."""
        with self._name_lock:
            stamp = int(time.time() * 1000)
            if stamp <= self._last_stamp:
                stamp = self._last_stamp + 1
            while (self.root / f"img_{stamp}.{ext}").exists() or (self.root / f"img_{stamp}.json").exists():
                stamp += 1
            self._last_stamp = stamp
        return f"img_{stamp}.{ext}"

    def write_metadata(self, image_name: str, metadata: ArtifactMetadata) -> Path:
        path = self.root / metadata_name(image_name)
        path.write_text(json.dumps(metadata.to_json_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        return path

    def write_image(self, image_name: str, data: bytes) -> Path:
        path = self.root / image_name
        tmp = self.root / f".{image_name}.part"
        tmp.write_bytes(data)
        os.replace(tmp, path)
        return path

    def write_artifact(self, image_name: str, data: bytes, metadata: ArtifactMetadata) -> Path:
        """Persist one artifact: metadata first, then the image."""
        meta_path = self.write_metadata(image_name, metadata)
        try:
            path = self.write_image(image_name, data)
        except OSError:
            # No orphan metadata without its image
            meta_path.unlink(missing_ok=True)
            (self.root / f".{image_name}.part").unlink(missing_ok=True)
            raise
        logger.info(f"Wrote artifact {image_name} ({len(data)} bytes, generation={metadata.generation})")
        return path


# Singleton instance
_store: Optional[ArtifactStore] = None


def get_artifact_store() -> ArtifactStore:
    """Get or create the global ArtifactStore instance."""
    global _store
    if _store is None:
        root = Path(os.environ.get("TABLOID_OUT_DIR", "out")).resolve()
        _store = ArtifactStore(root)
        logger.info(f"Artifact store at {root}")
    return _store
