"""Fallback selection: reuse a stored artifact when the live path is skipped.

Eligible pool: images whose metadata exists and parses; when there are
none, every image. Recently served files are skipped to reduce visible
repeats, unless that would empty the pool. Choice is uniform-random.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Optional

from tabloid.persistence.artifact_store import ArtifactStore
from tabloid.prompts.schemas import ArtifactMetadata

logger = logging.getLogger(__name__)

# How many recent picks to avoid repeating
RECENT_WINDOW = 5


@dataclass
class FallbackArtifact:
    file: str
    meta: Optional[ArtifactMetadata] = None

    @property
    def prompt(self) -> str:
        return self.meta.summary_prompt() if self.meta else ""


class FallbackSelector:
    def __init__(
        self,
        store: ArtifactStore,
        recent_window: int = RECENT_WINDOW,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.rng = rng or random.Random()
        self._recent: deque[str] = deque(maxlen=max(recent_window, 1))
        self._recent_window = recent_window

    def _eligible(self) -> tuple[list[str], dict[str, ArtifactMetadata]]:
        images = self.store.list_images()
        metas: dict[str, ArtifactMetadata] = {}
        for name in images:
            meta = self.store.read_metadata(name)
            if meta is not None:
                metas[name] = meta
        pool = [name for name in images if name in metas] or images
        return pool, metas

    def _without_recent(self, pool: list[str]) -> list[str]:
        if self._recent_window <= 0:
            return pool
        fresh = [name for name in pool if name not in self._recent]
        return fresh or pool

    def select(self) -> Optional[FallbackArtifact]:
        """Pick an artifact to replay. None only when the store is empty."""
        pool, metas = self._eligible()
        if not pool:
            return None

        file = self.rng.choice(self._without_recent(pool))
        if self._recent_window > 0:
            self._recent.append(file)

        logger.info(
            f"Fallback selected {file} from pool of {len(pool)}"
            + ("" if file in metas else " (no metadata)")
        )
        return FallbackArtifact(file=file, meta=metas.get(file))

    def select_with_metadata(self) -> Optional[FallbackArtifact]:
        """Pick among artifacts with parseable metadata only (prompt replay)."""
        _, metas = self._eligible()
        if not metas:
            return None
        file = self.rng.choice(sorted(metas))
        return FallbackArtifact(file=file, meta=metas[file])
