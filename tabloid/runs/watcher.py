"""Artifact watcher: announce images that appear in the store.

Polls the store listing and publishes {"type": "new", "file": ...} for
every image absent from the previous snapshot. Detection is eventually
consistent (one poll interval behind the write).
"""

import asyncio
import logging
from typing import Optional

from tabloid.persistence.artifact_store import ArtifactStore
from tabloid.runs.event_bus import EventBus
from tabloid.runs.schemas import EventType

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.8


class ArtifactWatcher:
    def __init__(self, store: ArtifactStore, bus: EventBus, interval_s: float = POLL_INTERVAL_S):
        self.store = store
        self.bus = bus
        self.interval_s = interval_s
        self._snapshot: Optional[set[str]] = None

    def prime(self) -> None:
        """Take the baseline snapshot; existing files are not announced."""
        self._snapshot = set(self.store.list_images())

    def poll_once(self) -> list[str]:
        """Diff against the last snapshot; publish and return new names."""
        current = self.store.list_images()
        if self._snapshot is None:
            self._snapshot = set(current)
            return []

        new_files = [name for name in reversed(current) if name not in self._snapshot]
        for name in new_files:
            logger.debug(f"Watcher saw new artifact {name}")
            self.bus.emit(EventType.NEW, file=name)
        self._snapshot = set(current)
        return new_files

    async def run(self) -> None:
        """Poll forever; cancel the task to stop."""
        if self._snapshot is None:
            self.prime()
        logger.info(f"Watching {self.store.root} every {self.interval_s}s")
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.poll_once()
            except OSError as e:
                logger.warning(f"Watcher poll failed: {e}")
