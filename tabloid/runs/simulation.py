"""Simulated run: replay a stored artifact as if it had just been generated.

Emits sim_start -> picked -> mutated -> asset_written -> new -> run_done
with pauses in between, so observers see a run of the same shape as a
real one. Never writes metadata. Each run awaits its own sequence, so
concurrent simulated runs interleave but keep their own order.
"""

import asyncio
import logging
from dataclasses import dataclass

from tabloid.runs.event_bus import EventBus
from tabloid.runs.fallback import FallbackArtifact
from tabloid.runs.schemas import EventType

logger = logging.getLogger(__name__)

FALLBACK_MUTATION_MODE = "fallback"


@dataclass(frozen=True)
class SimulationTimings:
    """Pauses (seconds) before picked, mutated, asset_written and run_done."""
    before_picked: float = 1.5
    before_mutated: float = 2.0
    before_asset: float = 1.5
    before_done: float = 2.0

    @classmethod
    def instant(cls) -> "SimulationTimings":
        return cls(0.0, 0.0, 0.0, 0.0)


async def simulate_run(
    bus: EventBus,
    run_id: str,
    fallback: FallbackArtifact,
    timings: SimulationTimings = SimulationTimings(),
) -> str:
    """Play the synthetic event sequence for `fallback`. Returns its file name."""
    logger.info(f"Simulating run {run_id} with {fallback.file}")

    bus.emit(EventType.SIM_START, run_id, prompt=fallback.prompt)
    await asyncio.sleep(timings.before_picked)
    bus.emit(EventType.PICKED, run_id, file=fallback.file)
    await asyncio.sleep(timings.before_mutated)
    bus.emit(EventType.MUTATED, run_id, mutationMode=FALLBACK_MUTATION_MODE, mutationFields=[])
    await asyncio.sleep(timings.before_asset)
    bus.emit(EventType.ASSET_WRITTEN, run_id, file=fallback.file)

    # The UI treats the reused image as new
    bus.emit(EventType.NEW, file=fallback.file)

    await asyncio.sleep(timings.before_done)
    bus.emit(EventType.RUN_DONE, run_id, file=fallback.file, simulated=True)
    return fallback.file
