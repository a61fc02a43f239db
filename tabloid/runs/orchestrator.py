"""Run orchestrator: one generation request from start event to outcome.

Per request:
1. Emit run_start.
2. Breaker open (or simulate-only mode) -> simulated run from a fallback
   artifact, without touching the generator.
3. Otherwise race the real attempt (synthesize pick -> headline -> generator
   -> persist) against a deadline timer; the loser is cancelled.
4. Deadline first    -> breaker.record_slow(), simulated fallback.
   Error first       -> breaker.record_failure(path), simulated fallback.
   Cancelled         -> no breaker change, simulated fallback.
   Success first     -> breaker.record_success(), run_done.
5. No fallback artifact -> run_error, service-unavailable outcome.

Only the success path writes a new artifact + metadata pair. A cancelled
remote job can still finish upstream; that stray artifact is accepted
(at-least-once, not exactly-once).
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from tabloid.generator.base import GenerationInput, Generator
from tabloid.llm.client import rewrite_headline
from tabloid.persistence.artifact_store import ArtifactStore, get_artifact_store, is_image_name
from tabloid.prompts.mutation import MalformedRequestError, parse_mode
from tabloid.prompts.schemas import ArtifactMetadata, Pick
from tabloid.prompts.synthesizer import PromptSynthesizer
from tabloid.runs.breaker import CircuitBreaker
from tabloid.runs.event_bus import EventBus
from tabloid.runs.fallback import FallbackSelector
from tabloid.runs.schemas import EventType, RunOutcome, RunPath, RunRequest, mutation_run_id
from tabloid.runs.simulation import SimulationTimings, simulate_run

logger = logging.getLogger(__name__)

DEADLINE_S = 60.0

# How long a timed-out run waits for the generator to wind down
# (remote cancel included) before falling back regardless.
CANCEL_GRACE_S = 5.0

HeadlineWriter = Callable[[Pick, str], Awaitable[str]]


@dataclass
class OrchestratorConfig:
    deadline_s: float = DEADLINE_S
    cancel_grace_s: float = CANCEL_GRACE_S
    simulate_only: bool = False
    timings: SimulationTimings = field(default_factory=SimulationTimings)


class AttemptKind(str, Enum):
    """How the race between generator and deadline ended."""
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class _Attempt:
    kind: AttemptKind
    file: Optional[str] = None
    error: Optional[BaseException] = None
    elapsed_s: float = 0.0
    # Timed-out generation still winding down after cancel()
    pending: Optional[asyncio.Task] = None


def _log_abandoned(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned generation task ended with {type(exc).__name__}: {exc}")


class RunOrchestrator:
    def __init__(
        self,
        generator: Generator,
        store: ArtifactStore,
        bus: EventBus,
        breaker: CircuitBreaker,
        fallback: FallbackSelector,
        synthesizer: PromptSynthesizer,
        config: Optional[OrchestratorConfig] = None,
        headline_writer: HeadlineWriter = rewrite_headline,
    ):
        self.generator = generator
        self.store = store
        self.bus = bus
        self.breaker = breaker
        self.fallback = fallback
        self.synthesizer = synthesizer
        self.config = config or OrchestratorConfig()
        self.headline_writer = headline_writer

    # ------------------------------------------------------------------
    # Request validation (before any event is emitted)
    # ------------------------------------------------------------------

    def prepare_generate(
        self,
        run_id: Optional[str] = None,
        parent_meta: Optional[dict] = None,
        parent_file: Optional[str] = None,
        mutation_mode: Optional[str] = None,
    ) -> RunRequest:
        """Validate a generate call. Parent and mode only count together."""
        mode = parse_mode(mutation_mode) if mutation_mode else None
        meta = None
        if parent_meta is not None:
            if not isinstance(parent_meta, dict):
                raise MalformedRequestError("parentMeta must be an object")
            meta = ArtifactMetadata.model_validate(parent_meta)
        if meta is None or mode is None:
            meta, mode, parent_file = None, None, None

        extra = {"run_id": str(run_id)} if run_id else {}
        return RunRequest(parent_meta=meta, parent_file=parent_file, mutation_mode=mode, **extra)

    def prepare_mutate(self, parent: Optional[str], mode: Optional[str]) -> RunRequest:
        """Validate a mutate call and load the parent's stored metadata."""
        if not parent:
            raise MalformedRequestError("parent missing")
        parsed = parse_mode(mode)
        if not is_image_name(parent) or os.path.basename(parent) != parent:
            raise MalformedRequestError(f"parent is not an artifact file name: {parent}")

        meta = self.store.read_metadata(parent)
        if meta is None:
            raise MalformedRequestError(f"parent metadata not found for: {parent}", status_code=404)

        return RunRequest(
            run_id=mutation_run_id(),
            parent_meta=meta,
            parent_file=parent,
            mutation_mode=parsed,
        )

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def run_generation(self, request: RunRequest) -> RunOutcome:
        run_id = request.run_id
        start_payload: dict[str, Any] = {}
        if request.path is RunPath.MUTATION:
            start_payload = {"parent": request.parent_file, "mode": request.mutation_mode.value}

        try:
            if self.config.simulate_only:
                self.bus.emit(EventType.RUN_START, run_id, simulated=True, **start_payload)
                return await self._fall_back(run_id, reason="simulate_only", cause="simulate-only")

            snapshot = self.breaker.snapshot()
            logger.info(
                f"Run {run_id} ({request.path.value}): breaker open={snapshot.open} "
                f"slow={snapshot.slow_count} fail={snapshot.fail_count}"
            )
            self.bus.emit(EventType.RUN_START, run_id, **start_payload)

            if self.breaker.is_open():
                return await self._fall_back(
                    run_id, reason="breaker_open", cause="breaker open", breaker_forced=True
                )

            attempt = await self._race(request)

            if attempt.kind is AttemptKind.OK:
                self.breaker.record_success(attempt.elapsed_s, self.config.deadline_s)
                self.bus.emit(EventType.RUN_DONE, run_id, file=attempt.file, **start_payload)
                logger.info(f"Run {run_id} done in {attempt.elapsed_s:.1f}s: {attempt.file}")
                return RunOutcome(ok=True, run_id=run_id, file=attempt.file, simulated=False)

            if attempt.kind is AttemptKind.TIMEOUT:
                logger.warning(f"Run {run_id} hit the {self.config.deadline_s:.0f}s deadline -> fallback")
                # Counted at the moment the deadline wins, before the wind-down
                self.breaker.record_slow()
                if attempt.pending is not None:
                    await self._wind_down(attempt.pending)
                return await self._fall_back(run_id, reason="timeout", cause="timeout")

            if attempt.kind is AttemptKind.CANCELLED:
                logger.info(f"Run {run_id} generation was cancelled -> fallback")
                return await self._fall_back(run_id, reason="cancelled", cause="cancelled")

            logger.error(f"Run {run_id} generation failed: {attempt.error}", exc_info=attempt.error)
            self.breaker.record_failure(request.path)
            return await self._fall_back(
                run_id, reason="error_fallback", cause=f"generation failed ({attempt.error})"
            )

        except asyncio.CancelledError:
            logger.info(f"Run {run_id} aborted by caller")
            raise
        except Exception as e:
            logger.error(f"Run {run_id} orchestration error: {e}", exc_info=True)
            self.bus.emit(EventType.RUN_ERROR, run_id, error=str(e))
            return RunOutcome(
                ok=False, run_id=run_id, reason="internal_error", error=str(e), status_code=500
            )

    async def _race(self, request: RunRequest) -> _Attempt:
        """Generator vs deadline timer, joined at first completion."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        gen_task = asyncio.create_task(self._produce(request), name=f"generate-{request.run_id}")
        timer = asyncio.create_task(asyncio.sleep(self.config.deadline_s), name=f"deadline-{request.run_id}")

        try:
            done, _ = await asyncio.wait({gen_task, timer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # Caller-level abort: stop the generator too, don't wait for it
            timer.cancel()
            gen_task.cancel()
            gen_task.add_done_callback(_log_abandoned)
            raise

        elapsed = loop.time() - started

        if timer in done:
            gen_task.cancel()
            return _Attempt(AttemptKind.TIMEOUT, elapsed_s=elapsed, pending=gen_task)

        timer.cancel()
        if gen_task.cancelled():
            return _Attempt(AttemptKind.CANCELLED, elapsed_s=elapsed)
        exc = gen_task.exception()
        if exc is not None:
            return _Attempt(AttemptKind.ERROR, error=exc, elapsed_s=elapsed)
        return _Attempt(AttemptKind.OK, file=gen_task.result(), elapsed_s=elapsed)

    async def _wind_down(self, gen_task: asyncio.Task) -> None:
        """Give a cancelled generation CANCEL_GRACE_S to finish its cleanup."""
        try:
            await asyncio.wait({gen_task}, timeout=self.config.cancel_grace_s)
        except asyncio.CancelledError:
            gen_task.add_done_callback(_log_abandoned)
            raise
        if gen_task.done():
            _log_abandoned(gen_task)
        else:
            logger.info(f"{gen_task.get_name()} still winding down, falling back without it")
            gen_task.add_done_callback(_log_abandoned)

    async def _produce(self, request: RunRequest) -> str:
        """The real path: everything that must finish under the deadline."""
        run_id = request.run_id

        def emit(stage: str, **payload: Any) -> None:
            self.bus.emit(stage, run_id, **payload)

        synthesis = self.synthesizer.synthesize(
            parent_meta=request.parent_meta,
            parent_file=request.parent_file,
            mode=request.mutation_mode,
        )
        if synthesis.is_mutation:
            emit(
                EventType.MUTATED,
                mutationMode=synthesis.lineage.mutation,
                mutationFields=synthesis.lineage.mutation_fields,
                parent=synthesis.lineage.parent,
            )

        emit(EventType.PICKED, picked=synthesis.pick.model_dump())
        headline = await self.headline_writer(synthesis.pick, self.synthesizer.headline(synthesis.pick))
        emit(EventType.HEADLINE_READY, headline=headline)
        logger.info(f"Run {run_id} prompt:\n{synthesis.prompt}")

        image = await self.generator.generate(GenerationInput(prompt=synthesis.prompt), emit=emit)

        lineage = synthesis.lineage
        meta = ArtifactMetadata(
            **synthesis.pick.model_dump(),
            prompt=synthesis.prompt,
            headline=headline,
            parent=lineage.parent,
            generation=lineage.generation,
            mutation=lineage.mutation,
            mutation_fields=lineage.mutation_fields,
        )
        name = self.store.new_artifact_name()
        await asyncio.to_thread(self.store.write_artifact, name, image.data, meta)
        emit(EventType.ASSET_WRITTEN, filename=name, file=name, kind=image.kind)
        return name

    async def _fall_back(
        self,
        run_id: str,
        reason: str,
        cause: str,
        breaker_forced: bool = False,
    ) -> RunOutcome:
        fallback = self.fallback.select()
        if fallback is None:
            error = f"{cause} + no fallback images"
            logger.error(f"Run {run_id}: {error}")
            self.bus.emit(EventType.RUN_ERROR, run_id, error=error)
            return RunOutcome(
                ok=False, run_id=run_id, reason="no_fallback", error=error,
                breaker=breaker_forced, status_code=503,
            )

        file = await simulate_run(self.bus, run_id, fallback, self.config.timings)
        return RunOutcome(
            ok=True, run_id=run_id, file=file, simulated=True,
            reason=reason, breaker=breaker_forced,
        )


# Singleton instance
_orchestrator: Optional[RunOrchestrator] = None


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def get_orchestrator() -> RunOrchestrator:
    """Get or create the global RunOrchestrator, wired to the other singletons."""
    global _orchestrator
    if _orchestrator is None:
        from tabloid.generator.replicate import get_generator
        from tabloid.prompts.vocabulary import get_prompt_templates, get_vocabulary
        from tabloid.runs.breaker import get_breaker
        from tabloid.runs.event_bus import get_event_bus

        store = get_artifact_store()
        config = OrchestratorConfig(
            deadline_s=float(os.environ.get("GENERATION_DEADLINE_S", DEADLINE_S)),
            simulate_only=_env_flag("SIMULATE_ONLY"),
        )
        _orchestrator = RunOrchestrator(
            generator=get_generator(),
            store=store,
            bus=get_event_bus(),
            breaker=get_breaker(),
            fallback=FallbackSelector(store),
            synthesizer=PromptSynthesizer(get_vocabulary(), get_prompt_templates()),
            config=config,
        )
        if config.simulate_only:
            logger.warning("SIMULATE_ONLY set - the generator will never be called")
    return _orchestrator
