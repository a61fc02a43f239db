from __future__ import annotations

import asyncio
import random
from pathlib import Path

import pytest

from tabloid.generator.base import GeneratedImage, GenerationInput, GeneratorError
from tabloid.persistence.artifact_store import ArtifactStore
from tabloid.prompts.schemas import ArtifactMetadata, PromptTemplates
from tabloid.prompts.synthesizer import PromptSynthesizer
from tabloid.prompts.vocabulary import Vocabulary, load_prompt_templates
from tabloid.runs.breaker import CircuitBreaker
from tabloid.runs.event_bus import EventBus
from tabloid.runs.fallback import FallbackSelector
from tabloid.runs.orchestrator import OrchestratorConfig, RunOrchestrator
from tabloid.runs.simulation import SimulationTimings

WORDS = {
    "atmosphere": ["tense", "giddy", "smug", "sleepy"],
    "gossip": ["feud", "engagement", "breakup", "reunion", "scandal"],
    "people": ["a pop star", "a footballer", "a chef"],
    "places": ["a car park", "a yacht", "a kebab shop"],
    "style": ["grainy", "overexposed"],
}


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SucceedingGenerator:
    def __init__(self, data: bytes = b"\x89PNG fake") -> None:
        self.data = data
        self.calls: list[GenerationInput] = []

    async def generate(self, request, emit=None):
        self.calls.append(request)
        if emit:
            emit("prediction_status", id="p1", status="succeeded")
        return GeneratedImage(data=self.data, kind="base64", job_id="p1")


class FailingGenerator:
    def __init__(self, message: str = "boom") -> None:
        self.message = message
        self.calls = 0

    async def generate(self, request, emit=None):
        self.calls += 1
        await asyncio.sleep(0)
        raise GeneratorError(self.message)


class HangingGenerator:
    """Never finishes on its own; records cancellation."""

    def __init__(self) -> None:
        self.calls = 0
        self.cancelled = 0

    async def generate(self, request, emit=None):
        self.calls += 1
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        raise AssertionError("unreachable")


async def passthrough_headline(pick, draft: str) -> str:
    return draft


@pytest.fixture
def vocabulary() -> Vocabulary:
    return Vocabulary(lists=WORDS)


@pytest.fixture
def templates() -> PromptTemplates:
    return load_prompt_templates()


@pytest.fixture
def synthesizer(vocabulary: Vocabulary, templates: PromptTemplates) -> PromptSynthesizer:
    return PromptSynthesizer(vocabulary, templates, rng=random.Random(7))


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "out")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(clock=clock)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


def seed_artifact(store: ArtifactStore, name: str, with_meta: bool = True, **meta_fields) -> str:
    if with_meta:
        fields = {
            "atmosphere": "tense",
            "gossip": "feud",
            "people": "a chef",
            "places": "a yacht",
            "style": "grainy",
            "prompt": "stored prompt",
        }
        fields.update(meta_fields)
        store.write_metadata(name, ArtifactMetadata(**fields))
    store.write_image(name, b"image")
    return name


@pytest.fixture
def make_orchestrator(store, bus, breaker, synthesizer):
    def _make(generator, deadline_s: float = 5.0, simulate_only: bool = False) -> RunOrchestrator:
        return RunOrchestrator(
            generator=generator,
            store=store,
            bus=bus,
            breaker=breaker,
            fallback=FallbackSelector(store, rng=random.Random(3)),
            synthesizer=synthesizer,
            config=OrchestratorConfig(
                deadline_s=deadline_s,
                cancel_grace_s=1.0,
                simulate_only=simulate_only,
                timings=SimulationTimings.instant(),
            ),
            headline_writer=passthrough_headline,
        )

    return _make
