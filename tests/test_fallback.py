from __future__ import annotations

import random

import pytest

from tabloid.persistence.artifact_store import ArtifactStore
from tabloid.runs.event_bus import EventBus
from tabloid.runs.fallback import FallbackArtifact, FallbackSelector
from tabloid.runs.simulation import SimulationTimings, simulate_run
from tests.conftest import seed_artifact


def test_empty_store_has_no_fallback(store: ArtifactStore):
    assert FallbackSelector(store).select() is None
    assert FallbackSelector(store).select_with_metadata() is None


def test_prefers_images_with_metadata(store: ArtifactStore):
    seed_artifact(store, "img_1.png")
    seed_artifact(store, "img_2.png", with_meta=False)
    seed_artifact(store, "img_3.png", with_meta=False)

    selector = FallbackSelector(store, recent_window=0, rng=random.Random(0))
    picks = {selector.select().file for _ in range(20)}
    assert picks == {"img_1.png"}


def test_unparseable_metadata_is_not_eligible(store: ArtifactStore):
    seed_artifact(store, "img_1.png")
    seed_artifact(store, "img_2.png", with_meta=False)
    (store.root / "img_2.json").write_text("{not json", encoding="utf-8")

    selector = FallbackSelector(store, recent_window=0, rng=random.Random(1))
    assert {selector.select().file for _ in range(20)} == {"img_1.png"}


def test_falls_back_to_any_image_without_metadata(store: ArtifactStore):
    seed_artifact(store, "img_1.png", with_meta=False)
    chosen = FallbackSelector(store).select()
    assert chosen == FallbackArtifact(file="img_1.png", meta=None)
    assert chosen.prompt == ""


def test_recent_picks_are_avoided_while_possible(store: ArtifactStore):
    for i in range(3):
        seed_artifact(store, f"img_{i}.png")

    selector = FallbackSelector(store, recent_window=2, rng=random.Random(5))
    first = selector.select().file
    second = selector.select().file
    third = selector.select().file
    assert len({first, second, third}) == 3


def test_single_image_is_served_repeatedly(store: ArtifactStore):
    seed_artifact(store, "img_1.png")
    selector = FallbackSelector(store, recent_window=5)
    assert [selector.select().file for _ in range(3)] == ["img_1.png"] * 3


def test_fallback_prompt_uses_stored_prompt_or_fields(store: ArtifactStore):
    seed_artifact(store, "img_1.png", prompt="a stored prompt")
    seed_artifact(store, "img_2.png", prompt="")
    by_file = {name: store.read_metadata(name) for name in ("img_1.png", "img_2.png")}

    assert FallbackArtifact("img_1.png", by_file["img_1.png"]).prompt == "a stored prompt"
    assert FallbackArtifact("img_2.png", by_file["img_2.png"]).prompt == (
        "a yacht, a chef, tense, feud, grainy"
    )


@pytest.mark.asyncio
async def test_simulated_run_event_order(store: ArtifactStore, bus: EventBus):
    seed_artifact(store, "img_7.png", prompt="replayed")
    sub = bus.subscribe()
    fallback = FallbackSelector(store).select()

    file = await simulate_run(bus, "r9", fallback, SimulationTimings.instant())

    assert file == "img_7.png"
    messages = [await sub.get(timeout=1) for _ in range(6)]
    assert [m["type"] for m in messages] == [
        "sim_start", "picked", "mutated", "asset_written", "new", "run_done",
    ]
    assert messages[0]["prompt"] == "replayed"
    assert messages[2]["mutationMode"] == "fallback"
    assert messages[2]["mutationFields"] == []
    assert "runId" not in messages[4]
    assert messages[5]["simulated"] is True
    # mutated carries no file
    assert "file" not in messages[2]
    assert all(m["file"] == "img_7.png" for i, m in enumerate(messages) if i not in (0, 2))
    assert all(m.get("runId") == "r9" for i, m in enumerate(messages) if i != 4)


@pytest.mark.asyncio
async def test_simulated_run_writes_nothing(store: ArtifactStore, bus: EventBus):
    seed_artifact(store, "img_7.png")
    before = sorted(p.name for p in store.root.iterdir())
    await simulate_run(bus, "r1", FallbackSelector(store).select(), SimulationTimings.instant())
    assert sorted(p.name for p in store.root.iterdir()) == before
