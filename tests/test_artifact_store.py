from __future__ import annotations

import json

import pytest

from tabloid.persistence.artifact_store import ArtifactStore, is_image_name, metadata_name
from tabloid.prompts.schemas import ArtifactMetadata
from tabloid.runs.event_bus import EventBus
from tabloid.runs.watcher import ArtifactWatcher
from tests.conftest import seed_artifact


def test_image_name_rules():
    assert is_image_name("img_1.png")
    assert is_image_name("img_1.JPEG")
    assert is_image_name("img_1.webp")
    assert not is_image_name("img_1.json")
    assert not is_image_name("._img_1.png")
    assert not is_image_name(".DS_Store")
    assert metadata_name("img_1.jpg") == "img_1.json"


def test_listing_is_most_recent_first(store: ArtifactStore):
    for name in ("img_100.png", "img_300.png", "img_200.png"):
        seed_artifact(store, name, with_meta=False)
    (store.root / "notes.txt").write_text("x")
    assert store.list_images() == ["img_300.png", "img_200.png", "img_100.png"]


def test_images_with_metadata(store: ArtifactStore):
    seed_artifact(store, "img_1.png")
    seed_artifact(store, "img_2.png", with_meta=False)
    assert store.list_images_with_metadata() == ["img_1.png"]


def test_write_artifact_round_trip(store: ArtifactStore):
    meta = ArtifactMetadata(
        atmosphere="tense", gossip="feud", people="a chef", places="a yacht", style="grainy",
        prompt="p", headline="h", parent="img_1.png", generation=2,
        mutation="distort", mutation_fields=["gossip", "people"],
    )
    name = store.new_artifact_name()
    store.write_artifact(name, b"bytes", meta)

    raw = json.loads((store.root / metadata_name(name)).read_text())
    assert raw["mutationFields"] == ["gossip", "people"]
    assert "createdAt" in raw
    assert store.image_path(name).read_bytes() == b"bytes"
    assert not list(store.root.glob(".*.part"))

    loaded = store.read_metadata(name)
    assert loaded.generation == 2
    assert loaded.pick.people == "a chef"


def test_failed_image_write_leaves_no_metadata(store: ArtifactStore, monkeypatch):
    def disk_full(image_name, data):
        (store.root / f".{image_name}.part").write_bytes(data[:2])
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(store, "write_image", disk_full)
    name = store.new_artifact_name()
    meta = ArtifactMetadata(prompt="p", headline="h")

    with pytest.raises(OSError):
        store.write_artifact(name, b"bytes", meta)

    assert not (store.root / metadata_name(name)).exists()
    assert not list(store.root.iterdir())


def test_artifact_names_never_repeat(store: ArtifactStore):
    names = [store.new_artifact_name() for _ in range(50)]
    assert len(set(names)) == 50
    assert all(n.startswith("img_") and n.endswith(".png") for n in names)


def test_hand_edited_metadata_is_tolerated(store: ArtifactStore):
    seed_artifact(store, "img_1.png", with_meta=False)
    (store.root / "img_1.json").write_text(
        json.dumps({"people": "a chef", "generation": "abc", "mutationFields": "gossip", "mood": "x"})
    )
    meta = store.read_metadata("img_1.png")
    assert meta.generation == 0
    assert meta.mutation_fields == []
    assert meta.to_json_dict()["mood"] == "x"


def test_missing_metadata_reads_as_none(store: ArtifactStore):
    assert store.read_metadata("img_404.png") is None


def test_watcher_announces_only_new_images(store: ArtifactStore, bus: EventBus):
    seed_artifact(store, "img_1.png")
    watcher = ArtifactWatcher(store, bus)
    watcher.prime()
    sub = bus.subscribe()

    assert watcher.poll_once() == []
    seed_artifact(store, "img_2.png")
    seed_artifact(store, "img_3.png")
    assert watcher.poll_once() == ["img_2.png", "img_3.png"]
    assert watcher.poll_once() == []

    assert sub.pending() == 2


def test_watcher_first_poll_sets_baseline(store: ArtifactStore, bus: EventBus):
    seed_artifact(store, "img_1.png")
    watcher = ArtifactWatcher(store, bus)
    assert watcher.poll_once() == []
    seed_artifact(store, "img_2.png")
    assert watcher.poll_once() == ["img_2.png"]
