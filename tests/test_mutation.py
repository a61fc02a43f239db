from __future__ import annotations

import random

import pytest

from tabloid.prompts.mutation import (
    CHANGE_BUDGET,
    MUTABLE_FIELDS,
    MalformedRequestError,
    derive_lineage,
    mutate,
    parse_mode,
    pick_different,
)
from tabloid.prompts.schemas import PICK_FIELDS, ArtifactMetadata, MutationMode, Pick
from tabloid.prompts.vocabulary import Vocabulary, VocabularyError, read_lines

PARENT = Pick(atmosphere="tense", gossip="feud", people="a chef", places="a yacht", style="grainy")


@pytest.mark.parametrize("mode, count", [("pass", 1), ("distort", 2), ("drift", 3)])
def test_mode_changes_exact_number_of_fields(vocabulary: Vocabulary, mode: str, count: int):
    for seed in range(30):
        result = mutate(PARENT, parse_mode(mode), vocabulary, random.Random(seed))
        assert len(result.chosen_fields) == count
        assert len(set(result.chosen_fields)) == count
        # Lists here have 3+ words, so 20 redraws find a new value
        assert sorted(result.changed_fields) == sorted(result.chosen_fields)
        for name in PICK_FIELDS:
            if name not in result.changed_fields:
                assert result.pick.get(name) == PARENT.get(name)


def test_style_is_never_mutated(vocabulary: Vocabulary):
    for seed in range(50):
        result = mutate(PARENT, MutationMode.DRIFT, vocabulary, random.Random(seed))
        assert result.pick.style == "grainy"
        assert "style" not in result.chosen_fields
        assert set(result.chosen_fields) <= set(MUTABLE_FIELDS)


def test_mutated_values_stay_in_vocabulary(vocabulary: Vocabulary):
    for seed in range(30):
        result = mutate(PARENT, MutationMode.DRIFT, vocabulary, random.Random(seed))
        for name in PICK_FIELDS:
            assert vocabulary.contains(name, result.pick.get(name))


def test_stale_parent_values_are_normalized_first(vocabulary: Vocabulary):
    stale = PARENT.replace(style="watercolour", places="the moon")
    result = mutate(stale, MutationMode.PASS, vocabulary, random.Random(3))
    assert vocabulary.contains("style", result.pick.style)
    assert vocabulary.contains("places", result.pick.places)


def test_single_word_list_reports_no_change():
    vocab = Vocabulary(lists={
        "atmosphere": ["tense"], "gossip": ["feud"], "people": ["a chef"],
        "places": ["a yacht"], "style": ["grainy"],
    })
    result = mutate(PARENT, MutationMode.DRIFT, vocab, random.Random(1))
    assert result.pick == PARENT
    assert result.changed_fields == []
    assert len(result.chosen_fields) == 3


def test_pick_different_is_bounded():
    class Stubborn(random.Random):
        def choice(self, seq):
            return seq[0]

    assert pick_different(["a", "b"], "a", Stubborn(), retries=5) == "a"
    assert pick_different(["a", "b"], "b", Stubborn()) == "a"
    assert pick_different(["only"], "other") == "only"
    assert pick_different([], "kept") == "kept"


@pytest.mark.parametrize("bad", ["teleport", "", None, "PASS", 3])
def test_unknown_modes_are_rejected(bad):
    with pytest.raises(MalformedRequestError) as exc:
        parse_mode(bad)
    assert exc.value.status_code == 400


def test_change_budget_covers_every_mode():
    assert set(CHANGE_BUDGET) == set(MutationMode)


def test_lineage_increments_generation():
    parent = ArtifactMetadata(**PARENT.model_dump(), generation=4)
    lineage = derive_lineage(parent, "img_9.png", MutationMode.DISTORT, ["gossip", "people"])
    assert lineage.parent == "img_9.png"
    assert lineage.generation == 5
    assert lineage.mutation == "distort"
    assert lineage.mutation_fields == ["gossip", "people"]


def test_normalize_pick_is_idempotent(vocabulary: Vocabulary):
    rng = random.Random(11)
    once = vocabulary.normalize_pick({"people": "nobody", "style": "grainy"}, rng)
    twice = vocabulary.normalize_pick(once.model_dump(), rng)
    assert once == twice
    assert once.style == "grainy"


def test_random_pick_draws_from_every_list(vocabulary: Vocabulary):
    pick = vocabulary.random_pick(random.Random(2))
    for name in PICK_FIELDS:
        assert vocabulary.contains(name, pick.get(name))


def test_empty_word_list_is_an_error(tmp_path):
    path = tmp_path / "people.txt"
    path.write_text("\n   \n")
    with pytest.raises(VocabularyError):
        read_lines(path)
    with pytest.raises(VocabularyError):
        read_lines(tmp_path / "missing.txt")


def test_word_lists_are_trimmed(tmp_path):
    path = tmp_path / "places.txt"
    path.write_text("  a   car park \n\na yacht\n")
    assert read_lines(path) == ["a car park", "a yacht"]


def test_inline_vocabulary_requires_every_field():
    with pytest.raises(VocabularyError):
        Vocabulary(lists={"people": ["a chef"]})


def test_packaged_word_lists_load():
    vocab = Vocabulary()
    counts = vocab.counts()
    assert set(counts) == set(PICK_FIELDS)
    assert all(n > 0 for n in counts.values())
