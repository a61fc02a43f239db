"""Mutation engine: derive a child pick from a parent artifact.

The parent's stored metadata is first normalized onto the vocabulary
(stale or hand-edited values are replaced), then a mode-dependent number
of mutable fields is redrawn. `style` is held stable in every mode so
that an evolving lineage keeps its look.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from tabloid.prompts.schemas import ArtifactMetadata, MutationMode, Pick
from tabloid.prompts.vocabulary import Vocabulary

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("gossip", "places", "atmosphere", "people")

CHANGE_BUDGET: dict[MutationMode, int] = {
    MutationMode.PASS: 1,
    MutationMode.DISTORT: 2,
    MutationMode.DRIFT: 3,
}

# Draws before accepting an unchanged value
PICK_DIFFERENT_RETRIES = 20


class MalformedRequestError(ValueError):
    """Mutation request rejected before any orchestration begins."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class MutationResult:
    pick: Pick
    changed_fields: list[str] = field(default_factory=list)
    chosen_fields: list[str] = field(default_factory=list)


@dataclass
class Lineage:
    """Lineage fields written into a derived artifact's metadata."""
    parent: Optional[str] = None
    generation: int = 0
    mutation: Optional[str] = None
    mutation_fields: list[str] = field(default_factory=list)


def parse_mode(mode) -> MutationMode:
    """Validate a caller-supplied mode string."""
    if isinstance(mode, MutationMode):
        return mode
    try:
        return MutationMode(mode)
    except ValueError:
        allowed = ", ".join(m.value for m in MutationMode)
        raise MalformedRequestError(f"mode must be one of: {allowed} (got {mode!r})")


def pick_different(
    words: list[str],
    current: str,
    rng: Optional[random.Random] = None,
    retries: int = PICK_DIFFERENT_RETRIES,
) -> str:
    """Draw a word that differs from `current` when the list allows it.

    Bounded retry, not exhaustive search: after `retries` draws the last
    draw is accepted even if it equals `current`.
    """
    rng = rng or random
    if not words:
        return current
    if len(words) == 1:
        return words[0]

    candidate = current
    attempts = 0
    while candidate == current and attempts < retries:
        candidate = rng.choice(words)
        attempts += 1
    return candidate


def mutate(
    parent: Pick,
    mode: MutationMode,
    vocabulary: Vocabulary,
    rng: Optional[random.Random] = None,
) -> MutationResult:
    """Redraw CHANGE_BUDGET[mode] distinct mutable fields of `parent`.

    `parent` is normalized onto the vocabulary first. The returned
    `changed_fields` lists only fields whose value actually differs.
    """
    rng = rng or random
    mode = parse_mode(mode)
    base = vocabulary.normalize_pick(parent.model_dump(), rng)

    budget = min(CHANGE_BUDGET[mode], len(MUTABLE_FIELDS))
    chosen = rng.sample(list(MUTABLE_FIELDS), budget)

    changes = {}
    for name in chosen:
        changes[name] = pick_different(vocabulary.words(name), base.get(name), rng)

    child = base.replace(**changes)
    changed = [name for name in chosen if child.get(name) != base.get(name)]

    if len(changed) < len(chosen):
        logger.debug(
            f"Mutation {mode.value}: {len(chosen) - len(changed)} chosen field(s) kept their value"
        )
    return MutationResult(pick=child, changed_fields=changed, chosen_fields=chosen)


def derive_lineage(
    parent_meta: ArtifactMetadata,
    parent_file: Optional[str],
    mode: MutationMode,
    changed_fields: list[str],
) -> Lineage:
    return Lineage(
        parent=parent_file,
        generation=parent_meta.generation + 1,
        mutation=mode.value,
        mutation_fields=list(changed_fields),
    )
