"""Prompt synthesizer: turns a pick into the image prompt and a headline.

Two entry shapes:
- fresh: every field drawn from the vocabulary
- derived: the parent's pick mutated (see mutation.py) with lineage attached
"""

import logging
import random
import re
from dataclasses import dataclass, field
from typing import Optional

from tabloid.prompts.mutation import Lineage, derive_lineage, mutate, parse_mode
from tabloid.prompts.schemas import PICK_FIELDS, ArtifactMetadata, MutationMode, Pick, PromptTemplates
from tabloid.prompts.vocabulary import Vocabulary

logger = logging.getLogger(__name__)

MAX_HEADLINE_CHARS = 120

_QUOTES_RE = re.compile(r"^[\"“”'`]+|[\"“”'`]+$")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class Synthesis:
    """Everything the generator and metadata writer need for one run."""
    pick: Pick
    prompt: str
    lineage: Lineage = field(default_factory=Lineage)

    @property
    def is_mutation(self) -> bool:
        return self.lineage.mutation is not None


def build_prompt(pick: Pick, templates: PromptTemplates) -> str:
    """Render the snapshot prompt, repeating weighted field lines."""
    labels = {
        "places": "Place",
        "people": "People",
        "atmosphere": "Atmosphere",
        "gossip": "Gossip",
        "style": "Style",
    }
    body = []
    for name in ("places", "people", "atmosphere", "gossip", "style"):
        weight = max(int(templates.weights.get(name, 1)), 1)
        body.extend(f"{labels[name]}: {pick.get(name)}" for _ in range(weight))

    sections = ["\n".join(templates.header), "\n".join(body)]
    if templates.footer:
        sections.append("\n".join(templates.footer))
    return "\n\n".join(sections).strip()


def build_headline(pick: Pick, templates: PromptTemplates, rng: Optional[random.Random] = None) -> str:
    values = {
        name: pick.get(name) or templates.headline_defaults.get(name, "")
        for name in PICK_FIELDS
    }
    template = (rng or random).choice(templates.headline_templates)
    return template.format(**values)


def clean_headline(raw, fallback: str) -> str:
    """Normalize a model-written headline to a single short line."""
    if not raw or not isinstance(raw, str):
        return fallback
    first_line = raw.splitlines()[0] if raw.splitlines() else ""
    cleaned = _WHITESPACE_RE.sub(" ", _QUOTES_RE.sub("", first_line)).strip()
    if not cleaned:
        return fallback
    if len(cleaned) > MAX_HEADLINE_CHARS:
        return cleaned[:MAX_HEADLINE_CHARS - 3].strip() + "…"
    return cleaned


class PromptSynthesizer:
    """Builds picks and prompts from the vocabulary and templates."""

    def __init__(
        self,
        vocabulary: Vocabulary,
        templates: PromptTemplates,
        rng: Optional[random.Random] = None,
    ):
        self.vocabulary = vocabulary
        self.templates = templates
        self.rng = rng or random.Random()

    def fresh(self) -> Synthesis:
        pick = self.vocabulary.random_pick(self.rng)
        return Synthesis(pick=pick, prompt=build_prompt(pick, self.templates))

    def derive(
        self,
        parent_meta: ArtifactMetadata,
        mode: MutationMode,
        parent_file: Optional[str] = None,
    ) -> Synthesis:
        mode = parse_mode(mode)
        result = mutate(parent_meta.pick, mode, self.vocabulary, self.rng)
        lineage = derive_lineage(parent_meta, parent_file, mode, result.changed_fields)
        logger.info(
            f"Derived pick from {parent_file or 'inline parent'} "
            f"(mode={mode.value}, generation={lineage.generation}, changed={result.changed_fields})"
        )
        return Synthesis(
            pick=result.pick,
            prompt=build_prompt(result.pick, self.templates),
            lineage=lineage,
        )

    def synthesize(
        self,
        parent_meta: Optional[ArtifactMetadata] = None,
        parent_file: Optional[str] = None,
        mode: Optional[MutationMode] = None,
    ) -> Synthesis:
        """Fresh synthesis unless both a parent and a mode are given."""
        if parent_meta is not None and mode is not None:
            return self.derive(parent_meta, mode, parent_file)
        return self.fresh()

    def headline(self, pick: Pick) -> str:
        return build_headline(pick, self.templates, self.rng)
