"""Vocabulary registry - loads the closed word lists behind every pick field.

Follows the same lazy-load singleton pattern as the template registry:
load once from disk, serve read-only, global instance.
"""

import logging
import random
import re
from pathlib import Path
from typing import Mapping, Optional

import yaml

from tabloid.prompts.schemas import PICK_FIELDS, Pick, PromptTemplates

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


class VocabularyError(RuntimeError):
    """A word list is missing or has no usable lines."""


def read_lines(path: Path) -> list[str]:
    """Read a word list: trimmed, blank lines dropped, whitespace collapsed."""
    if not path.exists():
        raise VocabularyError(f"Word list missing: {path}")

    raw = path.read_text(encoding="utf-8")
    lines = [
        _WHITESPACE_RE.sub(" ", line.strip())
        for line in raw.splitlines()
        if line.strip()
    ]
    if not lines:
        raise VocabularyError(f"No lines found in: {path}")
    return lines


class Vocabulary:
    """Closed vocabulary per pick field.

    Word lists are loaded from word_lists/{field}.txt. Every field in
    PICK_FIELDS must have a non-empty list.
    """

    def __init__(self, lists_dir: Optional[Path] = None, lists: Optional[Mapping[str, list[str]]] = None):
        self.lists_dir = lists_dir or (Path(__file__).parent / "word_lists")
        self._lists: dict[str, list[str]] = {}
        self._loaded = False
        if lists is not None:
            for field in PICK_FIELDS:
                if not lists.get(field):
                    raise VocabularyError(f"No words given for field: {field}")
                self._lists[field] = list(lists[field])
            self._loaded = True

    def load(self) -> None:
        """Load every word list. Raises VocabularyError on the first bad one."""
        if self._loaded:
            return

        for field in PICK_FIELDS:
            self._lists[field] = read_lines(self.lists_dir / f"{field}.txt")
            logger.debug(f"Loaded {len(self._lists[field])} words for {field}")

        self._loaded = True
        logger.info(
            f"Loaded vocabulary from {self.lists_dir}: "
            + ", ".join(f"{f}={len(self._lists[f])}" for f in PICK_FIELDS)
        )

    def words(self, field: str) -> list[str]:
        self.load()
        if field not in self._lists:
            raise KeyError(f"Unknown pick field: {field}")
        return self._lists[field]

    def contains(self, field: str, value: str) -> bool:
        return value in self.words(field)

    def random_pick(self, rng: Optional[random.Random] = None) -> Pick:
        """Draw every field uniformly from its list."""
        rng = rng or random
        return Pick(**{field: rng.choice(self.words(field)) for field in PICK_FIELDS})

    def normalize_value(self, field: str, value: Optional[str], rng: Optional[random.Random] = None) -> str:
        """Keep a value that belongs to the field's list, else draw a random one."""
        words = self.words(field)
        if value in words:
            return value
        return (rng or random).choice(words)

    def normalize_pick(self, raw: Mapping[str, Optional[str]], rng: Optional[random.Random] = None) -> Pick:
        """Map an externally sourced record onto the vocabulary.

        A no-op for picks already drawn from the vocabulary.
        """
        normalized = {}
        for field in PICK_FIELDS:
            value = raw.get(field)
            fixed = self.normalize_value(field, value, rng)
            if fixed != value:
                logger.debug(f"Normalized {field}: {value!r} -> {fixed!r}")
            normalized[field] = fixed
        return Pick(**normalized)

    def counts(self) -> dict[str, int]:
        self.load()
        return {field: len(words) for field, words in self._lists.items()}


def load_prompt_templates(path: Optional[Path] = None) -> PromptTemplates:
    """Load prompt/headline templates from YAML."""
    path = path or (Path(__file__).parent / "templates.yaml")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    templates = PromptTemplates.model_validate(data or {})
    logger.info(
        f"Loaded prompt templates from {path.name}: "
        f"{len(templates.headline_templates)} headline templates"
    )
    return templates


# Singleton instances
_vocabulary: Optional[Vocabulary] = None
_templates: Optional[PromptTemplates] = None


def get_vocabulary() -> Vocabulary:
    """Get or create the global Vocabulary instance."""
    global _vocabulary
    if _vocabulary is None:
        _vocabulary = Vocabulary()
        _vocabulary.load()
    return _vocabulary


def get_prompt_templates() -> PromptTemplates:
    """Get or create the global PromptTemplates instance."""
    global _templates
    if _templates is None:
        _templates = load_prompt_templates()
    return _templates
