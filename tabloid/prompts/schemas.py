"""
Pydantic schemas for picks, prompt templates and artifact metadata.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


PICK_FIELDS = ("atmosphere", "gossip", "people", "places", "style")


class MutationMode(str, Enum):
    """How strongly a child pick departs from its parent."""
    PASS = "pass"
    DISTORT = "distort"
    DRIFT = "drift"


class Pick(BaseModel):
    """Categorical selection driving prompt construction.

    Frozen: a run gets a new Pick, it never edits an existing one.
    """

    model_config = ConfigDict(frozen=True)

    atmosphere: str = ""
    gossip: str = ""
    people: str = ""
    places: str = ""
    style: str = ""

    def get(self, field: str) -> str:
        return getattr(self, field)

    def replace(self, **changes: str) -> "Pick":
        return self.model_copy(update=changes)


class PromptTemplates(BaseModel):
    """Prompt and headline templates loaded from templates.yaml."""

    header: list[str] = Field(..., description="Lines opening every prompt")
    footer: list[str] = Field(default_factory=list, description="Lines closing every prompt")
    weights: dict[str, int] = Field(
        default_factory=dict,
        description="Field -> how many times its line is repeated in the prompt",
    )
    headline_templates: list[str] = Field(
        ..., description="str.format templates over the pick fields"
    )
    headline_defaults: dict[str, str] = Field(
        default_factory=dict,
        description="Substitutes for empty pick fields in headlines",
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ArtifactMetadata(BaseModel):
    """Metadata record persisted next to each generated image.

    Serialized with the camelCase keys the gallery pages read.
    Extra keys in hand-edited files are kept rather than rejected.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    atmosphere: Optional[str] = ""
    gossip: Optional[str] = ""
    people: Optional[str] = ""
    places: Optional[str] = ""
    style: Optional[str] = ""
    prompt: Optional[str] = ""
    headline: Optional[str] = ""
    created_at: str = Field(default_factory=_now_iso, alias="createdAt")

    # Lineage
    parent: Optional[str] = Field(None, description="File name of the parent artifact")
    generation: int = Field(0, ge=0, description="0 for roots, parent + 1 for children")
    mutation: Optional[str] = Field(None, description="MutationMode value used to derive this artifact")
    mutation_fields: list[str] = Field(default_factory=list, alias="mutationFields")

    @field_validator("generation", mode="before")
    @classmethod
    def _coerce_generation(cls, value):
        # Hand-edited files carry nulls and strings here
        if isinstance(value, bool) or not isinstance(value, int):
            try:
                value = int(value)
            except (TypeError, ValueError):
                return 0
        return max(value, 0)

    @field_validator("mutation_fields", mode="before")
    @classmethod
    def _coerce_fields(cls, value):
        return value if isinstance(value, list) else []

    @property
    def pick(self) -> Pick:
        return Pick(
            atmosphere=self.atmosphere or "",
            gossip=self.gossip or "",
            people=self.people or "",
            places=self.places or "",
            style=self.style or "",
        )

    def summary_prompt(self) -> str:
        """Stored prompt, or the pick fields joined when the prompt is missing."""
        if self.prompt and self.prompt.strip():
            return self.prompt.strip()
        parts = [self.places, self.people, self.atmosphere, self.gossip, self.style]
        parts = [p.strip() if p else "" for p in parts]
        return ", ".join(p for p in parts if p)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
