"""Gallery routes: stored images and prompt previews.

Endpoints:
    GET  /api/images    Image files that have metadata, most recent first
    POST /api/prompt    Preview a pick + prompt without generating
"""

import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from tabloid.persistence.artifact_store import ArtifactStore, get_artifact_store
from tabloid.prompts.mutation import parse_mode
from tabloid.prompts.schemas import ArtifactMetadata
from tabloid.prompts.synthesizer import PromptSynthesizer
from tabloid.prompts.vocabulary import get_prompt_templates, get_vocabulary
from tabloid.runs.fallback import FallbackSelector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["images"])


class PromptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parent_meta: Optional[dict[str, Any]] = Field(None, alias="parentMeta")
    parent_file: Optional[str] = Field(None, alias="parentFile")
    mutation_mode: Optional[str] = Field(None, alias="mutationMode")


def prompt_source() -> str:
    """`out` replays stored prompts, `lists` synthesizes from the vocabulary."""
    simulate_only = os.environ.get("SIMULATE_ONLY", "").lower() in ("1", "true", "yes")
    return os.environ.get("PROMPT_SOURCE", "out" if simulate_only else "lists").lower()


def get_synthesizer() -> PromptSynthesizer:
    return PromptSynthesizer(get_vocabulary(), get_prompt_templates())


@router.get("/images")
async def list_images(store: ArtifactStore = Depends(get_artifact_store)):
    """List images that have metadata."""
    return {"images": store.list_images_with_metadata()}


@router.post("/prompt")
async def preview_prompt(
    request: Optional[PromptRequest] = None,
    store: ArtifactStore = Depends(get_artifact_store),
    synthesizer: PromptSynthesizer = Depends(get_synthesizer),
    source: str = Depends(prompt_source),
):
    """Build a pick + prompt the way the next run would."""
    request = request or PromptRequest()

    if source == "out":
        stored = FallbackSelector(store, recent_window=0).select_with_metadata()
        if stored is not None:
            return {
                "ok": True,
                "prompt": stored.prompt,
                "picked": stored.meta.pick.model_dump(),
                "sourceFile": stored.file,
            }
        logger.info("No stored metadata to replay, synthesizing from word lists")

    try:
        mode = parse_mode(request.mutation_mode) if request.mutation_mode else None
        parent = ArtifactMetadata.model_validate(request.parent_meta) if request.parent_meta else None
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail={"ok": False, "error": str(e), "reason": "malformed_request"},
        )

    synthesis = synthesizer.synthesize(parent_meta=parent, parent_file=request.parent_file, mode=mode)
    return {"ok": True, "prompt": synthesis.prompt, "picked": synthesis.pick.model_dump()}
