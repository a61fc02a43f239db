"""Generation routes: fresh runs, mutations and breaker control.

Endpoints:
    POST /api/generate          Fresh run, or derived when parentMeta + mutationMode given
    POST /api/mutate            Derived run from a stored parent artifact
    GET  /api/breaker           Circuit breaker snapshot
    POST /api/breaker/reset     Close the breaker and zero its counters

Responses: {"ok": true, "runId", "file", "simulated", ["reason"], ["breaker"]}
or {"ok": false, "runId", "error", "reason"} with 503 when no fallback
artifact exists and 500 for anything else.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from tabloid.prompts.mutation import MalformedRequestError
from tabloid.runs.breaker import CircuitBreaker, get_breaker
from tabloid.runs.orchestrator import RunOrchestrator, get_orchestrator
from tabloid.runs.schemas import RunOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])


# ============================================================================
# Request Schemas
# ============================================================================


class GenerateRequest(BaseModel):
    """Body of POST /api/generate. All fields optional."""

    model_config = ConfigDict(populate_by_name=True)

    run_id: Optional[str] = Field(None, alias="runId")
    parent_meta: Optional[Any] = Field(
        None, alias="parentMeta", description="Stored metadata of the artifact to evolve"
    )
    parent_file: Optional[str] = Field(None, alias="parentFile")
    mutation_mode: Optional[str] = Field(
        None, alias="mutationMode", examples=["pass", "distort", "drift"]
    )


class MutateRequest(BaseModel):
    """Body of POST /api/mutate."""

    parent: Optional[str] = Field(None, description="Image file name in the store")
    mode: Optional[str] = Field(None, examples=["pass", "distort", "drift"])


def _respond(outcome: RunOutcome) -> JSONResponse:
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_response())


def _rejected(e: MalformedRequestError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={"ok": False, "error": str(e), "reason": "malformed_request"},
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/generate")
async def generate(
    request: Optional[GenerateRequest] = None,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    """Run one generation; falls back to a stored artifact when needed."""
    request = request or GenerateRequest()
    try:
        run_request = orchestrator.prepare_generate(
            run_id=request.run_id,
            parent_meta=request.parent_meta,
            parent_file=request.parent_file,
            mutation_mode=request.mutation_mode,
        )
    except MalformedRequestError as e:
        raise _rejected(e)
    except ValueError as e:
        raise _rejected(MalformedRequestError(f"Invalid parentMeta: {e}"))

    outcome = await orchestrator.run_generation(run_request)
    return _respond(outcome)


@router.post("/mutate")
async def mutate(
    request: MutateRequest,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    """Evolve a stored artifact with mode pass, distort or drift."""
    try:
        run_request = orchestrator.prepare_mutate(request.parent, request.mode)
    except MalformedRequestError as e:
        raise _rejected(e)

    outcome = await orchestrator.run_generation(run_request)
    return _respond(outcome)


@router.get("/breaker")
async def breaker_status(breaker: CircuitBreaker = Depends(get_breaker)):
    """Current breaker state."""
    return breaker.snapshot().to_response()


@router.post("/breaker/reset")
async def reset_breaker(breaker: CircuitBreaker = Depends(get_breaker)):
    """Force the breaker closed and zero its counters."""
    breaker.reset()
    return {"ok": True}
