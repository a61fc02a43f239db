"""Run-side schemas: lifecycle events, run requests and outcomes.

These describe a single orchestration. Artifact metadata (what gets
persisted) lives in tabloid.prompts.schemas.
"""

import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from tabloid.prompts.schemas import ArtifactMetadata, MutationMode


class EventType(str, Enum):
    """Every message type published on the event stream."""
    RUN_START = "run_start"
    SIM_START = "sim_start"
    PICKED = "picked"
    MUTATED = "mutated"
    HEADLINE_READY = "headline_ready"
    IMAGE_REQUEST = "image_request"
    PREDICTION_CREATED = "prediction_created"
    PREDICTION_STATUS = "prediction_status"
    ASSET_WRITTEN = "asset_written"
    NEW = "new"
    RUN_DONE = "run_done"
    RUN_ERROR = "run_error"

    # Advisory UI messages; never read by breaker or fallback logic
    CONTROL_ORBIT = "control_orbit"
    CONTROL_PAN = "control_pan"
    CONTROL_ZOOM = "control_zoom"
    CONTROL_RESET = "control_reset"

    @property
    def is_control(self) -> bool:
        return self.value.startswith("control_")


def now_ms() -> int:
    return int(time.time() * 1000)


class RunEvent(BaseModel):
    """One message on the event stream.

    Wire form is flat: {"type", "runId", "ts", **payload}. Messages that
    belong to no run (e.g. "new", control_*) omit runId.
    """

    type: EventType
    run_id: Optional[str] = None
    ts: int = Field(default_factory=now_ms, description="Epoch milliseconds")
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"type": self.type.value}
        if self.run_id is not None:
            message["runId"] = self.run_id
        message["ts"] = self.ts
        for key, value in self.payload.items():
            if key not in message:
                message[key] = value
        return message


class RunPath(str, Enum):
    """Which breaker failure threshold a run is accounted against."""
    FRESH = "fresh"
    MUTATION = "mutation"


class RunRequest(BaseModel):
    """One generation request, already validated."""

    run_id: str = Field(default_factory=lambda: str(now_ms()))
    parent_meta: Optional[ArtifactMetadata] = None
    parent_file: Optional[str] = None
    mutation_mode: Optional[MutationMode] = None

    @property
    def path(self) -> RunPath:
        if self.parent_meta is not None and self.mutation_mode is not None:
            return RunPath.MUTATION
        return RunPath.FRESH


def mutation_run_id() -> str:
    return f"mut_{now_ms()}_{uuid.uuid4().hex[:4]}"


class RunOutcome(BaseModel):
    """Structured result handed back to the caller."""

    ok: bool
    run_id: str
    file: Optional[str] = None
    simulated: bool = False
    reason: Optional[str] = Field(
        None,
        description="Why the run was simulated, or the machine-readable failure reason",
    )
    breaker: bool = Field(False, description="True when an open breaker forced the fallback")
    error: Optional[str] = None
    status_code: int = 200

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": self.ok, "runId": self.run_id}
        if self.ok:
            body["file"] = self.file
            body["simulated"] = self.simulated
        else:
            body["error"] = self.error
        if self.reason:
            body["reason"] = self.reason
        if self.breaker:
            body["breaker"] = True
        return body


class BreakerSnapshot(BaseModel):
    """Point-in-time view of the circuit breaker."""

    open: bool
    open_until: float = Field(..., description="Epoch seconds; 0 when never tripped")
    slow_count: int
    fail_count: int

    def to_response(self) -> dict[str, Any]:
        return {
            "open": self.open,
            "openUntil": int(self.open_until * 1000),
            "slowCount": self.slow_count,
            "failCount": self.fail_count,
        }
