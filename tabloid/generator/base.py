"""Generator base classes.

The orchestrator only sees this boundary: give a GenerationInput, get back
a GeneratedImage or a GeneratorError. Provider-specific response shapes are
normalized inside the adapter.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

# stage, payload -> None. Adapters report progress through this.
EmitFn = Callable[..., None]


class GeneratorError(RuntimeError):
    """The generation attempt failed (counts against the breaker)."""


@dataclass
class GenerationInput:
    prompt: str
    aspect_ratio: Optional[str] = None  # None -> the generator's configured ratio
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class GeneratedImage:
    """Image bytes plus where they came from."""
    data: bytes
    kind: str  # url | dataurl | base64
    job_id: Optional[str] = None
    source_url: Optional[str] = None


def noop_emit(stage: str, **payload: Any) -> None:
    return None


@runtime_checkable
class Generator(Protocol):
    """Protocol for image generator implementations.

    `generate` must honour asyncio cancellation: stop polling and make a
    best-effort attempt to cancel any remote job before re-raising.
    """

    async def generate(self, request: GenerationInput, emit: EmitFn = noop_emit) -> GeneratedImage: ...
