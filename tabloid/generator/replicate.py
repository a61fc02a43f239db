"""Replicate image generator over the HTTP predictions API.

Lifecycle of one generate() call:
1. POST /v1/models/{owner}/{name}/predictions -> prediction id
2. GET /v1/predictions/{id} every POLL_INTERVAL_S until succeeded/failed
3. Normalize the output to an image reference and fetch the bytes

Cancellation: when the awaiting task is cancelled after step 1, the remote
prediction is cancelled best-effort (POST /v1/predictions/{id}/cancel).
The remote job may still finish; a stray artifact is an accepted outcome.

Requires environment variables:
    REPLICATE_API_TOKEN: API token. Without it every attempt fails.
    REPLICATE_MODEL: owner/name slug (default google/nano-banana-pro)
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from tabloid.generator.base import (
    EmitFn,
    GeneratedImage,
    GenerationInput,
    GeneratorError,
    noop_emit,
)
from tabloid.generator.output import decode_inline, extract_image

logger = logging.getLogger(__name__)

REPLICATE_BASE_URL = "https://api.replicate.com"
DEFAULT_MODEL = "google/nano-banana-pro"
POLL_INTERVAL_S = 0.8

TERMINAL_FAILURES = ("failed", "canceled")


@dataclass
class Prediction:
    """Subset of a Replicate prediction the orchestrator cares about."""
    id: str
    status: str
    output: Any = None
    error: Optional[str] = None
    logs: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    urls: Optional[dict] = None

    @classmethod
    def from_json(cls, data: dict) -> "Prediction":
        return cls(
            id=data.get("id", ""),
            status=data.get("status", "starting"),
            output=data.get("output"),
            error=data.get("error"),
            logs=data.get("logs"),
            created_at=data.get("created_at"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            urls=data.get("urls"),
        )


class ReplicateGenerator:
    """Generator backed by a Replicate model."""

    def __init__(
        self,
        token: Optional[str],
        model: str = DEFAULT_MODEL,
        aspect_ratio: str = "9:16",
        poll_interval: float = POLL_INTERVAL_S,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.model = model
        self.aspect_ratio = aspect_ratio
        self.poll_interval = poll_interval
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=REPLICATE_BASE_URL,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(connect=10.0, read=30.0, write=30.0, pool=10.0),
            )
        return self._client

    # --- Remote job contract ---

    async def create(self, request: GenerationInput) -> Prediction:
        payload = {
            "input": {
                "prompt": request.prompt,
                "aspect_ratio": request.aspect_ratio or self.aspect_ratio,
                **request.extra,
            }
        }
        resp = await self.client.post(f"/v1/models/{self.model}/predictions", json=payload)
        resp.raise_for_status()
        return Prediction.from_json(resp.json())

    async def poll(self, prediction_id: str) -> Prediction:
        resp = await self.client.get(f"/v1/predictions/{prediction_id}")
        resp.raise_for_status()
        return Prediction.from_json(resp.json())

    async def cancel(self, prediction_id: str) -> bool:
        """Best-effort remote cancel. Never raises."""
        try:
            resp = await self.client.post(f"/v1/predictions/{prediction_id}/cancel")
            resp.raise_for_status()
            logger.info(f"Cancelled prediction {prediction_id}")
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Cancel of prediction {prediction_id} failed: {e}")
            return False

    async def fetch(self, url: str) -> bytes:
        # Output URLs live on a delivery CDN; the API token stays home
        req = self.client.build_request("GET", url)
        req.headers.pop("Authorization", None)
        resp = await self.client.send(req)
        resp.raise_for_status()
        return resp.content

    # --- Generator protocol ---

    async def generate(self, request: GenerationInput, emit: EmitFn = noop_emit) -> GeneratedImage:
        if not self.token:
            raise GeneratorError("REPLICATE_API_TOKEN not set")

        emit(
            "image_request",
            model=self.model,
            input={"prompt": request.prompt, "aspect_ratio": request.aspect_ratio or self.aspect_ratio},
        )

        prediction: Optional[Prediction] = None
        try:
            prediction = await self.create(request)
            emit(
                "prediction_created",
                id=prediction.id,
                status=prediction.status,
                created_at=prediction.created_at,
                urls=prediction.urls,
            )
            emit("prediction_status", id=prediction.id, status=prediction.status)

            last_status = prediction.status
            while True:
                prediction = await self.poll(prediction.id)
                if prediction.status != last_status:
                    last_status = prediction.status
                    emit(
                        "prediction_status",
                        id=prediction.id,
                        status=prediction.status,
                        started_at=prediction.started_at,
                        completed_at=prediction.completed_at,
                        logs=prediction.logs,
                        output=prediction.output,
                        urls=prediction.urls,
                    )
                if prediction.status == "succeeded":
                    break
                if prediction.status in TERMINAL_FAILURES:
                    raise GeneratorError(prediction.error or f"prediction {prediction.status}")
                await asyncio.sleep(self.poll_interval)

            ref = extract_image(prediction.output)
            if ref.kind == "url":
                data = await self.fetch(ref.value)
            elif ref.kind in ("dataurl", "base64"):
                data = decode_inline(ref)
            else:
                raise GeneratorError("No image found in prediction output")

            return GeneratedImage(
                data=data,
                kind=ref.kind,
                job_id=prediction.id,
                source_url=ref.value if ref.kind == "url" else None,
            )

        except asyncio.CancelledError:
            if prediction is not None and prediction.status not in ("succeeded", *TERMINAL_FAILURES):
                await self.cancel(prediction.id)
            raise
        except httpx.HTTPStatusError as e:
            body = e.response.text[:500] if e.response is not None else "no response body"
            raise GeneratorError(f"Replicate API error: {e.response.status_code} - {body}") from e
        except httpx.HTTPError as e:
            raise GeneratorError(f"Replicate HTTP error: {e}") from e

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()


# Singleton instance
_generator: Optional[ReplicateGenerator] = None


def get_generator() -> ReplicateGenerator:
    """Get or create the global ReplicateGenerator instance."""
    global _generator
    if _generator is None:
        token = os.environ.get("REPLICATE_API_TOKEN")
        if not token:
            logger.warning("REPLICATE_API_TOKEN not set - every real generation will fail over to fallback")
        _generator = ReplicateGenerator(
            token=token,
            model=os.environ.get("REPLICATE_MODEL", DEFAULT_MODEL),
            aspect_ratio=os.environ.get("REPLICATE_ASPECT_RATIO", "9:16"),
        )
    return _generator
