"""Tabloid API - generation orchestration service.

Serves the run surface consumed by the gallery/3D pages:
- Generation and mutation runs with deadline, circuit breaker and fallback
- Server-Sent Events stream of run lifecycle events
- Stored artifacts under /out
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from tabloid import __version__
from tabloid.api.routes import control, generate, images, stream
from tabloid.persistence.artifact_store import get_artifact_store
from tabloid.prompts.vocabulary import get_prompt_templates, get_vocabulary
from tabloid.runs.breaker import get_breaker
from tabloid.runs.event_bus import get_event_bus
from tabloid.runs.orchestrator import get_orchestrator
from tabloid.runs.watcher import ArtifactWatcher

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: fail fast on broken word lists
    logger.info("Loading vocabulary...")
    vocabulary = get_vocabulary()
    logger.info(f"Loaded vocabulary: {vocabulary.counts()}")

    logger.info("Loading prompt templates...")
    get_prompt_templates()

    orchestrator = get_orchestrator()
    logger.info(
        f"Deadline {orchestrator.config.deadline_s:.0f}s, "
        f"simulate_only={orchestrator.config.simulate_only}"
    )

    store = get_artifact_store()
    watcher = ArtifactWatcher(store, get_event_bus())
    watcher.prime()
    watcher_task = asyncio.create_task(watcher.run(), name="artifact-watcher")
    logger.info(f"Tabloid API ready ({len(store.list_images())} stored images)")
    yield
    # Shutdown
    logger.info("Shutting down Tabloid API")
    watcher_task.cancel()
    await asyncio.gather(watcher_task, return_exceptions=True)
    get_event_bus().close_all()
    close = getattr(orchestrator.generator, "close", None)
    if close is not None:
        await close()


# Create FastAPI app
app = FastAPI(
    title="Tabloid API",
    description="""
## Generation orchestration

Every run races the image model against a deadline. Slow or failing
attempts trip a circuit breaker; while it is open, or when an attempt
fails, a stored artifact is replayed as a simulated run.

### Key Endpoints

- `POST /api/generate` - Fresh (or derived) generation run
- `POST /api/mutate` - Evolve a stored artifact (pass / distort / drift)
- `GET /api/stream` - Server-Sent Events of run lifecycle
- `GET /api/breaker` - Circuit breaker state
- `POST /api/breaker/reset` - Close the breaker
""",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(generate.router)
app.include_router(stream.router)
app.include_router(images.router)
app.include_router(control.router)

app.mount("/out", StaticFiles(directory=get_artifact_store().root), name="out")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Tabloid API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "generate": "/api/generate",
            "mutate": "/api/mutate",
            "stream": "/api/stream",
            "images": "/api/images",
            "prompt": "/api/prompt",
            "breaker": "/api/breaker",
            "control": "/api/control",
            "artifacts": "/out",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    breaker = get_breaker().snapshot()
    return {
        "status": "healthy",
        "breaker_open": breaker.open,
        "subscribers": get_event_bus().subscriber_count,
        "images_stored": len(get_artifact_store().list_images()),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tabloid.api.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 4000)),
        reload=False,
    )
