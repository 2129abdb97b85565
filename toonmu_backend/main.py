import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .app.config import PORT, Settings
from .app.errors import PersistenceError, ValidationError
from .app.models import GenerateToonRequest
from .app.orchestrator import GenerationOrchestrator
from .app.state import JobStore
from .app.storage import LocalBlobStore, make_blob_store
from .app.tasks import TaskSupervisor
from .providers import build_providers

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("toonmu-backend")


def create_app(
    settings: Optional[Settings] = None,
    jobs=None,
    blobs=None,
    providers=None,
    orchestrator=None,
) -> FastAPI:
    """Build the app with its collaborators constructed once, up front.

    Anything not passed in is built from ``settings`` (``Settings.from_env()``
    by default); tests pass fakes instead.
    """
    settings = settings or Settings.from_env()
    if jobs is None:
        jobs = JobStore.from_url(settings.database_url)
    if blobs is None:
        blobs = make_blob_store(settings)
    if orchestrator is None:
        if providers is None:
            providers = build_providers(settings)
        orchestrator = GenerationOrchestrator(
            providers, jobs, blobs, upload_timeout=settings.upload_timeout_seconds
        )
    supervisor = TaskSupervisor()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        names = [getattr(p, "name", "?") for p in getattr(orchestrator, "providers", [])]
        logger.info("Image providers in order: %s", ", ".join(names) or "none")
        yield
        await supervisor.shutdown(settings.shutdown_grace_seconds)

    app = FastAPI(title="Toonmu Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.jobs = jobs
    app.state.blobs = blobs
    app.state.orchestrator = orchestrator
    app.state.supervisor = supervisor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    def too_large():
        return JSONResponse({"error": "Payload too large."}, status_code=413)

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > settings.max_body_bytes:
            return too_large()
        return await call_next(request)

    async def read_body(request: Request):
        """Collect the body, or return None once it passes the size ceiling.

        Chunked uploads carry no Content-Length, so the bytes are counted here.
        """
        chunks = []
        size = 0
        async for chunk in request.stream():
            size += len(chunk)
            if size > settings.max_body_bytes:
                return None
            chunks.append(chunk)
        return b"".join(chunks)

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse({"error": exc.message}, status_code=400)

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "Toonmu Backend is running!"

    @app.post("/generate-toon", status_code=202)
    async def generate_toon(request: Request):
        logger.info("Received request for /generate-toon")
        raw = await read_body(request)
        if raw is None:
            return too_large()
        try:
            body = json.loads(raw)
        except ValueError:
            body = None
        req = GenerateToonRequest.model_validate(body if isinstance(body, dict) else {})
        if req.missing_fields():
            raise ValidationError("Missing imageDataUrl, stylePrompt, or userId")

        try:
            # The style prompt doubles as the style name.
            creation_id = await run_in_threadpool(jobs.create, req.user_id, req.style_prompt)
        except PersistenceError as e:
            logger.error("Failed to create job record: %s", e.message)
            return JSONResponse({"error": "Could not create generation record."}, status_code=500)
        logger.info("[%s] Job created for user %s.", creation_id, req.user_id)

        supervisor.spawn(
            orchestrator.run(creation_id, req.image_data_url, req.style_prompt, req.user_id),
            name=f"generate-{creation_id}",
        )
        return JSONResponse({"creationId": creation_id}, status_code=202)

    @app.get("/creation-status/{creation_id}")
    def creation_status(creation_id: str):
        try:
            job = jobs.get(creation_id)
        except PersistenceError as e:
            logger.error("[%s] Status lookup failed: %s", creation_id, e.message)
            job = None
        if job is None:
            return JSONResponse({"error": "Creation not found."}, status_code=404)
        return job.model_dump(mode="json")

    # Dev-only static file serving for local storage
    if isinstance(blobs, LocalBlobStore):
        app.mount("/assets", StaticFiles(directory=blobs.root), name="assets")

    return app


def main():
    uvicorn.run(create_app(), host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
