"""FastAPI application embedding the media engine."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from media_engine.domain.errors import MediaError
from media_engine.domain.models import EngineSettings
from media_engine.security.problem_details import (
    CORRELATION_HEADER,
    media_error_response,
    new_correlation_id,
    problem_response,
)
from media_engine.security.uploads import validate_upload
from media_engine.services.cleanup_service import CleanupScheduler
from media_engine.services.media_service import MediaStorageService, generate_filename

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class RelocateRequest(BaseModel):
    """Move a staged asset into its permanent folder."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    source: str = Field(..., min_length=1, max_length=1024)
    directory: str = Field(..., min_length=1, max_length=1024)
    filename: str = Field(..., min_length=1, max_length=255)


def _ensure_correlation_id(request: Request) -> str:
    """Return existing correlation id or generate a new one."""
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = request.headers.get(CORRELATION_HEADER) or new_correlation_id()
        request.state.correlation_id = correlation_id
    return correlation_id


def get_media_service(request: Request) -> MediaStorageService:
    return request.app.state.media


def get_scheduler(request: Request) -> CleanupScheduler:
    return request.app.state.scheduler


def create_app(settings: Optional[EngineSettings] = None) -> FastAPI:
    """Build the application around one settings value."""
    settings = settings or EngineSettings.from_env()
    media = MediaStorageService(settings)
    scheduler = media.build_scheduler()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.cleanup_enabled:
            scheduler.start()
        else:
            logger.info("Temp uploads cleanup disabled (TMP_UPLOAD_CLEANUP_ENABLED=false)")
        try:
            yield
        finally:
            scheduler.stop()

    app = FastAPI(
        title="Media Engine",
        description="Size-bounded image storage",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.media = media
    app.state.scheduler = scheduler

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = _ensure_correlation_id(request)
        response = await call_next(request)
        response.headers.setdefault(CORRELATION_HEADER, correlation_id)
        return response

    @app.exception_handler(MediaError)
    async def media_error_handler(request: Request, exc: MediaError):
        logger.warning("%s (%s): %s", type(exc).__name__, exc.code, exc.message)
        return media_error_response(
            exc,
            correlation_id=_ensure_correlation_id(request),
            instance=str(request.url.path),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
            for error in exc.errors()
        ]
        return problem_response(
            status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            title="Invalid request",
            detail="Request validation failed",
            code="validation_error",
            correlation_id=_ensure_correlation_id(request),
            instance=str(request.url.path),
            extras={"errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        title, code = "HTTP error", "http_error"
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            title, code = "Resource not found", "not_found"
        logger.warning("HTTPException (%s): %s", exc.status_code, detail)
        return problem_response(
            status=exc.status_code,
            title=title,
            detail=detail,
            code=code,
            correlation_id=_ensure_correlation_id(request),
            instance=str(request.url.path),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return problem_response(
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            title="Internal server error",
            detail="Internal server error",
            code="internal_error",
            correlation_id=_ensure_correlation_id(request),
            instance=str(request.url.path),
        )

    @app.post("/api/v1/media/uploads", status_code=status.HTTP_201_CREATED)
    def upload_image(
        file: UploadFile = File(...),
        folder: Optional[str] = Form(None),
        filename: Optional[str] = Form(None),
        media: MediaStorageService = Depends(get_media_service),
    ):
        """Optimize an uploaded image and store it (staging area by default)."""
        raw = file.file.read(settings.max_upload_bytes + 1)
        file.file.close()
        media_type = validate_upload(raw, settings.max_upload_bytes)

        if folder:
            stored = media.save_image(raw, folder, filename or generate_filename())
        else:
            stored = media.stage_image(raw, filename)

        logger.info("Upload %s (%s) stored as %s", file.filename, media_type, stored.logical_path)
        return {
            "path": stored.logical_path,
            "url": stored.url,
            "size": stored.size,
            "width": stored.width,
            "height": stored.height,
            "quality": stored.quality,
        }

    @app.post("/api/v1/media/relocate")
    def relocate_asset(
        payload: RelocateRequest,
        media: MediaStorageService = Depends(get_media_service),
    ):
        """Move an asset and return its new location."""
        logical = media.relocate(payload.source, payload.directory, payload.filename)
        return {"path": logical, "url": media.public_url(logical)}

    @app.delete("/api/v1/media", status_code=status.HTTP_204_NO_CONTENT)
    def delete_asset(
        path: str = Query(..., min_length=1, max_length=1024),
        prune_directory: bool = Query(False),
        media: MediaStorageService = Depends(get_media_service),
    ):
        """Best-effort delete; a missing file is not an error."""
        if prune_directory:
            media.remove_asset_directory(path)
        else:
            media.unlink(path)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/v1/media/cleanup")
    def run_cleanup(
        max_age_hours: Optional[float] = Query(None, gt=0),
        scheduler: CleanupScheduler = Depends(get_scheduler),
    ):
        """Run one staging cleanup pass right now."""
        stats = scheduler.run_once(max_age_hours)
        return stats.to_dict()

    @app.get("/api/v1/media/cleanup/status")
    def cleanup_status(scheduler: CleanupScheduler = Depends(get_scheduler)):
        return scheduler.status()

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()
