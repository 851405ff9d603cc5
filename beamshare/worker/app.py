from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from beamshare.core.config import get_settings
from beamshare.core.logging import configure_logging
from beamshare.db.init_db import initialize_database
from beamshare.db.session import get_session_factory
from beamshare.worker.routes.control import router as control_router
from beamshare.worker.routes.jobs import router as jobs_router
from beamshare.worker.runtime import WorkerRuntime, build_worker_runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    runtime: WorkerRuntime = app.state.worker
    if settings.worker_autostart:
        runtime.control.start()
    yield
    runtime.control.close(timeout=settings.ffmpeg_timeout_seconds)


async def _http_error(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})


async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    error = f"{location}: {message}" if location else message
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"success": False, "error": error})


def create_worker_app(runtime: WorkerRuntime | None = None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=f"{settings.app_name} worker", lifespan=lifespan)
    app.state.worker = runtime or build_worker_runtime(settings, get_session_factory())
    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.include_router(control_router)
    app.include_router(jobs_router)
    return app
