# src/vidflow/web/main.py
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from vidflow.bootstrap import Services, bootstrap_all, bootstrap_status, build_services
from vidflow.core.errors import (
    BudgetCapOutOfRange,
    ConcurrentModification,
    MalformedDiff,
    NotFoundError,
    NotLockHolder,
    VidflowError,
)
from vidflow.core.logging import get_logger, init_logging
from vidflow.store.db import dispose_engine

from .routes import router

logger = get_logger(__name__)


def _status_for(exc: VidflowError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConcurrentModification | NotLockHolder):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, MalformedDiff | BudgetCapOutOfRange):
        # Unprocessable content
        return 422
    if exc.error_code == VidflowError.error_code:
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


async def vidflow_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, VidflowError)
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("http.error", extra={"path": request.url.path, "error": exc.message})
    return JSONResponse(
        status_code=status_code,
        content={"error_code": exc.error_code, "message": exc.message},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application.

    Without ``services`` the lifespan bootstraps the database and wires the
    default components.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is None:
            init_logging()
            await bootstrap_all()
            app.state.services = build_services()
            yield
            await dispose_engine()
        else:
            yield

    app = FastAPI(
        title="Vidflow",
        description="Agent pipeline orchestration for scene-based video production",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(VidflowError, vidflow_error_handler)
    app.include_router(router)

    @app.get("/health")
    async def health_check() -> dict[str, object]:
        return {"status": "healthy", "bootstrap": bootstrap_status()}

    return app


app = create_app()
