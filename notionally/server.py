"""FastAPI application exposing the local save endpoint to the browser userscript."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, Field

from . import __version__
from .app import NotionallyApp
from .errors import NotionallyError
from .logging_utils import REQUEST_ID, log_event
from .models import RawPost

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class SavePostRequest(RawPost):
    """Payload accepted by ``POST /save-post``: a post plus optional client diagnostics."""

    debug_info: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("debugInfo", "debug_info"),
    )


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", REQUEST_ID.get())


def _error_body(request: Request, *, error: str, message: str, code: str, **extra: Any) -> dict[str, Any]:
    return {
        "success": False,
        "error": error,
        "message": message,
        "code": code,
        "requestId": _request_id(request),
        **extra,
    }


def create_app(context: NotionallyApp) -> FastAPI:
    """Wire routes, middleware and error handlers around a composition root."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await context.start()
        try:
            yield
        finally:
            await context.stop()

    api = FastAPI(
        title="Notionally",
        description="Local server that saves LinkedIn posts to Notion",
        version=__version__,
        lifespan=lifespan,
    )
    api.state.context = context
    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    @api.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        token = REQUEST_ID.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            REQUEST_ID.reset(token)
        duration_ms = (time.perf_counter() - started) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id
        log_event(
            logger,
            logging.INFO,
            "http.request",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response

    @api.exception_handler(NotionallyError)
    async def handle_application_error(request: Request, exc: NotionallyError) -> JSONResponse:
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "%s: %s", exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(
                request,
                error=type(exc).__name__,
                message=exc.message,
                code=exc.code,
                context=exc.context,
            ),
        )

    @api.exception_handler(RequestValidationError)
    async def handle_schema_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
            for error in exc.errors()
        ]
        logger.warning("Rejected request payload: %s", details)
        return JSONResponse(
            status_code=400,
            content=_error_body(
                request,
                error="ValidationError",
                message="Invalid request payload",
                code="VALIDATION_ERROR",
                details=details,
            ),
        )

    @api.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error while serving %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                request,
                error="InternalError",
                message="An unexpected error occurred",
                code="INTERNAL_ERROR",
            ),
        )

    @api.get("/health")
    async def health() -> dict[str, Any]:
        return await context.health_snapshot()

    @api.post("/save-post")
    async def save_post(request: Request, payload: SavePostRequest) -> dict[str, Any]:
        started = time.perf_counter()
        request_id = _request_id(request)
        logger.info("Received post from %s", payload.author)
        result = await context.process_post(payload, request_id=request_id, client_debug=payload.debug_info)
        return {
            "success": True,
            "message": "Post saved to Notion",
            "data": result.to_dict(),
            "requestId": request_id,
            "duration": f"{(time.perf_counter() - started) * 1000:.0f}ms",
        }

    @api.post("/test-save")
    async def test_save(request: Request, payload: SavePostRequest) -> dict[str, Any]:
        return {
            "success": True,
            "message": "Test endpoint - data received",
            "received": {
                "author": payload.author,
                "textLength": len(payload.text),
                "videos": len(payload.videos),
                "images": len(payload.images),
                "urls": len(payload.urls),
                "hasDebugInfo": payload.debug_info is not None,
            },
            "services": context.services(),
            "requestId": _request_id(request),
        }

    @api.post("/investigation/comments")
    async def investigation_comments(request: Request, report: dict[str, Any] = Body(...)) -> dict[str, Any]:
        request_id = _request_id(request)
        report_id = await asyncio.to_thread(
            context.store.record_investigation,
            request_id=request_id,
            payload=report,
            page_url=report.get("pageUrl") or report.get("url"),
        )
        logger.info("Stored investigation report %s", report_id)
        return {"success": True, "id": report_id, "requestId": request_id}

    return api


def run_server(context: NotionallyApp) -> None:
    """Serve the API with uvicorn; logging stays under our own configuration."""
    server = context.config.server
    log_event(logger, logging.INFO, "server.starting", host=server.host, port=server.port)
    uvicorn.run(create_app(context), host=server.host, port=server.port, log_config=None)
