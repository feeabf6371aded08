"""
FastAPI layer exposing the background-removal gateway.

Endpoints:
 - GET /ping
 - POST /remove-background
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from . import __version__, config
from .auth import API_KEY_HEADER, ApiKeyAuthenticator
from .errors import GatewayError, ValidationError
from .formatting import ResponseFormatter
from .pipeline import RemovalPipeline
from .rate_limit import SlidingWindowRateLimiter
from .remover import BackgroundRemover, RembgRemover
from .validation import IncomingImage, decode_data_uri, validate_upload

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "image"
# room for the JSON key, data-URI prefix and multipart boundaries
BODY_SLACK_BYTES = 64 * 1024


class Base64ImageRequest(BaseModel):
    base64Image: str


@dataclass
class RequestContext:
    requested_at: str
    client_ip: str
    user_agent: Optional[str]
    host: Optional[str]

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            requested_at=datetime.now(timezone.utc).isoformat(),
            client_ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            host=request.headers.get("host"),
        )


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _media_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";", 1)[0].strip().lower()


def body_limit(max_bytes: int) -> int:
    """Largest request body worth parsing: a base64-inflated image plus envelope slack."""
    return max_bytes * 4 // 3 + BODY_SLACK_BYTES


async def read_body_capped(request: Request, max_bytes: int) -> bytes:
    """
    Read the request body, giving up as soon as it passes `body_limit`.

    A declared ``Content-Length`` over the cap is rejected before anything is
    read; chunked bodies are cut off mid-stream.
    """
    limit = body_limit(max_bytes)
    too_large = ValidationError(f"File size exceeds {config.describe_size_limit(max_bytes)} limit")

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise too_large

    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            raise too_large
        chunks.append(chunk)
    return b"".join(chunks)


def _replay(request: Request, body: bytes) -> Request:
    """A copy of `request` whose receive channel yields the already-read body."""

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(request.scope, receive=receive)


async def _read_json_image(body: bytes, max_bytes: int) -> IncomingImage:
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc
    try:
        parsed = Base64ImageRequest.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError("No image provided") from exc
    return decode_data_uri(parsed.base64Image, max_bytes)


async def _read_multipart_image(request: Request, body: bytes, max_bytes: int) -> IncomingImage:
    try:
        form = await _replay(request, body).form()
    except (MultiPartException, StarletteHTTPException) as exc:
        raise ValidationError("Malformed multipart body") from exc

    upload = form.get(UPLOAD_FIELD)
    if not isinstance(upload, UploadFile):
        raise ValidationError("No file uploaded")
    try:
        # one byte past the limit is enough to tell it was exceeded
        data = await upload.read(max_bytes + 1)
    finally:
        await upload.close()
    return validate_upload(data, upload.content_type, upload.filename, max_bytes)


async def read_incoming_image(request: Request, max_bytes: int) -> IncomingImage:
    """Dispatch on the request content type: JSON data URI or multipart upload."""
    media_type = _media_type(request)
    if media_type not in ("application/json", "multipart/form-data"):
        raise ValidationError("No file uploaded")
    body = await read_body_capped(request, max_bytes)
    if media_type == "application/json":
        return await _read_json_image(body, max_bytes)
    return await _read_multipart_image(request, body, max_bytes)


def create_app(
    settings: Optional[config.Settings] = None,
    remover: Optional[BackgroundRemover] = None,
    limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    """
    Build the application.

    `remover` and `limiter` default to a rembg session and a limiter built from
    settings; tests pass their own.
    """
    settings = settings or config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    if limiter is None and settings.rate_limit_enabled:
        limiter = SlidingWindowRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    formatter = ResponseFormatter(settings.response_format)
    pipeline = RemovalPipeline(
        authenticator=ApiKeyAuthenticator(settings.api_key, enabled=settings.auth_enabled),
        limiter=limiter if settings.rate_limit_enabled else None,
        remover=remover or RembgRemover(settings.rembg_model),
        formatter=formatter,
        removal_timeout=settings.removal_timeout_seconds,
    )

    app = FastAPI(title="Background Removal Gateway", version=__version__)
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_request(request: Request, call_next):
        ctx = RequestContext.from_request(request)
        request.state.context = ctx
        logger.info(
            "%s %s at=%s ip=%s host=%s ua=%s",
            request.method,
            request.url.path,
            ctx.requested_at,
            ctx.client_ip,
            ctx.host,
            ctx.user_agent,
        )
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %d in %.0f ms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        ctx = getattr(request.state, "context", None)
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "%s %s failed with %d: %s (ip=%s ua=%s)",
            request.method,
            request.url.path,
            exc.status_code,
            exc.message,
            ctx.client_ip if ctx else client_ip(request),
            ctx.user_agent if ctx else None,
        )
        return formatter.error(exc.status_code, exc.message, headers=exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return formatter.error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.get("/ping")
    async def ping():
        return formatter.pong()

    @app.post("/remove-background")
    async def remove_background(request: Request):
        async def load_image() -> IncomingImage:
            return await read_incoming_image(request, settings.max_upload_bytes)

        return await pipeline.run(
            api_key=request.headers.get(API_KEY_HEADER),
            client_key=client_ip(request),
            load_image=load_image,
        )

    return app
