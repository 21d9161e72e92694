"""FastAPI middleware and request helpers shared by the webhook routers."""

from __future__ import annotations

import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import FormData, UploadFile
from starlette.responses import Response

from rtmail.common.logger import get_enhanced_logger

logger = get_enhanced_logger("rtmail.access")


def add_access_log_middleware(app: FastAPI) -> None:
    """Log one line per request with method, path, status and duration."""

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra_fields={
                "remote": request.client.host if request.client else None,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 3),
                "user_agent": request.headers.get("user-agent"),
            },
        )
        return response


def enforce_body_limit(request: Request, max_bytes: int) -> None:
    """Reject requests whose declared Content-Length exceeds ``max_bytes``.

    Raises:
        HTTPException 413 if the body is too large, 400 if the header is garbage
    """
    content_length = request.headers.get("content-length")
    if not content_length:
        return
    try:
        declared = int(content_length)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Content-Length")
    if declared > max_bytes:
        raise HTTPException(status_code=413, detail=f"Payload too large (max {max_bytes} bytes)")


async def read_body_limited(request: Request, max_bytes: int) -> bytes:
    """Read the request body, failing with 413 once more than ``max_bytes`` arrive."""
    enforce_body_limit(request, max_bytes)
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise HTTPException(status_code=413, detail=f"Payload too large (max {max_bytes} bytes)")
    return bytes(body)


async def form_text(form: FormData, name: str) -> str:
    """Return a form field as text whether it was sent as a field or a file part."""
    value = form.get(name)
    if value is None:
        return ""
    if isinstance(value, UploadFile):
        data = await value.read()
        return data.decode("utf-8", errors="replace")
    return value


def status_response(status_code: int, detail: str = "") -> Response:
    """Bare status response; 204 carries no body."""
    if status_code == 204:
        return Response(status_code=204)
    return JSONResponse({"status": detail}, status_code=status_code)
