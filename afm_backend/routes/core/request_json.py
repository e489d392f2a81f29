"""
Size-limited JSON body reading.

Handlers get a Result back; oversized or malformed bodies never raise.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from aiohttp import web

from ...config import MAX_JSON_BYTES
from ...shared import ErrorCode, Result

MIN_JSON_BYTES = 1024
REQUEST_STREAM_CHUNK_BYTES = 64 * 1024


async def _read_json(request: web.Request, *, max_bytes: Optional[int] = None) -> Result[dict]:
    """
    Read and decode a JSON object body of at most `max_bytes` bytes.

    Returns:
        Result.Ok(dict) or Result.Err(PAYLOAD_TOO_LARGE | INVALID_JSON, ...)
    """
    limit = max(MIN_JSON_BYTES, int(max_bytes) if max_bytes is not None else MAX_JSON_BYTES)

    declared = _declared_length(request)
    if declared is not None and declared > limit:
        return Result.Err(
            ErrorCode.PAYLOAD_TOO_LARGE, f"JSON body too large ({declared} > {limit})", limit=limit, size=declared
        )

    body = await _read_body_limited(request, limit)
    if not body.ok:
        return Result.Err(body.code or ErrorCode.INVALID_JSON, body.error or "Invalid request body", **(body.meta or {}))
    return _parse_json_object(body.data or b"")


def _declared_length(request: web.Request) -> Optional[int]:
    raw = request.headers.get("Content-Length")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def _read_body_limited(request: web.Request, limit: int) -> Result[bytes]:
    buf = bytearray()
    try:
        async for chunk in request.content.iter_chunked(REQUEST_STREAM_CHUNK_BYTES):
            buf.extend(chunk)
            if len(buf) > limit:
                return Result.Err(
                    ErrorCode.PAYLOAD_TOO_LARGE, f"JSON body too large (> {limit})", limit=limit, size=len(buf)
                )
    except (ConnectionError, web.HTTPException, OSError) as exc:
        return Result.Err(ErrorCode.INVALID_JSON, f"Failed to read request body: {exc}")
    return Result.Ok(bytes(buf))


def _parse_json_object(body: bytes) -> Result[dict]:
    try:
        text = body.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        return Result.Err(ErrorCode.INVALID_JSON, f"Invalid UTF-8 JSON body: {exc}")
    try:
        parsed: Any = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError as exc:
        return Result.Err(ErrorCode.INVALID_JSON, f"Invalid JSON body: {exc}")
    if not isinstance(parsed, dict):
        return Result.Err(ErrorCode.INVALID_JSON, "JSON body must be an object")
    return Result.Ok(parsed)
