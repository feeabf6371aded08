"""
Response shaping.

A deployment picks one output policy via ``RESPONSE_FORMAT``:
 - ``binary``: the PNG itself as the body,
 - ``json``: the ``{success, message, data}`` envelope carrying a data URI.
Errors always use the envelope.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

SUCCESS_MESSAGE = "Background removed successfully"
PONG = "Pong!!"


class Envelope(BaseModel):
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None


def png_data_uri(png_bytes: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


def envelope(
    status_code: int,
    success: bool,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = Envelope(success=success, message=message, data=data)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


class ResponseFormatter:
    def __init__(self, response_format: str):
        if response_format not in ("json", "binary"):
            raise ValueError(f"Unknown response format: {response_format}")
        self.response_format = response_format

    def image(self, png_bytes: bytes, headers: Optional[Dict[str, str]] = None) -> Response:
        if self.response_format == "binary":
            # Response fills in Content-Length from the body
            return Response(content=png_bytes, media_type="image/png", headers=headers)
        return envelope(200, True, SUCCESS_MESSAGE, {"image": png_data_uri(png_bytes)}, headers=headers)

    def pong(self) -> Response:
        if self.response_format == "binary":
            return PlainTextResponse(PONG)
        return envelope(200, True, PONG)

    @staticmethod
    def error(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        return envelope(status_code, False, message, headers=headers)
