from __future__ import annotations

from io import BytesIO
import struct
import threading
import zlib
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from bgremove_gateway.api import create_app
from bgremove_gateway.config import Settings
from bgremove_gateway.rate_limit import SlidingWindowRateLimiter
from bgremove_gateway.validation import IncomingImage

API_KEY = "test-secret"
PNG_MAGIC = b"\x89PNG"


def encode_image(fmt: str, size=(8, 6), mode="RGB", color=(200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def png_with_dimensions(width: int, height: int) -> bytes:
    """A minimal PNG whose IHDR claims `width` x `height` with no real pixel data."""

    def chunk(kind: bytes, payload: bytes) -> bytes:
        crc = zlib.crc32(kind + payload) & 0xFFFFFFFF
        return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", crc)

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IEND", b"")


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemover:
    """Stands in for rembg: records calls and returns a transparent PNG of the same size."""

    def __init__(self, error: Optional[Exception] = None, delay: Optional[threading.Event] = None):
        self.calls: List[IncomingImage] = []
        self.error = error
        self.delay = delay

    def remove(self, image: IncomingImage) -> bytes:
        self.calls.append(image)
        if self.delay is not None:
            self.delay.wait(timeout=5)
        if self.error is not None:
            raise self.error
        with Image.open(BytesIO(image.data)) as src:
            size = src.size
        buffer = BytesIO()
        Image.new("RGBA", size, (0, 0, 0, 0)).save(buffer, format="PNG")
        return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return encode_image("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return encode_image("JPEG")


@pytest.fixture
def gif_bytes() -> bytes:
    return encode_image("GIF", mode="P", color=1)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def remover() -> FakeRemover:
    return FakeRemover()


def make_settings(**overrides) -> Settings:
    values = dict(
        api_key=API_KEY,
        max_upload_bytes=1024 * 1024,
        rate_limit_max_requests=100,
        rate_limit_window_seconds=60,
        response_format="json",
        removal_timeout_seconds=5,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def make_client(remover, clock):
    """Build a TestClient around a fresh app; keyword arguments override settings."""

    def _make(
        limiter: Optional[SlidingWindowRateLimiter] = None,
        raise_server_exceptions: bool = True,
        **overrides,
    ) -> TestClient:
        settings = make_settings(**overrides)
        if limiter is None:
            limiter = SlidingWindowRateLimiter(
                settings.rate_limit_max_requests,
                settings.rate_limit_window_seconds,
                clock=clock,
            )
        app = create_app(settings, remover=remover, limiter=limiter)
        return TestClient(app, raise_server_exceptions=raise_server_exceptions)

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()
