"""
Background-removal invocation.

The pixel work is delegated to rembg. This module:
 - lazily builds a single shared rembg session (model weights load once),
 - normalizes whatever rembg hands back into PNG bytes,
 - runs the blocking call off the event loop with a timeout and turns every
   failure into `ProcessingError`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from io import BytesIO
import logging
from threading import Lock
import time
from typing import Any, Optional, Protocol

from PIL import Image

from .errors import ProcessingError
from .validation import IncomingImage

logger = logging.getLogger(__name__)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@dataclass
class ProcessedImage:
    data: bytes
    mime_type: str = "image/png"


class BackgroundRemover(Protocol):
    def remove(self, image: IncomingImage) -> bytes:
        """Return PNG bytes of `image` with its background made transparent."""
        ...


def ensure_png(data: Any) -> bytes:
    """Coerce a removal result (PNG bytes, other encoded bytes or a PIL image) to PNG bytes."""
    if isinstance(data, Image.Image):
        image = data
    elif isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
        if raw.startswith(PNG_MAGIC):
            return raw
        image = Image.open(BytesIO(raw))
    else:
        raise TypeError(f"Unsupported removal result type: {type(data).__name__}")

    if image.mode not in ("RGBA", "LA"):
        image = image.convert("RGBA")
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class RembgRemover:
    """
    rembg-backed remover with a lazily created, process-wide session.

    Session creation downloads/loads ONNX weights, so it happens on the first
    request rather than at import time; `/ping` never triggers it.
    """

    def __init__(self, model_name: str = "u2net"):
        self.model_name = model_name
        self._session = None
        self._lock = Lock()

    def _get_session(self):
        if self._session is not None:
            return self._session
        with self._lock:
            if self._session is None:
                from rembg import new_session

                logger.info("Loading rembg model: %s", self.model_name)
                start = time.perf_counter()
                self._session = new_session(self.model_name)
                logger.info("Model %s loaded in %.2fs", self.model_name, time.perf_counter() - start)
        return self._session

    def remove(self, image: IncomingImage) -> bytes:
        from rembg import remove

        output = remove(image.data, session=self._get_session())
        return ensure_png(output)


async def invoke_remover(
    remover: BackgroundRemover, image: IncomingImage, timeout: Optional[float]
) -> ProcessedImage:
    """
    Run `remover.remove` in a worker thread, bounded by `timeout` seconds.

    A timed-out call keeps running in its thread until it finishes on its own;
    only the request is released.

    Raises:
        ProcessingError: when the call raises, times out or returns non-PNG data.
    """
    start = time.perf_counter()
    try:
        result = await asyncio.wait_for(asyncio.to_thread(remover.remove, image), timeout=timeout)
        png_bytes = ensure_png(result)
    except asyncio.TimeoutError as exc:
        logger.error("Background removal timed out after %.1fs", timeout)
        raise ProcessingError() from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Error removing background: %s", exc)
        raise ProcessingError() from exc

    logger.info(
        "RemoveBackgroundProcess: %.0f ms (%s, %.2f KB -> %.2f KB)",
        (time.perf_counter() - start) * 1000,
        image.mime_type,
        image.size_bytes / 1024,
        len(png_bytes) / 1024,
    )
    return ProcessedImage(data=png_bytes)
