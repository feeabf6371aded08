"""
Request pipeline for ``POST /remove-background``.

`RemovalPipeline.run` is the single entry point used by the HTTP layer. Each
stage either passes or raises a `GatewayError`, in this order:
authenticate -> rate limit -> validate -> remove -> format.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from fastapi.responses import Response

from .auth import ApiKeyAuthenticator
from .errors import GatewayError
from .formatting import ResponseFormatter
from .rate_limit import SlidingWindowRateLimiter
from .remover import BackgroundRemover, invoke_remover
from .validation import IncomingImage

logger = logging.getLogger(__name__)

ImageLoader = Callable[[], Awaitable[IncomingImage]]


class RemovalPipeline:
    def __init__(
        self,
        authenticator: ApiKeyAuthenticator,
        limiter: Optional[SlidingWindowRateLimiter],
        remover: BackgroundRemover,
        formatter: ResponseFormatter,
        removal_timeout: Optional[float] = None,
    ):
        self.authenticator = authenticator
        self.limiter = limiter
        self.remover = remover
        self.formatter = formatter
        self.removal_timeout = removal_timeout

    async def run(self, api_key: Optional[str], client_key: str, load_image: ImageLoader) -> Response:
        """
        Process one request.

        `load_image` parses and validates the body; it is only awaited once the
        caller is authenticated and within its rate limit, so rejected callers
        never cost a body parse.

        Anything that is not already a `GatewayError` is logged and re-raised as
        a plain 500 `GatewayError`.
        """
        try:
            return await self._run(api_key, client_key, load_image)
        except GatewayError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while removing background: %s", exc)
            raise GatewayError() from exc

    async def _run(self, api_key: Optional[str], client_key: str, load_image: ImageLoader) -> Response:
        self.authenticator.check(api_key)

        headers: Dict[str, str] = {}
        if self.limiter is not None:
            headers.update(self.limiter.hit(client_key).headers())

        image = await load_image()
        logger.info(
            "File: %s (%.2f KB, %s)",
            image.original_name or "<base64>",
            image.size_bytes / 1024,
            image.mime_type,
        )

        processed = await invoke_remover(self.remover, image, self.removal_timeout)
        logger.info("Background removed successfully")
        return self.formatter.image(processed.data, headers=headers)
