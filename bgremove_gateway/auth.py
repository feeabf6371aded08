"""Shared-secret API key check for the removal endpoint."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from .errors import AuthError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "pango-api-key"


class ApiKeyAuthenticator:
    """
    Compare the caller's key to the configured secret.

    When enabled without a configured secret every request is rejected.
    """

    def __init__(self, api_key: Optional[str], enabled: bool = True):
        self._api_key = api_key
        self.enabled = enabled

    def check(self, provided: Optional[str]) -> None:
        if not self.enabled:
            return
        if self._api_key is None:
            logger.error("Auth is enabled but no API key is configured; rejecting request")
            raise AuthError()
        if not provided:
            logger.warning("Rejected request without %s header", API_KEY_HEADER)
            raise AuthError()
        # compare_digest looks at every byte regardless of where they differ
        if not hmac.compare_digest(provided.encode("utf-8"), self._api_key.encode("utf-8")):
            logger.warning("Rejected request with invalid API key")
            raise AuthError()
