"""Run the gateway with uvicorn: ``python -m bgremove_gateway``."""

import logging

import uvicorn

from . import config
from .api import create_app

logger = logging.getLogger(__name__)


def main() -> None:
    settings = config.get_settings()
    app = create_app(settings)
    logger.info("Server is running on http://%s:%d (response format: %s)", settings.host, settings.port, settings.response_format)
    if not settings.auth_enabled:
        logger.warning("AUTH_ENABLED is off; /remove-background accepts unauthenticated requests")
    elif settings.api_key is None:
        logger.warning("API_KEY is not set; /remove-background will reject every request")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
