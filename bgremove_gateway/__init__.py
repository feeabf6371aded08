"""
Background-removal gateway package.

Validates uploaded images, guards the endpoint with a shared API key and a
per-client rate limit, delegates the pixel work to rembg and serves the
result over FastAPI.
"""

__version__ = "0.1.0"
