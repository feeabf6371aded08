"""
Quick local test helper: sends a local image to a running gateway and writes
the returned PNG to disk. Handles both response formats.
"""

from __future__ import annotations

import argparse
import base64
import mimetypes
import os
from pathlib import Path
from typing import Optional

import requests

API_KEY_HEADER = "pango-api-key"
DATA_URI_PREFIX = "data:image/png;base64,"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send an image to the background-removal gateway")
    parser.add_argument("--input", required=True, help="Path to the input image")
    parser.add_argument("--output", required=True, help="Path to write the PNG")
    parser.add_argument("--url", default="http://localhost:4001", help="Gateway base URL")
    parser.add_argument("--api-key", default=os.getenv("API_KEY"), help="Shared secret (defaults to $API_KEY)")
    parser.add_argument("--base64", action="store_true", help="Send a JSON data URI instead of multipart")
    parser.add_argument("--timeout", type=float, default=180.0, help="Request timeout in seconds")
    return parser.parse_args()


def send_image(
    url: str,
    input_path: Path,
    api_key: Optional[str] = None,
    as_base64: bool = False,
    timeout: float = 180.0,
) -> requests.Response:
    headers = {API_KEY_HEADER: api_key} if api_key else {}
    mime_type = mimetypes.guess_type(input_path.name)[0] or "application/octet-stream"
    endpoint = url.rstrip("/") + "/remove-background"
    image_bytes = input_path.read_bytes()

    if as_base64:
        subtype = mime_type.split("/", 1)[-1]
        data_uri = f"data:image/{subtype};base64," + base64.b64encode(image_bytes).decode("ascii")
        return requests.post(endpoint, json={"base64Image": data_uri}, headers=headers, timeout=timeout)
    files = {"image": (input_path.name, image_bytes, mime_type)}
    return requests.post(endpoint, files=files, headers=headers, timeout=timeout)


def extract_png(resp: requests.Response) -> bytes:
    """Return PNG bytes from either a raw image body or the JSON envelope."""
    if resp.headers.get("content-type", "").startswith("image/png"):
        return resp.content
    body = resp.json()
    image = (body.get("data") or {}).get("image", "")
    if not image.startswith(DATA_URI_PREFIX):
        raise ValueError(f"Unexpected response body: {body}")
    return base64.b64decode(image[len(DATA_URI_PREFIX):])


def main() -> None:
    args = parse_args()
    input_path = Path(args.input)
    output_path = Path(args.output)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    resp = send_image(args.url, input_path, api_key=args.api_key, as_base64=args.base64, timeout=args.timeout)
    if resp.status_code != 200:
        raise SystemExit(f"Error {resp.status_code}: {resp.text}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(extract_png(resp))
    print(f"Wrote PNG output to {output_path}")


if __name__ == "__main__":
    main()
