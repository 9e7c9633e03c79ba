from __future__ import annotations

import json
import os
import socket
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from ..logger import logger

GEMINI_API_BASE = os.getenv(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta/models"
).rstrip("/")
GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", "gemini-3-pro-image-preview")
IMAGE_GENERATION_TIMEOUT_SEC = float(os.getenv("IMAGE_GENERATION_TIMEOUT_SEC", "55"))

DEFAULT_IMAGE_MIME_TYPE = "image/png"
IMAGE_ASPECT_RATIO = "3:4"
IMAGE_SIZE = "2K"


class ImageGenerationError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def get_api_key() -> str | None:
    # Read on every call; the key is not cached.
    return os.getenv("GEMINI_API_KEY") or None


def build_infographic_prompt(report: dict[str, Any], team_name: str) -> str:
    def field(name: str) -> str:
        return str(report.get(name) or "")

    return f"""Create a professional business infographic image based on this report data.

REPORT INFORMATION:
- Title: {field("title")}
- Team: {team_name}
- Members: {field("members")}

CONTENT SECTIONS:
1. SITUATION (Facts): {field("situation")}
2. PROBLEM (Gap Analysis): {field("definition")}
3. ROOT CAUSE: {field("cause")}
4. SOLUTIONS: {field("solution")}
5. PREVENTION: {field("prevention")}
6. SCHEDULE: {field("schedule")}

DESIGN REQUIREMENTS:
- Professional business infographic style
- 3:4 portrait layout
- Bento grid layout with distinct colored sections
- Color scheme: Yellow (#fbbf24), Indigo (#4f46e5), White, Black
- Bold neo-brutalist style with thick borders
- Icons for each section
- Clean typography hierarchy
- Executive presentation quality

Generate ONLY the infographic image. No text explanation needed."""


def _request_body(prompt: str) -> bytes:
    body = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "responseModalities": ["TEXT", "IMAGE"],
            "imageConfig": {"aspectRatio": IMAGE_ASPECT_RATIO, "imageSize": IMAGE_SIZE},
        },
    }
    return json.dumps(body, ensure_ascii=False).encode("utf-8")


def _upstream_error_message(status_code: int, raw_body: str) -> str:
    try:
        parsed = json.loads(raw_body)
    except ValueError:
        return f"API error: {status_code}"
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"API error: {status_code}"


def _extract_image(data: dict[str, Any]) -> tuple[str, str] | None:
    candidates = data.get("candidates") or []
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content") or {}
    if not isinstance(content, dict):
        return None
    parts = content.get("parts") or []
    if not isinstance(parts, list):
        return None
    for part in parts:
        if not isinstance(part, dict):
            continue
        inline = part.get("inlineData") or {}
        if not isinstance(inline, dict):
            continue
        if inline.get("data"):
            return inline["data"], inline.get("mimeType") or DEFAULT_IMAGE_MIME_TYPE
    return None


def generate_image(prompt: str | None) -> dict[str, Any]:
    """Forward ``prompt`` to the image model and return the first inline image.

    Raises ImageGenerationError carrying the HTTP status the caller should answer with.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise ImageGenerationError(400, "Prompt is required")

    api_key = get_api_key()
    if not api_key:
        raise ImageGenerationError(500, "API key not configured")

    try:
        return _call_image_api(prompt, api_key)
    except ImageGenerationError:
        raise
    except Exception as exc:
        logger.exception("Image generation failed")
        raise ImageGenerationError(500, str(exc) or "Image generation failed") from exc


def _call_image_api(prompt: str, api_key: str) -> dict[str, Any]:
    url = f"{GEMINI_API_BASE}/{GEMINI_IMAGE_MODEL}:generateContent?key={quote(api_key, safe='')}"
    request = Request(
        url=url,
        data=_request_body(prompt),
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )

    try:
        with urlopen(request, timeout=IMAGE_GENERATION_TIMEOUT_SEC) as response:
            raw = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        raw_body = ""
        try:
            raw_body = exc.read().decode("utf-8", errors="replace")
        except OSError:
            raw_body = ""
        message = _upstream_error_message(exc.code, raw_body)
        logger.error("Image API error {}: {}", exc.code, raw_body[:500])
        raise ImageGenerationError(exc.code, message) from exc
    except (socket.timeout, TimeoutError) as exc:
        logger.error("Image API timed out after {}s", IMAGE_GENERATION_TIMEOUT_SEC)
        raise ImageGenerationError(504, "Image generation timed out") from exc
    except URLError as exc:
        if isinstance(exc.reason, (socket.timeout, TimeoutError)):
            logger.error("Image API timed out after {}s", IMAGE_GENERATION_TIMEOUT_SEC)
            raise ImageGenerationError(504, "Image generation timed out") from exc
        logger.error("Image API unreachable: {}", exc.reason)
        raise ImageGenerationError(500, str(exc.reason)) from exc
    except OSError as exc:
        logger.error("Image API request failed: {}", exc)
        raise ImageGenerationError(500, str(exc) or "Image API request failed") from exc

    try:
        data = json.loads(raw)
    except ValueError as exc:
        logger.error("Image API returned non-JSON body: {}", raw[:500])
        raise ImageGenerationError(500, "Failed to parse image API response") from exc
    if not isinstance(data, dict):
        raise ImageGenerationError(500, "Failed to parse image API response")

    if data.get("error"):
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ImageGenerationError(400, message or "Image API error")

    image = _extract_image(data)
    if image is None:
        logger.error("Image API response had no image: {}", raw[:500])
        raise ImageGenerationError(500, "No image in generation result")

    image_base64, mime_type = image
    return {"success": True, "imageBase64": image_base64, "mimeType": mime_type}


def generate_infographic(report: dict[str, Any], team_name: str) -> dict[str, Any]:
    return generate_image(build_infographic_prompt(report, team_name))
