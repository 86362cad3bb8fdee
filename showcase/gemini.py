"""
Gemini REST client for image generation.

- Image Generation: Gemini image models via `models/{model}:generateContent`
  with inline base64 images, image-size/aspect-ratio config and explicit
  safety settings.
"""

import os
import base64
import logging
from typing import Optional

import httpx

from .pipeline.errors import UpstreamError

logger = logging.getLogger(__name__)

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
API_BASE = "https://generativelanguage.googleapis.com/v1beta"

DEFAULT_IMAGE_SIZE = "1K"

# Every category the image endpoint lets us configure, with filtering off
SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_HARASSMENT",
)


def safety_settings_off() -> list[dict]:
    return [{"category": c, "threshold": "OFF"} for c in SAFETY_CATEGORIES]


def inline_image_part(data: bytes, mime_type: str) -> dict:
    return {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode()}}


def check_response(resp: httpx.Response, what: str) -> dict:
    """Raise UpstreamError on a non-200 Gemini response, else return its JSON."""
    if resp.status_code != 200:
        raise UpstreamError(f"{what} error {resp.status_code}: {resp.text[:500]}")
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError(f"{what} returned invalid JSON: {resp.text[:200]}") from e


def extract_inline_image(result: dict) -> tuple[bytes, str]:
    """
    Pull the generated image out of a generateContent response.

    Raises:
        UpstreamError("Unexpected response"):      No candidates[0].content.parts.
        UpstreamError("Failed to generate image"): No part carries inline data.
    """
    try:
        parts = result["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        parts = None
    if not parts:
        raise UpstreamError("Unexpected response")

    image: Optional[tuple[bytes, str]] = None
    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            # Last inline part wins
            image = (base64.b64decode(inline["data"]), mime)

    if image is None:
        raise UpstreamError("Failed to generate image")
    return image


class GeminiClient:
    """Async wrapper over the generateContent REST endpoint."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str = GEMINI_API_KEY,
        api_base: str = API_BASE,
    ):
        self._http = http
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")

    def _headers(self) -> dict:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

    async def generate_content(
        self,
        model: str,
        parts: list,
        generation_config: Optional[dict] = None,
        safety_settings: Optional[list] = None,
    ) -> dict:
        """Call Gemini generateContent and return the raw JSON response."""
        if not self._api_key:
            raise UpstreamError("GEMINI_API_KEY not set")

        body: dict = {"contents": [{"parts": parts}]}
        if generation_config:
            body["generationConfig"] = generation_config
        if safety_settings:
            body["safetySettings"] = safety_settings

        try:
            resp = await self._http.post(
                f"{self._api_base}/models/{model}:generateContent",
                json=body,
                headers=self._headers(),
                timeout=120,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Gemini request failed: {e}") from e

        return check_response(resp, "Gemini API")

    async def generate_image(
        self,
        model: str,
        images: list[tuple[bytes, str]],
        prompt: str,
        aspect_ratio: str,
        image_size: str = DEFAULT_IMAGE_SIZE,
    ) -> tuple[bytes, str]:
        """
        Generate one image from reference images plus instruction text.

        Returns:
            (image_bytes, mime_type) of the generated image.
        """
        parts = [inline_image_part(data, mime) for data, mime in images]
        parts.append({"text": prompt})

        logger.info(f"Gemini image request: model={model}, {len(images)} image(s), aspect={aspect_ratio}")
        result = await self.generate_content(
            model,
            parts,
            generation_config={
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio, "imageSize": image_size},
            },
            safety_settings=safety_settings_off(),
        )
        return extract_inline_image(result)
