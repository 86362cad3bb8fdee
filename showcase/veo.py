"""
Veo video generation via the Gemini REST long-running operation API.

  submit:   POST models/{model}:predictLongRunning  → {"name": "...operations/..."}
  poll:     GET  {operation name}                    → {"done": bool, "response"|"error"}
  download: GET  generatedSamples[0].video.uri       (needs the API key header)
"""

import os
import base64
import logging
from typing import Optional

import httpx

from .gemini import GEMINI_API_KEY, API_BASE, check_response
from .pipeline.errors import UpstreamError

logger = logging.getLogger(__name__)

VIDEO_RESOLUTION = "720p"


def generated_video_uri(operation: dict) -> Optional[str]:
    """URI of the first generated sample in a finished operation, if any."""
    response = operation.get("response")
    if not isinstance(response, dict):
        return None
    video_response = response.get("generateVideoResponse") or response
    samples = video_response.get("generatedSamples") or video_response.get("generatedVideos") or []
    if not samples:
        return None
    video = samples[0].get("video") or {}
    return video.get("uri")


class VeoClient:
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

    async def generate_videos(
        self,
        model: str,
        prompt: str,
        image_bytes: bytes,
        image_mime_type: str,
        aspect_ratio: str,
        duration_seconds: int,
    ) -> dict:
        """Submit an image-to-video request and return the operation handle."""
        if not self._api_key:
            raise UpstreamError("GEMINI_API_KEY not set")

        payload = {
            "instances": [{
                "prompt": prompt,
                "image": {
                    "bytesBase64Encoded": base64.b64encode(image_bytes).decode(),
                    "mimeType": image_mime_type,
                },
            }],
            "parameters": {
                "aspectRatio": aspect_ratio,
                "sampleCount": 1,
                "resolution": VIDEO_RESOLUTION,
                "durationSeconds": duration_seconds,
            },
        }

        try:
            resp = await self._http.post(
                f"{self._api_base}/models/{model}:predictLongRunning",
                json=payload,
                headers=self._headers(),
                timeout=60,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Veo submit failed: {e}") from e

        operation = check_response(resp, "Veo API")
        if not operation.get("name"):
            raise UpstreamError(f"Veo submit returned no operation name: {operation}")

        logger.info(f"Veo generation submitted: operation={operation['name']}")
        return operation

    async def get_operation(self, operation: dict) -> dict:
        """Refresh an operation handle."""
        try:
            resp = await self._http.get(
                f"{self._api_base}/{operation['name']}",
                headers=self._headers(),
                timeout=30,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Veo poll failed: {e}") from e
        return check_response(resp, "Veo API")

    async def download(self, uri: str, path: str) -> str:
        """Stream a generated video to `path`."""
        try:
            async with self._http.stream(
                "GET",
                uri,
                headers={"x-goog-api-key": self._api_key},
                follow_redirects=True,
                timeout=300,
            ) as resp:
                if resp.status_code != 200:
                    await resp.aread()
                    raise UpstreamError(f"Veo download error {resp.status_code}: {resp.text[:200]}")
                with open(path, "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Veo download failed: {e}") from e

        logger.info(f"Veo video downloaded to {path} ({os.path.getsize(path)} bytes)")
        return path
