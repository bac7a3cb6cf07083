"""
Image generation, editing and variation.

This module provides:
- OpenAI DALL-E generation, edits and variations
- Stability AI text-to-image generation
- Cross-provider fallback for generation

Every public method returns a dict with ``success``; failures carry ``error``.
API keys are looked up per call so keys stored at runtime take effect
without a restart.
"""

import base64
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from mcp_gateway.core.errors import ToolExecutionError

logger = structlog.get_logger(__name__)

OPENAI_IMAGES_URL = "https://api.openai.com/v1/images"
STABILITY_URL = "https://api.stability.ai/v1/generation/stable-diffusion-xl-1024-v1-0/text-to-image"

DEFAULT_DALLE_MODEL = "dall-e-3"
DEFAULT_SIZE = "1024x1024"
DEFAULT_NEGATIVE_PROMPT = "low quality, blurry, distorted, deformed features"

KeyLookup = Callable[[str], Awaitable[Optional[str]]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ImageGenerationClient:
    """Calls image APIs and stores the resulting files under ``image_dir``."""

    def __init__(
        self,
        get_key: KeyLookup,
        image_dir: str | Path = "./public/images",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._get_key = get_key
        self.image_dir = Path(image_dir)
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _require_key(self, name: str) -> str:
        key = await self._get_key(name)
        if not key:
            raise ToolExecutionError(f"{name} is not configured")
        return key

    def _save(self, prefix: str, data: bytes) -> tuple[str, str]:
        self.image_dir.mkdir(parents=True, exist_ok=True)
        file_name = f"{prefix}_{int(time.time() * 1000)}.png"
        file_path = self.image_dir / file_name
        file_path.write_bytes(data)
        return f"/images/{file_name}", str(file_path)

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        response = await client.get(url)
        response.raise_for_status()
        return response.content

    @staticmethod
    def _first_image_url(payload: dict[str, Any]) -> str:
        data = payload.get("data") or []
        if not data or not data[0].get("url"):
            raise ToolExecutionError("Invalid response from OpenAI API")
        return data[0]["url"]

    async def generate_with_dalle(
        self,
        prompt: str,
        model: str = DEFAULT_DALLE_MODEL,
        size: str = DEFAULT_SIZE
    ) -> dict[str, Any]:
        api_key = await self._require_key("OPENAI_API_KEY")

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{OPENAI_IMAGES_URL}/generations",
                    headers={"Authorization": f"Bearer {api_key}"},
                    json={"model": model, "prompt": prompt, "n": 1, "size": size, "response_format": "url"},
                )
                response.raise_for_status()
                image = await self._download(client, self._first_image_url(response.json()))
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"DALL-E request failed: {e}")

        image_url, file_path = self._save("dalle", image)
        logger.info("Image generated", provider="openai", model=model, file_path=file_path)
        return {
            "success": True,
            "provider": "openai",
            "prompt": prompt,
            "model": model,
            "size": size,
            "image_url": image_url,
            "file_path": file_path,
            "timestamp": _now_iso(),
        }

    async def generate_with_stability(
        self,
        prompt: str,
        negative_prompt: str = DEFAULT_NEGATIVE_PROMPT,
        steps: int = 30,
        width: int = 1024,
        height: int = 1024
    ) -> dict[str, Any]:
        api_key = await self._require_key("STABILITY_API_KEY")

        try:
            async with self._client() as client:
                response = await client.post(
                    STABILITY_URL,
                    headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
                    json={
                        "text_prompts": [
                            {"text": prompt, "weight": 1},
                            {"text": negative_prompt, "weight": -1},
                        ],
                        "cfg_scale": 7,
                        "height": height,
                        "width": width,
                        "steps": steps,
                        "samples": 1,
                    },
                )
                response.raise_for_status()
                artifacts = response.json().get("artifacts") or []
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"Stability request failed: {e}")

        if not artifacts or not artifacts[0].get("base64"):
            raise ToolExecutionError("Invalid response from Stability API")

        image_url, file_path = self._save("sd", base64.b64decode(artifacts[0]["base64"]))
        logger.info("Image generated", provider="stability", file_path=file_path)
        return {
            "success": True,
            "provider": "stability",
            "prompt": prompt,
            "negative_prompt": negative_prompt,
            "steps": steps,
            "width": width,
            "height": height,
            "image_url": image_url,
            "file_path": file_path,
            "timestamp": _now_iso(),
        }

    async def _generate_with(self, provider: str, prompt: str, options: dict[str, Any]) -> dict[str, Any]:
        if provider == "openai":
            return await self.generate_with_dalle(
                prompt,
                options.get("model", DEFAULT_DALLE_MODEL),
                options.get("size", DEFAULT_SIZE),
            )
        return await self.generate_with_stability(
            prompt,
            options.get("negativePrompt", DEFAULT_NEGATIVE_PROMPT),
            options.get("steps", 30),
            options.get("width", 1024),
            options.get("height", 1024),
        )

    async def generate_image(
        self,
        prompt: str,
        provider: str = "openai",
        options: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        Generate an image, falling back to the other provider on failure.

        Args:
            prompt: Description of the image
            provider: "openai" or "stability"
            options: Provider specific options (model, size, negativePrompt, steps, width, height)
        """
        options = options or {}
        if provider not in ("openai", "stability"):
            return {"success": False, "error": f"Unsupported provider: {provider}", "prompt": prompt, "provider": provider}

        try:
            return await self._generate_with(provider, prompt, options)
        except ToolExecutionError as e:
            fallback = "stability" if provider == "openai" else "openai"
            logger.warning("Image generation failed, trying fallback provider", provider=provider, fallback=fallback, error=str(e))

        try:
            return await self._generate_with(fallback, prompt, options)
        except ToolExecutionError as e:
            logger.error("Image generation failed with all providers", error=str(e))
            return {"success": False, "error": str(e), "prompt": prompt, "provider": provider}

    async def edit_image(self, image_path: str, prompt: str, mask_path: Optional[str] = None) -> dict[str, Any]:
        """Edit an image with DALL-E; transparent mask areas mark the region to change."""
        try:
            api_key = await self._require_key("OPENAI_API_KEY")
            source = Path(image_path)
            if not source.exists():
                raise ToolExecutionError(f"Image file not found: {image_path}")

            files = {"image": (source.name, source.read_bytes(), "image/png")}
            if mask_path and Path(mask_path).exists():
                files["mask"] = (Path(mask_path).name, Path(mask_path).read_bytes(), "image/png")

            async with self._client() as client:
                response = await client.post(
                    f"{OPENAI_IMAGES_URL}/edits",
                    headers={"Authorization": f"Bearer {api_key}"},
                    data={"prompt": prompt},
                    files=files,
                )
                response.raise_for_status()
                image = await self._download(client, self._first_image_url(response.json()))

            image_url, file_path = self._save("edit", image)
        except (ToolExecutionError, httpx.HTTPError, OSError) as e:
            logger.error("Image edit failed", image_path=image_path, error=str(e))
            return {"success": False, "error": str(e), "prompt": prompt, "original_image": image_path, "mask_image": mask_path}

        return {
            "success": True,
            "prompt": prompt,
            "original_image": image_path,
            "mask_image": mask_path,
            "edited_image_url": image_url,
            "file_path": file_path,
            "timestamp": _now_iso(),
        }

    async def create_image_variation(self, image_path: str) -> dict[str, Any]:
        try:
            api_key = await self._require_key("OPENAI_API_KEY")
            source = Path(image_path)
            if not source.exists():
                raise ToolExecutionError(f"Image file not found: {image_path}")

            async with self._client() as client:
                response = await client.post(
                    f"{OPENAI_IMAGES_URL}/variations",
                    headers={"Authorization": f"Bearer {api_key}"},
                    files={"image": (source.name, source.read_bytes(), "image/png")},
                )
                response.raise_for_status()
                image = await self._download(client, self._first_image_url(response.json()))

            image_url, file_path = self._save("variation", image)
        except (ToolExecutionError, httpx.HTTPError, OSError) as e:
            logger.error("Image variation failed", image_path=image_path, error=str(e))
            return {"success": False, "error": str(e), "original_image": image_path}

        return {
            "success": True,
            "original_image": image_path,
            "variation_image_url": image_url,
            "file_path": file_path,
            "timestamp": _now_iso(),
        }
