from typing import Optional

import httpx

from .base import ImageProvider, restyle_instruction

FAL_RUN_URL = "https://fal.run"
FAL_KONTEXT_MODEL = "fal-ai/flux-pro/kontext"


class FalKontextProvider(ImageProvider):
    """Fallback provider: FAL FLUX Kontext, synchronous run endpoint.

    FAL answers with a hosted image URL, which is downloaded before returning.
    """

    name = "fal"

    def __init__(
        self,
        api_key: str,
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = FAL_RUN_URL,
        model: str = FAL_KONTEXT_MODEL,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.api_key = api_key
        self.url = f"{base_url.rstrip('/')}/{model}"

    async def generate(self, image_data_url: str, style_prompt: str) -> bytes:
        payload = {
            "prompt": restyle_instruction(style_prompt),
            "image_url": image_data_url,
            "output_format": "png",
        }
        try:
            async with self._client() as client:
                r = await client.post(
                    self.url,
                    headers={"Authorization": f"Key {self.api_key}"},
                    json=payload,
                )
                if r.status_code >= 400:
                    raise self.error(f"FAL: request failed with status {r.status_code}")
                try:
                    data = r.json()
                except ValueError as e:
                    raise self.error("FAL: malformed response body") from e
                images = data.get("images") if isinstance(data, dict) else None
                url = None
                if isinstance(images, list) and images and isinstance(images[0], dict):
                    url = images[0].get("url")
                if not isinstance(url, str) or not url:
                    raise self.error("FAL: no image url")

                img = await client.get(url)
                if img.status_code >= 400:
                    raise self.error("FAL: fetch image failed")
                if not img.content:
                    raise self.error("FAL: empty image")
                return img.content
        except httpx.TimeoutException as e:
            raise self.error(f"FAL request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise self.error(f"FAL request failed: {e}") from e
