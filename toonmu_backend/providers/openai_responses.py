import base64
import binascii
from typing import Optional

import httpx

from .base import ImageProvider, restyle_instruction

OPENAI_API_URL = "https://api.openai.com/v1/responses"


class OpenAIResponsesProvider(ImageProvider):
    """Primary provider: OpenAI Responses API with the image_generation tool."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        url: str = OPENAI_API_URL,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.api_key = api_key
        self.model = model
        self.url = url

    def build_payload(self, image_data_url: str, style_prompt: str) -> dict:
        return {
            "model": self.model,
            "input": [
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": restyle_instruction(style_prompt)},
                        {"type": "input_image", "image_url": image_data_url},
                    ],
                }
            ],
            "tools": [{"type": "image_generation"}],
        }

    async def generate(self, image_data_url: str, style_prompt: str) -> bytes:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with self._client() as client:
                r = await client.post(
                    self.url,
                    headers=headers,
                    json=self.build_payload(image_data_url, style_prompt),
                )
        except httpx.TimeoutException as e:
            raise self.error(f"OpenAI request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise self.error(f"OpenAI request failed: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if r.status_code >= 400:
            err = data.get("error")
            message = err.get("message") if isinstance(err, dict) else None
            raise self.error(message or "OpenAI API request failed")

        output = data.get("output")
        if not isinstance(output, list):
            output = []
        for node in output:
            if isinstance(node, dict) and node.get("type") == "image_generation_call":
                result = node.get("result")
                break
        else:
            result = None
        if not result:
            raise self.error("OpenAI: no image result")
        try:
            return base64.b64decode(result, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise self.error(f"OpenAI: malformed image result: {e}") from e
