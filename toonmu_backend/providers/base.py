from typing import Optional

import httpx

from ..app.errors import ProviderError


def restyle_instruction(style_prompt: str) -> str:
    return (
        f"Restyle this image in the following art style: {style_prompt}. "
        "Keep composition, subjects, and details."
    )


class ImageProvider:
    """Turns a source image and a style prompt into styled image bytes.

    Implementations only shape the request and parse the response. They do
    not retry and must raise ``ProviderError`` for every failure, including
    timeouts and responses without a usable image.
    """

    name = "provider"

    def __init__(self, timeout: float = 180.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def generate(self, image_data_url: str, style_prompt: str) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError

    def error(self, reason: str) -> ProviderError:
        return ProviderError(reason, provider=self.name)
