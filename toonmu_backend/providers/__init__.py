"""Image-generation provider adapters, tried in order by the orchestrator."""

from .base import ImageProvider
from .fal_kontext import FalKontextProvider
from .openai_responses import OpenAIResponsesProvider

__all__ = ["ImageProvider", "FalKontextProvider", "OpenAIResponsesProvider", "build_providers"]


def build_providers(settings) -> list:
    """Instantiate the configured providers in ``IMAGE_PROVIDERS`` order.

    Providers without credentials are skipped, so a deployment with a single
    key runs without a fallback.
    """
    providers = []
    for name in settings.image_providers:
        name = name.lower()
        if name == "openai" and settings.openai_api_key:
            providers.append(
                OpenAIResponsesProvider(
                    settings.openai_api_key,
                    model=settings.openai_model,
                    timeout=settings.provider_timeout_seconds,
                )
            )
        elif name in {"fal", "fal_kontext"} and settings.fal_key:
            providers.append(
                FalKontextProvider(settings.fal_key, timeout=settings.provider_timeout_seconds)
            )
    return providers
