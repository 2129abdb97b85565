import asyncio
import logging
from typing import Optional, Sequence

from .errors import PersistenceError, ProviderError, ToonmuError, UploadError
from .storage import object_path, sniff_image_type

logger = logging.getLogger("toonmu-backend")


class GenerationOrchestrator:
    """Runs one job from provider call to its single terminal status write.

    ``run`` never raises: it is spawned detached from the request, so every
    outcome is recorded on the job row and read back through polling.
    """

    def __init__(
        self,
        providers: Sequence,
        jobs,
        blobs,
        upload_timeout: Optional[float] = None,
    ):
        self.providers = list(providers)
        self.jobs = jobs
        self.blobs = blobs
        self.upload_timeout = upload_timeout

    async def run(self, job_id: str, image_data_url: str, style_prompt: str, user_id: str) -> None:
        try:
            image = await self._generate(job_id, image_data_url, style_prompt)
            url = await self._upload(job_id, user_id, image)
        except ToonmuError as e:
            logger.error("[%s] Generation failed: %s", job_id, e.message)
            await self._record(job_id, self.jobs.mark_failed, e.message)
            return
        except Exception as e:
            logger.exception("[%s] Generation failed unexpectedly", job_id)
            await self._record(job_id, self.jobs.mark_failed, str(e) or type(e).__name__)
            return

        if await self._record(job_id, self.jobs.mark_completed, url):
            logger.info("[%s] Generation successful.", job_id)

    async def _generate(self, job_id: str, image_data_url: str, style_prompt: str) -> bytes:
        if not self.providers:
            raise ProviderError("no image providers configured")
        last_error: Optional[ProviderError] = None
        for provider in self.providers:
            name = getattr(provider, "name", type(provider).__name__)
            if last_error is None:
                logger.info("[%s] %s attempt...", job_id, name)
            else:
                logger.warning(
                    "[%s] %s failed (%s). Falling back to %s...",
                    job_id,
                    last_error.provider,
                    last_error.message,
                    name,
                )
            try:
                return await provider.generate(image_data_url, style_prompt)
            except ProviderError as e:
                if not e.provider:
                    e.provider = name
                last_error = e
            except Exception as e:
                logger.exception("[%s] %s raised unexpectedly", job_id, name)
                last_error = ProviderError(str(e) or type(e).__name__, provider=name)
        raise last_error

    async def _upload(self, job_id: str, user_id: str, image: bytes) -> str:
        ext, content_type = sniff_image_type(image)
        path = object_path(user_id, job_id, ext)
        logger.info("[%s] Uploading result to %s", job_id, path)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.blobs.put, path, image, content_type),
                timeout=self.upload_timeout,
            )
        except asyncio.TimeoutError as e:
            raise UploadError(f"upload of {path} timed out") from e
        return self.blobs.public_url(path)

    async def _record(self, job_id: str, write, value: str) -> bool:
        try:
            await asyncio.to_thread(write, job_id, value)
            return True
        except PersistenceError as e:
            # The job stays pending; nothing reconciles it later.
            logger.error("[%s] Could not record job outcome: %s", job_id, e.message)
        except Exception:
            logger.exception("[%s] Could not record job outcome", job_id)
        return False
