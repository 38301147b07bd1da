import os, json, httpx, asyncio, logging
from typing import List, Optional

from .errors import ConfigurationError, ImageGenerationError, TransientServiceError
from .models import ShotType
from .settings import (
    IMAGE_API_BASE,
    IMAGE_MODEL,
    IMAGE_POLL_INTERVAL_S,
    IMAGE_POLL_MAX_ATTEMPTS,
    PRESENTER_IMAGE_URLS,
)

logger = logging.getLogger(__name__)


def _headers():
    token = os.getenv("IMAGE_API_KEY", "") or os.getenv("VEO_API_KEY", "")
    if not token:
        raise ConfigurationError("IMAGE_API_KEY is not set; please configure your .env")
    return {"Authorization": f"Bearer {token}"}


class ImageGenerationClient:
    """Creates a reference image task and polls it until the image is ready."""

    def __init__(
        self,
        base_url: str = IMAGE_API_BASE,
        model: str = IMAGE_MODEL,
        identity_urls: Optional[List[str]] = None,
        poll_interval_s: float = IMAGE_POLL_INTERVAL_S,
        max_attempts: int = IMAGE_POLL_MAX_ATTEMPTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.identity_urls = list(identity_urls if identity_urls is not None else PRESENTER_IMAGE_URLS)
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self._transport = transport
        self.sleep = asyncio.sleep

    async def generate(self, prompt: str, shot_type: ShotType) -> str:
        """Return a temporary URL for the generated image."""
        logger.info(f"Starting reference image generation ({shot_type.value}) for prompt: {prompt[:100]}...")
        body = {
            "model": self.model,
            "input": {
                "prompt": prompt,
                "image_urls": self.identity_urls,
                "output_format": "png",
                "image_size": "9:16",
                "n": 1,
            },
        }
        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            try:
                r = await client.post(
                    f"{self.base_url}/createTask",
                    headers={**_headers(), "Content-Type": "application/json"},
                    json=body,
                )
            except httpx.TransportError as e:
                raise TransientServiceError(f"Image createTask transport error: {e}") from e
            if r.status_code >= 400:
                logger.error(f"Image createTask failed {r.status_code}: {r.text}")
                raise ImageGenerationError(f"Image createTask failed {r.status_code}: {r.text}")
            try:
                task_id = (r.json().get("data") or {}).get("taskId")
            except (ValueError, AttributeError) as e:
                raise ImageGenerationError(f"Image createTask returned an unreadable body: {r.text[:200]}") from e
            if not task_id:
                raise ImageGenerationError("Image createTask returned no taskId")
            logger.info(f"Image task created with ID: {task_id}")

            for attempt in range(1, self.max_attempts + 1):
                if attempt > 1:
                    await self.sleep(self.poll_interval_s)
                try:
                    s = await client.get(
                        f"{self.base_url}/recordInfo",
                        params={"taskId": task_id},
                        headers=_headers(),
                    )
                except httpx.TransportError as e:
                    logger.warning(f"Image task {task_id} status error on attempt {attempt}: {e}")
                    continue
                if s.status_code >= 400:
                    logger.warning(f"Image task {task_id} status {s.status_code} on attempt {attempt}")
                    continue
                try:
                    data = s.json().get("data") or {}
                except (ValueError, AttributeError):
                    logger.warning(f"Image task {task_id} returned an unreadable status body on attempt {attempt}")
                    continue
                state = data.get("state")
                logger.info(f"Image task {task_id} attempt {attempt}/{self.max_attempts}: state={state}")
                if state == "success":
                    urls = json.loads(data.get("resultJson") or "{}").get("resultUrls") or []
                    if not urls:
                        raise ImageGenerationError("Image task succeeded but no result URL")
                    return urls[0]
                if state in ("fail", "failed"):
                    raise ImageGenerationError(f"Image task failed: {data.get('failMsg') or 'unknown error'}")

        logger.error(f"Image task {task_id} polling timeout")
        raise TimeoutError(f"Image task {task_id} polling timeout")
