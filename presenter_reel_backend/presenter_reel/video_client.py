import os, httpx, logging
from typing import Optional
from pydantic import BaseModel

from .errors import ConfigurationError, SubmissionError, TransientServiceError
from .models import TaskStatus
from .settings import VEO_API_BASE, VEO_ASPECT_RATIO, VEO_MODEL, VEO_WATERMARK

logger = logging.getLogger(__name__)

# successFlag values reported by record-info
_PROCESSING = 0
_SUCCESS = 1


class TaskPoll(BaseModel):
    status: TaskStatus
    result_url: Optional[str] = None
    error: Optional[str] = None


def _headers():
    token = os.getenv("VEO_API_KEY", "")
    if not token:
        raise ConfigurationError("VEO_API_KEY is not set; please configure your .env")
    return {"Authorization": f"Bearer {token}"}


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _json_body(r: httpx.Response, what: str) -> dict:
    """Parse a JSON object body; gateways sometimes answer 200 with an HTML page."""
    try:
        payload = r.json()
    except ValueError as e:
        logger.error(f"Veo {what} returned a non-JSON body: {r.text[:200]}")
        raise TransientServiceError(f"Veo {what} returned a non-JSON body") from e
    if not isinstance(payload, dict):
        raise TransientServiceError(f"Veo {what} returned unexpected JSON: {payload!r}")
    return payload


class VideoGenerationClient:
    """Request/poll client for the Veo video generation API.

    Network errors, 429 and 5xx become TransientServiceError so callers can
    apply their own retry budget; anything else is reported as-is.
    """

    def __init__(self, base_url: str = VEO_API_BASE, model: str = VEO_MODEL, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=30, transport=self._transport)

    async def submit(self, prompt: str, reference_url: Optional[str], seed: int, duration: float, aspect_ratio: str = VEO_ASPECT_RATIO) -> str:
        body = {
            "prompt": prompt,
            "model": self.model,
            "aspectRatio": aspect_ratio,
            "seed": seed,
        }
        if reference_url:
            body["imageUrls"] = [reference_url]
        if VEO_WATERMARK:
            body["waterMark"] = VEO_WATERMARK
        logger.info(f"Submitting Veo task ({duration:.0f}s, seed {seed}, reference={'yes' if reference_url else 'no'})")

        try:
            async with self._client() as client:
                r = await client.post(
                    f"{self.base_url}/generate",
                    headers={**_headers(), "Content-Type": "application/json"},
                    json=body,
                )
        except httpx.TransportError as e:
            raise TransientServiceError(f"Veo submit transport error: {e}") from e

        if r.status_code >= 400:
            logger.error(f"Veo submit failed {r.status_code}: {r.text}")
            if _is_transient(r.status_code):
                raise TransientServiceError(f"Veo submit failed {r.status_code}", r.status_code)
            raise SubmissionError(f"Veo submit failed {r.status_code}: {r.text}")

        payload = _json_body(r, "submit")
        code = payload.get("code")
        if code != 200:
            msg = payload.get("msg")
            if isinstance(code, int) and _is_transient(code):
                raise TransientServiceError(f"Veo submit rejected {code}: {msg}", code)
            raise SubmissionError(f"Veo submit rejected {code}: {msg}")
        task_id = (payload.get("data") or {}).get("taskId")
        if not task_id:
            raise SubmissionError("Veo submit returned no taskId")
        logger.info(f"Veo task created with ID: {task_id}")
        return task_id

    async def poll(self, task_id: str) -> TaskPoll:
        try:
            async with self._client() as client:
                s = await client.get(
                    f"{self.base_url}/record-info",
                    params={"taskId": task_id},
                    headers=_headers(),
                )
        except httpx.TransportError as e:
            raise TransientServiceError(f"Veo status transport error: {e}") from e

        if s.status_code >= 400:
            logger.error(f"Veo status failed {s.status_code}: {s.text}")
            if _is_transient(s.status_code):
                raise TransientServiceError(f"Veo status failed {s.status_code}", s.status_code)
            return TaskPoll(status=TaskStatus.FAILED, error=f"status request failed {s.status_code}: {s.text}")

        data = _json_body(s, "status").get("data") or {}
        flag = data.get("successFlag")
        logger.info(f"Veo task {task_id} successFlag: {flag}")

        if flag is None or flag == _PROCESSING:
            return TaskPoll(status=TaskStatus.PROCESSING)
        if flag == _SUCCESS:
            urls = (data.get("response") or {}).get("resultUrls") or []
            if not urls:
                return TaskPoll(status=TaskStatus.FAILED, error="succeeded but no result URL")
            return TaskPoll(status=TaskStatus.SUCCEEDED, result_url=urls[0])
        return TaskPoll(status=TaskStatus.FAILED, error=data.get("errorMessage") or f"generation failed (successFlag={flag})")
