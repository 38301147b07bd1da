import io
import os
import logging
import tempfile
from datetime import timedelta
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import DownloadError, ImageGenerationError
from .image_client import ImageGenerationClient
from .media import write_bytes
from .models import ReferenceImage, SegmentSpec, utcnow
from .prompts import build_reference_prompt
from .settings import PRESENTER_DESCRIPTION, SIGNED_URL_TTL_S
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "presenter-refs"
FRAME_PREFIX = "video-frames"


def to_png(image_data: bytes) -> bytes:
    """Re-encode anything the image service returns as an RGB PNG."""
    try:
        with Image.open(io.BytesIO(image_data)) as pil_img:
            if pil_img.format == "PNG" and pil_img.mode == "RGB":
                return image_data
            if pil_img.mode in ("RGBA", "LA"):
                # White background so ffmpeg and the video service never see transparency
                rgba = pil_img.convert("RGBA")
                background = Image.new("RGB", rgba.size, (255, 255, 255))
                background.paste(rgba, mask=rgba.split()[-1])
                converted = background
            else:
                converted = pil_img.convert("RGB")
            png_buffer = io.BytesIO()
            converted.save(png_buffer, format="PNG")
            return png_buffer.getvalue()
    except UnidentifiedImageError as e:
        raise ImageGenerationError(f"reference image is not a readable image: {e}") from e


class ReferenceImageProvider:
    """Generates a per-segment reference image and persists it behind a signed URL.

    Temporary URLs from the image service expire quickly, so they are never
    handed to the video service. If the upload or signing fails the error is
    raised; there is no fallback to the temporary or a public URL.
    """

    def __init__(
        self,
        image_client: Optional[ImageGenerationClient] = None,
        storage: Optional[ObjectStorage] = None,
        ttl_seconds: int = SIGNED_URL_TTL_S,
        presenter: str = PRESENTER_DESCRIPTION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.image_client = image_client or ImageGenerationClient()
        self.storage = storage or ObjectStorage()
        self.ttl_seconds = ttl_seconds
        self.presenter = presenter
        self._transport = transport

    async def _download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=60, transport=self._transport) as client:
                r = await client.get(url)
                r.raise_for_status()
                return r.content
        except httpx.HTTPError as e:
            raise DownloadError(f"could not download reference image {url}: {e}") from e

    async def _persist(self, data: bytes, storage_path: str, content_type: str) -> str:
        await self.storage.put(data, storage_path, content_type)
        return await self.storage.sign(storage_path, self.ttl_seconds)

    async def generate(self, spec: SegmentSpec, session_id: str) -> ReferenceImage:
        shot = spec.cinematography.shot_type
        prompt = build_reference_prompt(self.presenter, shot, spec.emotion)
        temp_url = await self.image_client.generate(prompt, shot)
        logger.info(f"Got temporary reference image for segment {spec.index + 1}: {temp_url}")

        fd, local_path = tempfile.mkstemp(suffix=".png", prefix="ref_")
        os.close(fd)
        try:
            write_bytes(local_path, to_png(await self._download(temp_url)))
            with open(local_path, "rb") as f:
                data = f.read()
            storage_path = f"{REFERENCE_PREFIX}/{session_id}/segment_{spec.index + 1}_{shot.value}.png"
            signed_url = await self._persist(data, storage_path, "image/png")
        finally:
            if os.path.exists(local_path):
                os.remove(local_path)

        return ReferenceImage(
            role=spec.role,
            shot_type=shot,
            emotion=spec.emotion,
            ephemeral_source_url=temp_url,
            storage_path=storage_path,
            persisted_url=signed_url,
            expires_at=utcnow() + timedelta(seconds=self.ttl_seconds),
        )

    async def persist_frame(self, frame_path: str, spec: SegmentSpec, session_id: str) -> ReferenceImage:
        """Persist an extracted last frame as the reference for `spec`."""
        with open(frame_path, "rb") as f:
            data = f.read()
        storage_path = f"{FRAME_PREFIX}/{session_id}/segment_{spec.index + 1}_start.jpg"
        signed_url = await self._persist(data, storage_path, "image/jpeg")
        os.remove(frame_path)
        logger.info(f"Persisted chained frame for segment {spec.index + 1} at {storage_path}")
        return ReferenceImage(
            role=spec.role,
            shot_type=spec.cinematography.shot_type,
            emotion=spec.emotion,
            storage_path=storage_path,
            persisted_url=signed_url,
            expires_at=utcnow() + timedelta(seconds=self.ttl_seconds),
        )
