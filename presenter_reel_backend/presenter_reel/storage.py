"""
Object storage on Supabase Storage.

Reference images must outlive the image service's temporary URLs, so they are
uploaded here and handed to the video service as signed URLs.
"""
import asyncio
import logging
from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from .errors import StorageError
from .settings import SIGNED_URL_TTL_S, STORAGE_BUCKET, SUPABASE_SERVICE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_admin() -> Client:
    """Supabase client with the service key (storage writes need it)."""
    if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
        raise StorageError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set for object storage")
    return create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)


class ObjectStorage:
    def __init__(self, bucket: str = STORAGE_BUCKET, client: Optional[Client] = None):
        self.bucket = bucket
        self._client = client

    def _bucket(self):
        client = self._client or get_supabase_admin()
        return client.storage.from_(self.bucket)

    async def put(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        def _upload():
            return self._bucket().upload(path, data, {"content-type": content_type, "upsert": "true"})

        try:
            await asyncio.to_thread(_upload)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Upload of {path} to bucket {self.bucket} failed: {e}")
            raise StorageError(f"upload of {path} failed: {e}") from e
        logger.info(f"Uploaded {len(data)} bytes to {self.bucket}/{path}")
        return path

    async def sign(self, path: str, ttl_seconds: int = SIGNED_URL_TTL_S) -> str:
        def _sign():
            return self._bucket().create_signed_url(path, ttl_seconds)

        try:
            result = await asyncio.to_thread(_sign)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Signing {path} failed: {e}")
            raise StorageError(f"signing {path} failed: {e}") from e

        url = (result or {}).get("signedURL") or (result or {}).get("signedUrl")
        if not url:
            raise StorageError(f"signing {path} returned no URL")
        return url
