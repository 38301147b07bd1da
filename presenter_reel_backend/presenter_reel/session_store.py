"""
Session persistence.

Each session lives in its own directory as session.json next to its clips,
so a crashed run can be resumed from disk. When Vercel KV credentials are set
the record is mirrored there too, which lets a separate API process report
progress without sharing the filesystem.
"""
import os
import json
import uuid
import asyncio
import httpx
import logging
from typing import Dict, Optional

from .errors import SessionClosedError, SessionNotFoundError
from .models import GenerationPlan, Session, utcnow
from .settings import SESSIONS_DIR

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"
# Present once the final artifact is recorded; the session is read-only from then on
CLOSED_MARKER = ".closed"


class KVMirror:
    def __init__(self):
        self.kv_rest_api_url = os.getenv("KV_REST_API_URL")
        self.kv_rest_api_token = os.getenv("KV_REST_API_TOKEN")
        self.enabled = bool(self.kv_rest_api_url and self.kv_rest_api_token)
        if not self.enabled:
            logger.info("KV mirror not configured - sessions are stored on disk only")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    async def set_session(self, session: Session) -> bool:
        if not self.enabled:
            return False
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                response = await client.post(
                    f"{self.kv_rest_api_url}/set",
                    headers=self._headers(),
                    json=[f"session:{session.session_id}", session.model_dump_json()]
                )
                response.raise_for_status()
                return True
        except httpx.HTTPError as e:
            # The disk copy is authoritative; a stale mirror only delays progress reports.
            logger.error(f"Failed to mirror session {session.session_id} to KV: {e}")
            return False

    async def get_session(self, session_id: str) -> Optional[Session]:
        if not self.enabled:
            return None
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                response = await client.post(
                    f"{self.kv_rest_api_url}/get",
                    headers=self._headers(),
                    json=[f"session:{session_id}"]
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to retrieve session {session_id} from KV: {e}")
            return None
        if not data.get("result"):
            return None
        return Session.model_validate_json(data["result"])


class SessionStore:
    def __init__(self, base_dir: str = SESSIONS_DIR, mirror: Optional[KVMirror] = None):
        self.base_dir = base_dir
        self.mirror = mirror or KVMirror()
        self._locks: Dict[str, asyncio.Lock] = {}
        os.makedirs(self.base_dir, exist_ok=True)

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def session_dir(self, session_id: str) -> str:
        return os.path.join(self.base_dir, session_id)

    def _path(self, session_id: str) -> str:
        return os.path.join(self.session_dir(session_id), SESSION_FILE)

    def _marker(self, session_id: str) -> str:
        return os.path.join(self.session_dir(session_id), CLOSED_MARKER)

    def _mark_closed(self, session_id: str):
        marker = self._marker(session_id)
        if not os.path.exists(marker):
            os.makedirs(os.path.dirname(marker), exist_ok=True)
            with open(marker, "w", encoding="utf-8") as f:
                f.write(utcnow().isoformat())

    def release(self, session_id: str):
        """Drop the in-memory lock of a session that is no longer running."""
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    async def create(self, plan: GenerationPlan) -> Session:
        session_id = str(uuid.uuid4())
        work_dir = self.session_dir(session_id)
        os.makedirs(work_dir, exist_ok=True)
        session = Session(session_id=session_id, plan=plan, work_dir=work_dir)
        await self.save(session)
        logger.info(f"Created session {session_id} in {work_dir}")
        return session

    async def save(self, session: Session):
        """Write the record atomically. A session with a final artifact is read-only."""
        async with self._lock(session.session_id):
            if os.path.exists(self._marker(session.session_id)):
                raise SessionClosedError(f"session {session.session_id} is completed and read-only")
            session.updated_at = utcnow()
            path = self._path(session.session_id)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            tmp_path = f"{path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(session.model_dump_json(indent=2))
            os.replace(tmp_path, path)
            if session.is_closed:
                self._mark_closed(session.session_id)
        await self.mirror.set_session(session)

    async def load(self, session_id: str) -> Session:
        path = self._path(session_id)
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                session = Session.model_validate(json.load(f))
        else:
            session = await self.mirror.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(f"session {session_id} not found")
        if session.is_closed:
            self._mark_closed(session_id)
        return session
