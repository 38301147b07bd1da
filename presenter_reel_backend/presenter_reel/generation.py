"""
Drives generation tasks through pending -> processing -> terminal.

The video service takes minutes per clip and fails transiently, so every
step here is bounded: one resubmission, a fixed number of polls and a few
download attempts. Each state change is written to the session record before
anything else happens, which is what makes a crashed run resumable.
"""
import os
import inspect
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

import httpx

from .errors import (
    DownloadError,
    GenerationFailedError,
    GenerationTimeoutError,
    SessionAbortedError,
    SubmissionError,
    TransientServiceError,
)
from .models import GenerationTask, ProgressEvent, SegmentSpec, Session, TaskStatus, utcnow
from .session_store import SessionStore
from .settings import (
    DOWNLOAD_RETRIES,
    POLL_INTERVAL_S,
    POLL_MAX_ATTEMPTS,
    RETRY_BACKOFF_S,
    SUBMIT_RETRIES,
    VEO_ASPECT_RATIO,
)
from .video_client import VideoGenerationClient

logger = logging.getLogger(__name__)

EventSink = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class GenerationTaskOrchestrator:
    def __init__(
        self,
        client: VideoGenerationClient,
        store: SessionStore,
        on_event: Optional[EventSink] = None,
        poll_interval_s: float = POLL_INTERVAL_S,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        submit_retries: int = SUBMIT_RETRIES,
        download_retries: int = DOWNLOAD_RETRIES,
        backoff_s: float = RETRY_BACKOFF_S,
        sleep=asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = client
        self.store = store
        self.on_event = on_event
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self.submit_retries = submit_retries
        self.download_retries = download_retries
        self.backoff_s = backoff_s
        self.sleep = sleep
        self._transport = transport

    async def emit(self, event: ProgressEvent):
        if self.on_event is None:
            return
        result = self.on_event(event)
        if inspect.isawaitable(result):
            await result

    async def _record(self, session: Session, task: GenerationTask, message: str):
        await self.store.save(session)
        await self.emit(ProgressEvent(
            session_id=session.session_id,
            stage="generation",
            segment_index=task.segment_index,
            status=task.status.value,
            message=message,
        ))

    def _task_for(self, session: Session, spec: SegmentSpec) -> GenerationTask:
        task = session.current_task(spec.index)
        if task is None or task.is_terminal:
            task = GenerationTask(segment_index=spec.index, role=spec.role)
            session.tasks.append(task)
        return task

    async def submit(self, session: Session, spec: SegmentSpec, reference_url: Optional[str]) -> GenerationTask:
        task = self._task_for(session, spec)
        last_error: Exception = SubmissionError("no submission attempted")
        for attempt in range(self.submit_retries + 1):
            try:
                task_id = await self.client.submit(
                    spec.prompt_text, reference_url, spec.character_seed,
                    spec.duration_seconds, VEO_ASPECT_RATIO,
                )
            except TransientServiceError as e:
                last_error = e
                logger.warning(f"Segment {spec.index + 1} submit attempt {attempt + 1} failed: {e}")
                if attempt < self.submit_retries:
                    await self.sleep(self.backoff_s)
                continue
            except SubmissionError as e:
                last_error = e
                break
            task.transition(TaskStatus.PROCESSING, task_id=task_id, submitted_at=utcnow(), error=None)
            await self._record(session, task, f"submitted as {task_id}")
            return task

        task.transition(TaskStatus.FAILED, error=f"submission failed: {last_error}")
        await self._record(session, task, task.error)
        logger.error(f"Segment {spec.index + 1} submission failed: {last_error}")
        raise SubmissionError(f"segment {spec.index} submission failed: {last_error}") from last_error

    async def poll(self, session: Session, task: GenerationTask) -> TaskStatus:
        """Check the service once. Safe to repeat; only the task is updated."""
        if task.is_terminal:
            return task.status
        try:
            result = await self.client.poll(task.task_id)
        except TransientServiceError as e:
            logger.warning(f"Segment {task.segment_index + 1} poll error, will retry: {e}")
            task.transition(TaskStatus.PROCESSING, attempts=task.attempts + 1)
            await self._record(session, task, f"poll error: {e}")
            return task.status

        attempts = task.attempts + 1
        if result.status == TaskStatus.SUCCEEDED:
            task.transition(TaskStatus.SUCCEEDED, attempts=attempts, result_url=result.result_url)
        elif result.status == TaskStatus.FAILED:
            task.transition(TaskStatus.FAILED, attempts=attempts, error=result.error)
        else:
            task.transition(TaskStatus.PROCESSING, attempts=attempts)
        await self._record(session, task, f"poll {attempts}: {task.status.value}")
        return task.status

    async def await_completion(
        self,
        session: Session,
        task: GenerationTask,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> str:
        for _ in range(self.max_attempts):
            if session.aborted or (should_stop is not None and should_stop()):
                raise SessionAbortedError(f"session {session.session_id} was aborted")
            await self.sleep(self.poll_interval_s)
            status = await self.poll(session, task)
            if status == TaskStatus.SUCCEEDED:
                return task.result_url
            if status == TaskStatus.FAILED:
                raise GenerationFailedError(task.segment_index, task.error or "unknown error")

        task.transition(TaskStatus.TIMED_OUT, error=f"still processing after {self.max_attempts} polls")
        await self._record(session, task, task.error)
        logger.error(f"Segment {task.segment_index + 1} timed out after {self.max_attempts} polls")
        raise GenerationTimeoutError(task.segment_index, self.max_attempts)

    async def download(self, url: str, dest_path: str) -> str:
        """Stream `url` to `dest_path`. The file only appears once complete."""
        os.makedirs(os.path.dirname(dest_path), exist_ok=True)
        part_path = f"{dest_path}.part"
        last_error: Optional[Exception] = None
        for attempt in range(1, self.download_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=120, follow_redirects=True, transport=self._transport) as client:
                    async with client.stream("GET", url) as r:
                        r.raise_for_status()
                        with open(part_path, "wb") as f:
                            async for chunk in r.aiter_bytes():
                                f.write(chunk)
                os.replace(part_path, dest_path)
                logger.info(f"Downloaded {url} to {dest_path}")
                return dest_path
            except (httpx.HTTPError, OSError) as e:
                last_error = e
                logger.warning(f"Download attempt {attempt}/{self.download_retries} of {url} failed: {e}")
                if os.path.exists(part_path):
                    os.remove(part_path)
                if attempt < self.download_retries:
                    await self.sleep(self.backoff_s)
        raise DownloadError(f"download of {url} failed after {self.download_retries} attempts: {last_error}")

    async def run_segment(
        self,
        session: Session,
        spec: SegmentSpec,
        reference_url: Optional[str],
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> GenerationTask:
        """Take one segment from wherever it stopped to a clip on disk.

        Terminal failures are recorded on the task and returned, not raised,
        so sibling segments keep running. Only an abort propagates.
        """
        task = session.current_task(spec.index)
        try:
            if task is None or task.status == TaskStatus.PENDING:
                task = await self.submit(session, spec, reference_url)
            if task.status == TaskStatus.PROCESSING:
                await self.await_completion(session, task, should_stop)
            if task.status == TaskStatus.SUCCEEDED and not (task.local_path and os.path.exists(task.local_path)):
                task.local_path = await self.download(task.result_url, session.segment_path(spec))
                task.updated_at = utcnow()
                await self._record(session, task, f"downloaded to {task.local_path}")
        except (SubmissionError, GenerationFailedError, GenerationTimeoutError) as e:
            logger.error(f"Segment {spec.index + 1} ({spec.role.value}) ended without a clip: {e}")
        except DownloadError as e:
            task.error = str(e)
            await self._record(session, task, task.error)
            logger.error(f"Segment {spec.index + 1} ({spec.role.value}) could not be downloaded: {e}")
        return session.current_task(spec.index)
