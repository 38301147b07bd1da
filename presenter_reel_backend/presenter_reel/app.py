import os
import asyncio
import logging
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS
from .errors import (
    PlanValidationError,
    ReelError,
    SessionAbortedError,
    SessionClosedError,
    SessionNotFoundError,
)
from .models import AssemblyOptions, GenerationPlan, PlanRequest, SessionRequest, SessionStatus
from .orchestrator import ReelPipeline

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Presenter Reel Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
)

pipeline = ReelPipeline()

# Strong references so background runs are not garbage collected mid-flight
_BACKGROUND = set()


def _spawn(coro):
    task = asyncio.create_task(coro)
    _BACKGROUND.add(task)
    task.add_done_callback(_BACKGROUND.discard)
    return task


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, PlanValidationError):
        return HTTPException(422, {"message": "plan validation failed", "errors": e.errors})
    if isinstance(e, (SessionNotFoundError, IndexError)):
        return HTTPException(404, str(e))
    if isinstance(e, (SessionClosedError, SessionAbortedError, ReelError)):
        return HTTPException(409, str(e))
    return HTTPException(500, str(e))


def _summary(session) -> dict:
    tasks = session.current_tasks()
    return {
        "session_id": session.session_id,
        "status": session.status.value,
        "outcome": session.outcome.value if session.outcome else None,
        "failure": session.failure.model_dump(mode="json") if session.failure else None,
        "error": session.error,
        "progress": {
            "segments_total": len(session.plan.segments),
            "segments_done": sum(1 for t in tasks if t.local_path),
            "segments": [
                {"index": t.segment_index, "role": t.role.value, "status": t.status.value, "attempts": t.attempts}
                for t in tasks
            ],
        },
        "final_path": session.final_path,
    }


async def _run_background(session_id: str, assembly: AssemblyOptions):
    try:
        await pipeline.resume_session(session_id, assembly)
    except ReelError as e:
        logger.error(f"Background run failed for session {session_id}: {e}")
    except Exception:
        # The session record already carries the failure; nothing awaits this task
        logger.exception(f"Background run crashed for session {session_id}")


@app.get("/health")
def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}


@app.post("/v1/plans")
def create_plan(req: PlanRequest) -> GenerationPlan:
    try:
        return pipeline.create_plan(req.content_type, req.script, req.preset, req.options)
    except PlanValidationError as e:
        raise _http_error(e)


@app.post("/v1/sessions")
async def start_session(req: SessionRequest):
    plan = req.plan
    if plan is None:
        if req.plan_request is None:
            raise HTTPException(400, "either plan or plan_request is required")
        try:
            plan = pipeline.create_plan(
                req.plan_request.content_type, req.plan_request.script,
                req.plan_request.preset, req.plan_request.options,
            )
        except PlanValidationError as e:
            raise _http_error(e)
    session = await pipeline.start_session(plan)
    _spawn(_run_background(session.session_id, req.assembly))
    logger.info(f"Started session {session.session_id}")
    return _summary(session)


@app.get("/v1/sessions/{session_id}")
async def session_status(session_id: str):
    try:
        return _summary(await pipeline.get_session(session_id))
    except ReelError as e:
        raise _http_error(e)


@app.get("/v1/sessions/{session_id}/events")
async def session_events(session_id: str):
    return [e.model_dump(mode="json") for e in pipeline.events.get(session_id, [])]


@app.post("/v1/sessions/{session_id}:resume")
async def resume_session(session_id: str, assembly: AssemblyOptions = None):
    try:
        session = await pipeline.get_session(session_id)
    except ReelError as e:
        raise _http_error(e)
    if session.aborted:
        raise HTTPException(409, "session was aborted")
    if pipeline.is_running(session_id):
        raise HTTPException(409, "session is already running")
    _spawn(_run_background(session_id, assembly or AssemblyOptions()))
    return _summary(session)


@app.post("/v1/sessions/{session_id}/segments/{index}:retry")
async def retry_segment(session_id: str, index: int, assembly: AssemblyOptions = None):
    try:
        session = await pipeline.prepare_retry(session_id, index)
    except (ReelError, IndexError) as e:
        raise _http_error(e)
    _spawn(_run_background(session_id, assembly or AssemblyOptions()))
    return _summary(session)


@app.post("/v1/sessions/{session_id}:abort")
async def abort_session(session_id: str):
    try:
        return _summary(await pipeline.abort_session(session_id))
    except ReelError as e:
        raise _http_error(e)


@app.get("/v1/sessions/{session_id}/download")
async def session_download(session_id: str):
    try:
        session = await pipeline.get_session(session_id)
    except ReelError as e:
        raise _http_error(e)
    if session.status != SessionStatus.COMPLETED or not session.final_path or not os.path.exists(session.final_path):
        raise HTTPException(409, "session not ready")

    def iterfile(path):
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                yield chunk

    headers = {"Content-Disposition": f'attachment; filename="presenter-reel-{session_id}.mp4"'}
    return StreamingResponse(iterfile(session.final_path), media_type="video/mp4", headers=headers)
