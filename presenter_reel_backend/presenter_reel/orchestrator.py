import os, asyncio, inspect, logging
from collections import OrderedDict
from typing import Dict, List, Optional, Union

from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field

from . import media
from .assembler import SegmentAssembler
from .captions import CaptionSynchronizer
from .continuity import ContinuityExtractor
from .errors import (
    AssemblyError,
    EncodingError,
    ReelError,
    ReferenceExpiredError,
    SessionAbortedError,
    SessionClosedError,
)
from .generation import EventSink, GenerationTaskOrchestrator
from .models import (
    AssemblyOptions,
    AssemblyResult,
    ContentType,
    ContinuityMode,
    GenerationPlan,
    GenerationTask,
    PlanOptions,
    Preset,
    ProgressEvent,
    Script,
    SegmentClip,
    SegmentFailure,
    SegmentSpec,
    Session,
    SessionOutcome,
    SessionStatus,
    TaskStatus,
    utcnow,
)
from .planner import create_plan
from .references import ReferenceImageProvider
from .session_store import SessionStore
from .settings import EVENT_HISTORY_SESSIONS
from .video_client import VideoGenerationClient

logger = logging.getLogger(__name__)

ASSEMBLED_NAME = "assembled.mp4"
CAPTIONS_NAME = "captions.ass"
FINAL_NAME = "final.mp4"


class PipelineState(BaseModel):
    session_id: str
    assembly: AssemblyOptions = Field(default_factory=AssemblyOptions)
    generation_ok: bool = False
    assembled: Optional[AssemblyResult] = None


def _has_clip(task: Optional[GenerationTask]) -> bool:
    return bool(
        task is not None
        and task.status == TaskStatus.SUCCEEDED
        and task.local_path
        and os.path.exists(task.local_path)
    )


def _needs_work(task: Optional[GenerationTask]) -> bool:
    """New, pending, in flight, or succeeded remotely but not on disk."""
    if task is None or not task.is_terminal:
        return True
    return task.status == TaskStatus.SUCCEEDED and not _has_clip(task)


class ReelPipeline:
    """Plans, generates, assembles and captions presenter reels.

    Stages run as a langgraph graph: references -> generate -> assemble ->
    captions. Generation stops the graph when any segment ended without a
    clip, leaving the session partially failed with its finished clips on disk.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        video_client: Optional[VideoGenerationClient] = None,
        references: Optional[ReferenceImageProvider] = None,
        continuity: Optional[ContinuityExtractor] = None,
        assembler: Optional[SegmentAssembler] = None,
        captions: Optional[CaptionSynchronizer] = None,
        on_event: Optional[EventSink] = None,
        event_history: int = EVENT_HISTORY_SESSIONS,
        **generation_options,
    ):
        self.store = store or SessionStore()
        self.references = references
        self.continuity = continuity or ContinuityExtractor()
        self.assembler = assembler or SegmentAssembler()
        self.captions = captions or CaptionSynchronizer()
        self.on_event = on_event
        self.events: Dict[str, List[ProgressEvent]] = {}
        self.generation = GenerationTaskOrchestrator(
            video_client or VideoGenerationClient(),
            self.store,
            on_event=self._record_event,
            **generation_options,
        )
        self.event_history = event_history
        self._finished = OrderedDict()
        self._live: Dict[str, Session] = {}
        self.graph = self._build_graph()

    # --- events ---

    async def _record_event(self, event: ProgressEvent):
        self.events.setdefault(event.session_id, []).append(event)
        if self.on_event is not None:
            result = self.on_event(event)
            if inspect.isawaitable(result):
                await result

    async def _stage(self, session: Session, stage: str, message: str):
        logger.info(f"Session {session.session_id} [{stage}] {message}")
        await self._record_event(ProgressEvent(
            session_id=session.session_id, stage=stage, status=session.status.value, message=message,
        ))

    def _reference_provider(self) -> ReferenceImageProvider:
        if self.references is None:
            self.references = ReferenceImageProvider()
        return self.references

    # --- graph nodes ---

    async def node_references(self, state: PipelineState) -> PipelineState:
        session = self._live[state.session_id]
        plan = session.plan
        if plan.continuity_mode != ContinuityMode.REFERENCE_IMAGES:
            return state

        async def _ensure(spec: SegmentSpec):
            ref = session.references.get(spec.index)
            if ref is not None and not ref.is_expired():
                return
            if ref is not None:
                logger.warning(f"Reference for segment {spec.index + 1} expired at {ref.expires_at}, regenerating")
            session.references[spec.index] = await self._reference_provider().generate(spec, session.session_id)

        todo = [s for s in plan.segments if _needs_work(session.current_task(s.index))]
        results = await asyncio.gather(*[_ensure(s) for s in todo], return_exceptions=True)
        failed = [(spec, r) for spec, r in zip(todo, results) if isinstance(r, BaseException)]
        if failed:
            spec, error = failed[0]
            task = session.current_task(spec.index)
            session.failure = SegmentFailure(
                segment_index=spec.index,
                role=spec.role,
                status=task.status if task is not None else TaskStatus.PENDING,
                attempts=task.attempts if task is not None else 0,
                message=f"reference image failed: {error}",
            )
            await self.store.save(session)
            for other, e in failed:
                logger.error(f"Reference for segment {other.index + 1} failed: {e}")
            raise error
        await self.store.save(session)
        await self._stage(session, "references", f"{len(todo)} reference images ready")
        return state

    def _reference_url(self, session: Session, spec: SegmentSpec) -> Optional[str]:
        mode = session.plan.continuity_mode
        if mode == ContinuityMode.FIXED_IDENTITY or (mode == ContinuityMode.FRAME_CHAIN and spec.index == 0):
            return spec.reference_image_url
        ref = session.references.get(spec.index)
        if ref is None:
            raise ReferenceExpiredError(f"segment {spec.index} has no reference image")
        if ref.is_expired():
            raise ReferenceExpiredError(f"reference for segment {spec.index} expired at {ref.expires_at}")
        return ref.persisted_url

    async def _chain_reference(self, session: Session, spec: SegmentSpec):
        ref = session.references.get(spec.index)
        if ref is not None and not ref.is_expired():
            return
        previous = session.current_task(spec.index - 1)
        frame = await self.continuity.extract_last_frame(
            previous.local_path, f"{session.session_id}_segment_{spec.index + 1}.jpg"
        )
        session.references[spec.index] = await self._reference_provider().persist_frame(frame, spec, session.session_id)
        await self.store.save(session)

    async def node_generate(self, state: PipelineState) -> PipelineState:
        session = self._live[state.session_id]
        session.status = SessionStatus.GENERATING
        await self.store.save(session)
        todo = [s for s in session.plan.segments if _needs_work(session.current_task(s.index))]
        await self._stage(session, "generation", f"{len(todo)} of {len(session.plan.segments)} segments to generate")

        def should_stop() -> bool:
            return session.aborted

        if session.plan.continuity_mode == ContinuityMode.FRAME_CHAIN:
            for spec in session.plan.segments:
                if not _needs_work(session.current_task(spec.index)):
                    continue
                if spec.index > 0:
                    if not _has_clip(session.current_task(spec.index - 1)):
                        break
                    await self._chain_reference(session, spec)
                task = await self.generation.run_segment(session, spec, self._reference_url(session, spec), should_stop)
                if not _has_clip(task):
                    break
        else:
            results = await asyncio.gather(
                *[self.generation.run_segment(session, s, self._reference_url(session, s), should_stop) for s in todo],
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result

        state.generation_ok = self._summarize_generation(session)
        await self.store.save(session)
        await self._stage(session, "generation", "all segments ready" if state.generation_ok else f"stopped: {session.failure.message}")
        return state

    def _summarize_generation(self, session: Session) -> bool:
        tasks = [session.current_task(s.index) for s in session.plan.segments]
        if all(_has_clip(t) for t in tasks):
            return True
        broken = [t for t in tasks if t is not None and not _has_clip(t)]
        explicit = any(t.status in (TaskStatus.FAILED, TaskStatus.SUCCEEDED) for t in broken)
        session.outcome = SessionOutcome.GENERATION_FAILED if explicit else SessionOutcome.GENERATION_TIMEOUT
        session.status = SessionStatus.PARTIALLY_FAILED if any(_has_clip(t) for t in tasks) else SessionStatus.FAILED
        if broken:
            first = broken[0]
            session.failure = SegmentFailure(
                segment_index=first.segment_index,
                role=first.role,
                status=first.status,
                attempts=first.attempts,
                message=first.error or f"segment {first.segment_index + 1} has no clip",
            )
        return False

    def _after_generate(self, state: PipelineState) -> str:
        return "assemble" if state.generation_ok else "stop"

    async def node_assemble(self, state: PipelineState) -> PipelineState:
        session = self._live[state.session_id]
        session.status = SessionStatus.ASSEMBLING
        await self.store.save(session)
        clips = [
            SegmentClip(index=t.segment_index, role=t.role, local_path=t.local_path)
            for t in session.current_tasks()
        ]
        out_path = os.path.join(session.work_dir, ASSEMBLED_NAME)
        state.assembled = await self.assembler.assemble(clips, out_path, state.assembly)
        session.assembled_path = state.assembled.output_path
        session.tail_seconds = state.assembled.tail_seconds
        await self.store.save(session)
        await self._stage(session, "assembly", f"assembled {len(clips)} clips")
        return state

    async def node_captions(self, state: PipelineState) -> PipelineState:
        session = self._live[state.session_id]
        session.status = SessionStatus.CAPTIONING
        await self.store.save(session)
        try:
            total = await asyncio.to_thread(media.probe_duration, session.assembled_path)
        except EncodingError as e:
            raise AssemblyError(f"could not read the duration of the assembled video: {e}") from e
        spoken = max(0.0, total - session.tail_seconds)
        subs_path = os.path.join(session.work_dir, CAPTIONS_NAME)
        final_path = os.path.join(session.work_dir, FINAL_NAME)
        await self.captions.burn(session.assembled_path, session.plan.full_dialogue, spoken, subs_path, final_path)

        session.captions_path = subs_path
        session.status = SessionStatus.COMPLETED
        session.outcome = SessionOutcome.SUCCESS
        session.failure = None
        session.completed_at = utcnow()
        session.final_path = final_path
        await self.store.save(session)
        await self._stage(session, "captions", f"final video at {final_path}")
        return state

    def _build_graph(self):
        g = StateGraph(PipelineState)
        g.add_node("references", self.node_references)
        g.add_node("generate", self.node_generate)
        g.add_node("assemble", self.node_assemble)
        g.add_node("captions", self.node_captions)
        g.set_entry_point("references")
        g.add_edge("references", "generate")
        g.add_conditional_edges("generate", self._after_generate, {"assemble": "assemble", "stop": END})
        g.add_edge("assemble", "captions")
        g.add_edge("captions", END)
        return g.compile()

    # --- public operations ---

    def create_plan(
        self,
        content_type: Union[str, ContentType],
        script: Optional[Script] = None,
        preset: Preset = Preset.STANDARD,
        options: Optional[PlanOptions] = None,
    ) -> GenerationPlan:
        return create_plan(content_type, script, preset, options)

    async def start_session(self, plan: GenerationPlan) -> Session:
        return await self.store.create(plan)

    async def run_session(self, plan: GenerationPlan, assembly: Optional[AssemblyOptions] = None) -> Session:
        session = await self.start_session(plan)
        return await self._run(session, assembly)

    async def resume_session(self, session_id: str, assembly: Optional[AssemblyOptions] = None) -> Session:
        """Continue a stored session: finished clips are kept, in-flight tasks
        are polled rather than resubmitted."""
        session = await self.store.load(session_id)
        if session.is_closed:
            logger.info(f"Session {session_id} already completed")
            return session
        if session.aborted:
            raise SessionAbortedError(f"session {session_id} was aborted")
        return await self._run(session, assembly)

    async def prepare_retry(self, session_id: str, index: int) -> Session:
        """Give one failed or timed-out segment a fresh pending task."""
        if self.is_running(session_id):
            raise ReelError(f"session {session_id} is still running")
        session = await self.store.load(session_id)
        if session.is_closed:
            raise SessionClosedError(f"session {session_id} is completed and read-only")
        if session.aborted:
            raise SessionAbortedError(f"session {session_id} was aborted")
        if index < 0 or index >= len(session.plan.segments):
            raise IndexError(f"session {session_id} has no segment {index}")
        task = session.current_task(index)
        if task is not None and not task.is_terminal:
            raise ReelError(f"segment {index} is still {task.status.value}")
        if _has_clip(task):
            raise ReelError(f"segment {index} already has a clip")
        spec = session.plan.segments[index]
        session.tasks.append(GenerationTask(segment_index=index, role=spec.role))
        session.references.pop(index, None)
        session.failure = None
        session.outcome = None
        await self.store.save(session)
        logger.info(f"Retrying segment {index + 1} of session {session_id}")
        return session

    async def retry_segment(self, session_id: str, index: int, assembly: Optional[AssemblyOptions] = None) -> Session:
        session = await self.prepare_retry(session_id, index)
        return await self._run(session, assembly)

    def is_running(self, session_id: str) -> bool:
        return session_id in self._live

    async def get_session(self, session_id: str) -> Session:
        if session_id in self._live:
            return self._live[session_id]
        return await self.store.load(session_id)

    async def abort_session(self, session_id: str) -> Session:
        """Stop polling; jobs already submitted keep running remotely."""
        session = self._live.get(session_id) or await self.store.load(session_id)
        if session.is_closed:
            raise SessionClosedError(f"session {session_id} is completed and read-only")
        session.aborted = True
        session.status = SessionStatus.ABORTED
        await self.store.save(session)
        await self._stage(session, "abort", "abort requested")
        return session

    async def _run(self, session: Session, assembly: Optional[AssemblyOptions]) -> Session:
        self._live[session.session_id] = session
        state = PipelineState(session_id=session.session_id, assembly=assembly or AssemblyOptions())
        try:
            logger.info(f"Starting pipeline for session {session.session_id} in {session.work_dir}")
            await self.graph.ainvoke(state)
        except SessionAbortedError:
            session.status = SessionStatus.ABORTED
            await self.store.save(session)
            await self._stage(session, "abort", "stopped polling")
        except AssemblyError as e:
            logger.error(f"Assembly failed for session {session.session_id}: {e}")
            session.status = SessionStatus.FAILED
            session.outcome = SessionOutcome.ASSEMBLY_ERROR
            session.error = str(e)
            await self.store.save(session)
            await self._stage(session, "assembly", f"failed: {e}")
        except (ReelError, TimeoutError) as e:
            logger.error(f"Pipeline failed for session {session.session_id}: {e}")
            session.status = SessionStatus.FAILED
            session.outcome = SessionOutcome.GENERATION_FAILED
            session.error = str(e)
            await self.store.save(session)
            await self._stage(session, "pipeline", f"failed: {e}")
        except Exception as e:
            # Record a terminal outcome before the error leaves the pipeline
            logger.error(f"Unexpected error in session {session.session_id}: {e!r}")
            session.status = SessionStatus.FAILED
            session.outcome = SessionOutcome.GENERATION_FAILED
            session.error = f"unexpected error: {e!r}"
            await self.store.save(session)
            await self._stage(session, "pipeline", session.error)
            raise
        finally:
            self._live.pop(session.session_id, None)
            self._retire(session.session_id)
            if session.plan.continuity_mode == ContinuityMode.FRAME_CHAIN:
                self.continuity.purge_older_than(24)
        return session

    def _retire(self, session_id: str):
        """Keep events for the most recent finished sessions only."""
        self._finished[session_id] = None
        self._finished.move_to_end(session_id)
        while len(self._finished) > self.event_history:
            old, _ = self._finished.popitem(last=False)
            if old not in self._live:
                self.events.pop(old, None)
        self.store.release(session_id)
