import os
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

from . import settings
from .errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentType(str, Enum):
    CHOLLO = "chollo"
    ANALYSIS = "analysis"
    BREAKING = "breaking"
    PREDICTION = "prediction"
    GENERIC = "generic"


class Preset(str, Enum):
    SHORT = "short"
    STANDARD = "standard"
    EXTENDED = "extended"


PRESET_SEGMENTS = {Preset.SHORT: 2, Preset.STANDARD: 3, Preset.EXTENDED: 4}
SEGMENT_SECONDS = 8.0


class Role(str, Enum):
    INTRO = "intro"
    ANALYSIS = "analysis"
    MIDDLE = "middle"
    OUTRO = "outro"


ROLES_BY_COUNT = {
    2: (Role.INTRO, Role.OUTRO),
    3: (Role.INTRO, Role.MIDDLE, Role.OUTRO),
    4: (Role.INTRO, Role.ANALYSIS, Role.MIDDLE, Role.OUTRO),
}


class Emotion(str, Enum):
    CURIOSIDAD = "curiosidad"
    AUTORIDAD = "autoridad"
    URGENCIA = "urgencia"
    VALIDACION = "validacion"
    EXCITEMENT = "excitement"
    INTRIGUE = "intrigue"
    CONFIDENCE = "confidence"
    SURPRISE = "surprise"
    ENTHUSIASM = "enthusiasm"
    ANALYSIS = "analysis"
    CONCERN = "concern"
    DETERMINATION = "determination"
    JOY = "joy"
    SATISFACTION = "satisfaction"
    ANTICIPATION = "anticipation"
    TENSION = "tension"
    RESOLUTION = "resolution"


class ShotType(str, Enum):
    WIDE = "wide"
    MEDIUM = "medium"
    MEDIUM_CLOSEUP = "medium_closeup"
    CLOSEUP = "closeup"


class BehaviorCategory(str, Enum):
    CONTINUING = "continuing"
    SHIFT_POSTURE = "shift_posture"
    TRANSITION_GESTURE = "transition_gesture"
    DIRECT_GAZE = "direct_gaze"
    SUBTLE_MOVEMENT = "subtle_movement"


class PatternName(str, Enum):
    ZOOM_IN = "zoom_in"
    MEDIUM_BALANCED = "medium_balanced"
    CLOSE_START = "close_start"
    ALTERNATING = "alternating"
    RANDOM = "random"


class ContinuityMode(str, Enum):
    FIXED_IDENTITY = "fixed_identity"
    REFERENCE_IMAGES = "reference_images"
    FRAME_CHAIN = "frame_chain"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATUSES = {TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.TIMED_OUT}

# processing -> processing is a poll that saw no change
_NEXT_STATUSES = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING, TaskStatus.FAILED},
    TaskStatus.PROCESSING: {TaskStatus.PROCESSING, TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.TIMED_OUT},
    TaskStatus.SUCCEEDED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.TIMED_OUT: set(),
}


class SessionStatus(str, Enum):
    CREATED = "created"
    GENERATING = "generating"
    ASSEMBLING = "assembling"
    CAPTIONING = "captioning"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    ABORTED = "aborted"


class SessionOutcome(str, Enum):
    VALIDATION_ERROR = "validation_error"
    GENERATION_TIMEOUT = "generation_timeout"
    GENERATION_FAILED = "generation_failed"
    ASSEMBLY_ERROR = "assembly_error"
    SUCCESS = "success"


class TransitionType(str, Enum):
    CUT = "cut"
    CROSSFADE = "crossfade"


class DialogueSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    text: str
    emotion: Emotion
    target_duration_seconds: float = SEGMENT_SECONDS

    @property
    def word_count(self) -> int:
        return len(self.text.split())


class Script(BaseModel):
    model_config = ConfigDict(frozen=True)

    segments: Tuple[DialogueSegment, ...]

    @property
    def full_text(self) -> str:
        return " ".join(s.text.strip() for s in self.segments)


class Cinematography(BaseModel):
    model_config = ConfigDict(frozen=True)

    shot_type: ShotType
    behavior_category: BehaviorCategory
    behavior_description: str


class SegmentSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    role: Role
    duration_seconds: float
    dialogue: str
    emotion: Emotion
    prompt_text: str
    cinematography: Cinematography
    character_seed: int
    reference_selector: Optional[int] = None
    # Fixed identity image used when no per-segment reference is generated
    reference_image_url: Optional[str] = None


class GenerationPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    content_type: ContentType
    preset: Preset
    continuity_mode: ContinuityMode
    pattern: PatternName
    character_seed: int
    character_index: Optional[int] = None
    segments: Tuple[SegmentSpec, ...]
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def total_duration(self) -> float:
        return sum(s.duration_seconds for s in self.segments)

    @property
    def full_dialogue(self) -> str:
        return " ".join(s.dialogue.strip() for s in self.segments)


class PlanOptions(BaseModel):
    pattern: Optional[PatternName] = None
    urgent: Optional[bool] = None
    continuity_mode: ContinuityMode = ContinuityMode.FIXED_IDENTITY
    character_index: Optional[int] = None
    reference_image_url: Optional[str] = None
    seed: Optional[int] = None


class ReferenceImage(BaseModel):
    role: Role
    shot_type: ShotType
    emotion: Emotion
    ephemeral_source_url: Optional[str] = None
    storage_path: str
    persisted_url: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None, margin_s: float = 0) -> bool:
        now = now or utcnow()
        return (self.expires_at - now).total_seconds() <= margin_s


class GenerationTask(BaseModel):
    segment_index: int
    role: Role
    task_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    submitted_at: Optional[datetime] = None
    result_url: Optional[str] = None
    local_path: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: TaskStatus, **changes) -> "GenerationTask":
        """Move the task forward, rejecting any backward or sideways step."""
        if status not in _NEXT_STATUSES[self.status]:
            raise InvalidTransitionError(
                f"segment {self.segment_index}: {self.status.value} -> {status.value} is not allowed"
            )
        self.status = status
        for key, value in changes.items():
            setattr(self, key, value)
        self.updated_at = utcnow()
        return self


class SegmentFailure(BaseModel):
    segment_index: int
    role: Role
    status: TaskStatus
    attempts: int
    message: str


class Session(BaseModel):
    session_id: str
    plan: GenerationPlan
    work_dir: str
    status: SessionStatus = SessionStatus.CREATED
    outcome: Optional[SessionOutcome] = None
    failure: Optional[SegmentFailure] = None
    error: Optional[str] = None
    tasks: List[GenerationTask] = Field(default_factory=list)
    references: Dict[int, ReferenceImage] = Field(default_factory=dict)
    assembled_path: Optional[str] = None
    captions_path: Optional[str] = None
    final_path: Optional[str] = None
    tail_seconds: float = 0.0
    aborted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_closed(self) -> bool:
        return self.final_path is not None

    def current_task(self, index: int) -> Optional[GenerationTask]:
        """Latest task for a segment; retries append, they never replace."""
        found = None
        for task in self.tasks:
            if task.segment_index == index:
                found = task
        return found

    def current_tasks(self) -> List[GenerationTask]:
        tasks = [self.current_task(s.index) for s in self.plan.segments]
        return [t for t in tasks if t is not None]

    def segment_path(self, spec: SegmentSpec) -> str:
        return os.path.join(self.work_dir, f"segment_{spec.index + 1}_{spec.role.value}.mp4")


class ProgressEvent(BaseModel):
    session_id: str
    stage: str
    message: str
    segment_index: Optional[int] = None
    status: Optional[str] = None
    at: datetime = Field(default_factory=utcnow)


class CaptionWord(BaseModel):
    text: str
    start_time: float
    end_time: float
    is_important: bool = False


class SegmentClip(BaseModel):
    index: int
    role: Role
    local_path: str


class AssemblyOptions(BaseModel):
    """Defaults come from settings at construction time; a configured
    OUTRO_PATH turns the outro on unless the caller says otherwise."""

    transition: TransitionType = TransitionType.CUT
    crossfade_seconds: float = Field(default_factory=lambda: settings.CROSSFADE_S)
    append_outro: bool = Field(default_factory=lambda: bool(settings.OUTRO_PATH))
    outro_path: Optional[str] = Field(default_factory=lambda: settings.OUTRO_PATH or None)
    freeze_seconds: float = Field(default_factory=lambda: settings.OUTRO_FREEZE_S)


class AssemblyResult(BaseModel):
    output_path: str
    tail_seconds: float = 0.0


# --- HTTP request bodies ---

class PlanRequest(BaseModel):
    content_type: str
    preset: Preset = Preset.STANDARD
    script: Optional[Script] = None
    options: PlanOptions = Field(default_factory=PlanOptions)


class SessionRequest(BaseModel):
    plan: Optional[GenerationPlan] = None
    plan_request: Optional[PlanRequest] = None
    assembly: AssemblyOptions = Field(default_factory=AssemblyOptions)
