import logging
import random
import uuid
from typing import List, Optional, Union

from .cinematography import build_progression, pattern_for, prompt_fragment
from .errors import PlanValidationError
from .models import (
    ContentType,
    ContinuityMode,
    DialogueSegment,
    Emotion,
    GenerationPlan,
    PlanOptions,
    Preset,
    PRESET_SEGMENTS,
    ROLES_BY_COUNT,
    Script,
    SegmentSpec,
    SEGMENT_SECONDS,
)
from .prompts import TEMPLATE_DIALOGUE, VIDEO_PROMPT_MAX_LENGTH, build_video_prompt
from .settings import CHARACTER_SEED, PRESENTER_IMAGE_URLS
from .validation import missing_prompt_fields, validate_dialogue

logger = logging.getLogger(__name__)


def _parse_content_type(content_type: Union[str, ContentType], options: PlanOptions) -> ContentType:
    try:
        return ContentType(content_type)
    except ValueError:
        if options.pattern is None:
            raise PlanValidationError([f"unknown content type '{content_type}' and no pattern override"])
        logger.warning(f"Unknown content type '{content_type}', using generic dialogue with pattern {options.pattern.value}")
        return ContentType.GENERIC


def template_script(content_type: ContentType, preset: Preset) -> Script:
    roles = ROLES_BY_COUNT[PRESET_SEGMENTS[preset]]
    table = TEMPLATE_DIALOGUE[content_type]
    return Script(segments=tuple(
        DialogueSegment(role=role, emotion=table[role][0], text=table[role][1]) for role in roles
    ))


def is_urgent(script: Script) -> bool:
    """Urgent when the video opens on urgency or urgency dominates the arc."""
    emotions = [s.emotion for s in script.segments]
    if not emotions:
        return False
    if emotions[0] == Emotion.URGENCIA:
        return True
    return emotions.count(Emotion.URGENCIA) * 2 > len(emotions)


def _check_script(script: Script, preset: Preset) -> List[str]:
    expected = ROLES_BY_COUNT[PRESET_SEGMENTS[preset]]
    if len(script.segments) != len(expected):
        return [f"preset {preset.value} needs {len(expected)} segments, script has {len(script.segments)}"]
    errors = []
    for i, (segment, role) in enumerate(zip(script.segments, expected)):
        if segment.role != role:
            errors.append(f"segment {i + 1}: role {segment.role.value}, expected {role.value}")
    return errors


def _identity(options: PlanOptions, rng: random.Random):
    if options.reference_image_url:
        return options.character_index, options.reference_image_url
    if not PRESENTER_IMAGE_URLS:
        return options.character_index, None
    index = options.character_index
    if index is None:
        index = rng.randrange(len(PRESENTER_IMAGE_URLS))
    return index, PRESENTER_IMAGE_URLS[index % len(PRESENTER_IMAGE_URLS)]


def create_plan(
    content_type: Union[str, ContentType],
    script: Optional[Script] = None,
    preset: Preset = Preset.STANDARD,
    options: Optional[PlanOptions] = None,
    rng: Optional[random.Random] = None,
) -> GenerationPlan:
    """Turn a content type and optional script into a validated GenerationPlan.

    Every problem found is reported in a single PlanValidationError; nothing is
    submitted to any external service from here.
    """
    options = options or PlanOptions()
    rng = rng or random.Random()
    preset = Preset(preset)
    ctype = _parse_content_type(content_type, options)

    if script is None:
        script = template_script(ctype, preset)
        logger.info(f"No script given, using {ctype.value} template dialogue")

    errors = _check_script(script, preset)
    if errors:
        raise PlanValidationError(errors)

    urgent = options.urgent if options.urgent is not None else is_urgent(script)
    pattern = options.pattern or pattern_for(ctype, urgent)
    progression = build_progression(pattern, len(script.segments), rng)

    character_index, identity_url = _identity(options, rng)
    if options.continuity_mode != ContinuityMode.REFERENCE_IMAGES and not identity_url:
        errors.append(f"continuity mode {options.continuity_mode.value} needs a presenter reference image")
    seed = options.seed if options.seed is not None else CHARACTER_SEED

    specs = []
    for i, (segment, cine) in enumerate(zip(script.segments, progression)):
        label = f"segment {i + 1} ({segment.role.value})"
        missing = missing_prompt_fields({
            "dialogue": segment.text,
            "emotion": segment.emotion,
            "shot_type": cine.shot_type,
            "behavior": cine.behavior_description,
        })
        if missing:
            errors.append(f"{label}: missing {', '.join(missing)}")
            continue
        errors.extend(f"{label}: {e}" for e in validate_dialogue(segment.text))

        prompt = build_video_prompt(segment.text, segment.emotion, prompt_fragment(cine))
        if len(prompt) > VIDEO_PROMPT_MAX_LENGTH:
            logger.warning(f"{label}: prompt is {len(prompt)} chars, above recommended {VIDEO_PROMPT_MAX_LENGTH}")
        specs.append(SegmentSpec(
            index=i,
            role=segment.role,
            duration_seconds=segment.target_duration_seconds or SEGMENT_SECONDS,
            dialogue=segment.text,
            emotion=segment.emotion,
            prompt_text=prompt,
            cinematography=cine,
            character_seed=seed,
            reference_selector=character_index,
            reference_image_url=identity_url,
        ))

    if errors:
        logger.error(f"Plan validation failed: {errors}")
        raise PlanValidationError(errors)

    plan = GenerationPlan(
        plan_id=str(uuid.uuid4()),
        content_type=ctype,
        preset=preset,
        continuity_mode=options.continuity_mode,
        pattern=pattern,
        character_seed=seed,
        character_index=character_index,
        segments=tuple(specs),
    )
    logger.info(f"Created plan {plan.plan_id}: {ctype.value}/{preset.value}, pattern {pattern.value}, {len(specs)} segments")
    return plan
