"""
Shot and behavior progression for multi-segment presenter videos.

Each segment gets its own Cinematography value; nothing here keeps state
between plans, so two plans built concurrently never see each other's shots.
"""
import logging
import random
from typing import List, Optional

from .models import (
    BehaviorCategory,
    Cinematography,
    ContentType,
    PatternName,
    ShotType,
)

logger = logging.getLogger(__name__)

SHOT_DESCRIPTIONS = {
    ShotType.WIDE: "standing naturally in medium-wide framing, full upper body visible",
    ShotType.MEDIUM: "framed from waist up, slightly closer perspective",
    ShotType.MEDIUM_CLOSEUP: "framed from chest up, balanced intimate shot",
    ShotType.CLOSEUP: "framed from shoulders up, intimate perspective",
}

BEHAVIOR_VARIANTS = {
    BehaviorCategory.CONTINUING: (
        "mid-gesture as if continuing a thought",
        "already engaged in conversation",
        "naturally transitioning from previous point",
    ),
    BehaviorCategory.SHIFT_POSTURE: (
        "adjusting stance slightly",
        "shifting weight to other side",
        "settling into new position",
    ),
    BehaviorCategory.TRANSITION_GESTURE: (
        "raising hand to emphasize new point",
        "opening arms to introduce new idea",
        "nodding as if confirming previous statement",
    ),
    BehaviorCategory.DIRECT_GAZE: (
        "meeting viewer eyes directly",
        "locking gaze with camera",
        "intense direct eye contact",
    ),
    BehaviorCategory.SUBTLE_MOVEMENT: (
        "slight head turn toward camera",
        "leaning in subtly",
        "small step forward",
    ),
}

# Four steps per pattern; shorter presets pick a subset via PATTERN_SLOTS.
PATTERNS = {
    PatternName.ZOOM_IN: (
        (ShotType.WIDE, BehaviorCategory.CONTINUING),
        (ShotType.MEDIUM, BehaviorCategory.SHIFT_POSTURE),
        (ShotType.MEDIUM_CLOSEUP, BehaviorCategory.TRANSITION_GESTURE),
        (ShotType.CLOSEUP, BehaviorCategory.DIRECT_GAZE),
    ),
    PatternName.MEDIUM_BALANCED: (
        (ShotType.MEDIUM, BehaviorCategory.CONTINUING),
        (ShotType.MEDIUM_CLOSEUP, BehaviorCategory.TRANSITION_GESTURE),
        (ShotType.WIDE, BehaviorCategory.SUBTLE_MOVEMENT),
        (ShotType.MEDIUM, BehaviorCategory.SHIFT_POSTURE),
    ),
    PatternName.ALTERNATING: (
        (ShotType.MEDIUM, BehaviorCategory.CONTINUING),
        (ShotType.WIDE, BehaviorCategory.SUBTLE_MOVEMENT),
        (ShotType.MEDIUM_CLOSEUP, BehaviorCategory.TRANSITION_GESTURE),
        (ShotType.CLOSEUP, BehaviorCategory.DIRECT_GAZE),
    ),
    PatternName.CLOSE_START: (
        (ShotType.CLOSEUP, BehaviorCategory.DIRECT_GAZE),
        (ShotType.MEDIUM, BehaviorCategory.SHIFT_POSTURE),
        (ShotType.WIDE, BehaviorCategory.SUBTLE_MOVEMENT),
        (ShotType.MEDIUM_CLOSEUP, BehaviorCategory.TRANSITION_GESTURE),
    ),
}

PATTERN_SLOTS = {2: (0, 1), 3: (0, 1, 3), 4: (0, 1, 2, 3)}

CONTENT_TYPE_PATTERNS = {
    ContentType.CHOLLO: PatternName.ZOOM_IN,
    ContentType.ANALYSIS: PatternName.MEDIUM_BALANCED,
    ContentType.BREAKING: PatternName.CLOSE_START,
    ContentType.PREDICTION: PatternName.ALTERNATING,
    ContentType.GENERIC: PatternName.RANDOM,
}

URGENT_PATTERN = PatternName.CLOSE_START


def _check_tables():
    missing = [s for s in ShotType if s not in SHOT_DESCRIPTIONS]
    missing += [b for b in BehaviorCategory if not BEHAVIOR_VARIANTS.get(b)]
    missing += [c for c in ContentType if c not in CONTENT_TYPE_PATTERNS]
    missing += [p for p in PatternName if p != PatternName.RANDOM and p not in PATTERNS]
    if missing:
        raise RuntimeError(f"Cinematography tables incomplete: {', '.join(m.value for m in missing)}")
    for name, steps in PATTERNS.items():
        if len(steps) < max(max(slots) for slots in PATTERN_SLOTS.values()) + 1:
            raise RuntimeError(f"Pattern {name.value} has too few steps")


_check_tables()


def pattern_for(content_type: ContentType, urgent: bool = False) -> PatternName:
    if urgent:
        return URGENT_PATTERN
    return CONTENT_TYPE_PATTERNS[content_type]


def _shot(shot: ShotType, category: BehaviorCategory, rng: random.Random) -> Cinematography:
    variant = rng.choice(BEHAVIOR_VARIANTS[category])
    return Cinematography(shot_type=shot, behavior_category=category, behavior_description=variant)


def _random_progression(count: int, rng: random.Random) -> List[Cinematography]:
    shots = list(ShotType)
    categories = list(BehaviorCategory)
    progression = []
    previous = None
    for _ in range(count):
        choices = [s for s in shots if s != previous]
        shot = rng.choice(choices)
        progression.append(_shot(shot, rng.choice(categories), rng))
        previous = shot
    return progression


def build_progression(pattern: PatternName, count: int, rng: Optional[random.Random] = None) -> List[Cinematography]:
    """Return one Cinematography per segment for the given pattern."""
    if count not in PATTERN_SLOTS:
        raise ValueError(f"Unsupported segment count: {count}")
    rng = rng or random.Random()
    if pattern == PatternName.RANDOM:
        progression = _random_progression(count, rng)
    else:
        steps = PATTERNS[pattern]
        progression = [_shot(*steps[i], rng) for i in PATTERN_SLOTS[count]]
    logger.info(
        f"Progression {pattern.value}: " + " -> ".join(c.shot_type.value for c in progression)
    )
    return progression


def prompt_fragment(cinematography: Cinematography) -> str:
    return f"{SHOT_DESCRIPTIONS[cinematography.shot_type]}, {cinematography.behavior_description}"
