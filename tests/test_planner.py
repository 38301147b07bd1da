"""
Tests for SegmentPlanner: presets, shot progression and validation.
"""
import random

import pytest

from presenter_reel import planner, settings
from presenter_reel.errors import PlanValidationError
from presenter_reel.models import (
    ContentType,
    ContinuityMode,
    DialogueSegment,
    Emotion,
    PatternName,
    PlanOptions,
    Preset,
    Role,
    Script,
    ShotType,
)
from presenter_reel.planner import create_plan, is_urgent, template_script
from presenter_reel.prompts import TEMPLATE_DIALOGUE


def _script(content_type, roles, emotions):
    table = TEMPLATE_DIALOGUE[content_type]
    return Script(segments=tuple(
        DialogueSegment(role=role, emotion=emotion, text=table[role][1])
        for role, emotion in zip(roles, emotions)
    ))


class TestPresets:

    @pytest.mark.parametrize("preset,roles", [
        (Preset.SHORT, [Role.INTRO, Role.OUTRO]),
        (Preset.STANDARD, [Role.INTRO, Role.MIDDLE, Role.OUTRO]),
        (Preset.EXTENDED, [Role.INTRO, Role.ANALYSIS, Role.MIDDLE, Role.OUTRO]),
    ])
    def test_segment_count_and_roles(self, preset, roles):
        plan = create_plan(ContentType.CHOLLO, preset=preset)

        assert [s.role for s in plan.segments] == roles
        assert [s.index for s in plan.segments] == list(range(len(roles)))
        assert all(s.duration_seconds == 8.0 for s in plan.segments)

    def test_all_segments_share_identity(self):
        plan = create_plan(ContentType.ANALYSIS, preset=Preset.EXTENDED, options=PlanOptions(character_index=1))

        assert {s.character_seed for s in plan.segments} == {30001}
        assert {s.reference_selector for s in plan.segments} == {1}
        assert {s.reference_image_url for s in plan.segments} == {"https://img.test/ana-2.png"}

    def test_random_identity_is_still_shared(self):
        plan = create_plan(ContentType.GENERIC, preset=Preset.EXTENDED, rng=random.Random(7))

        assert len({s.reference_selector for s in plan.segments}) == 1
        assert plan.character_index == plan.segments[0].reference_selector

    def test_template_dialogue_is_valid_for_every_content_type(self):
        for content_type in ContentType:
            for preset in Preset:
                plan = create_plan(content_type, preset=preset)
                assert plan.full_dialogue == template_script(content_type, preset).full_text


class TestShotProgression:

    def test_chollo_standard_zooms_in(self):
        plan = create_plan(ContentType.CHOLLO, preset=Preset.STANDARD)

        assert plan.pattern == PatternName.ZOOM_IN
        assert [s.cinematography.shot_type for s in plan.segments] == [
            ShotType.WIDE, ShotType.MEDIUM, ShotType.CLOSEUP,
        ]

    @pytest.mark.parametrize("content_type,pattern", [
        (ContentType.ANALYSIS, PatternName.MEDIUM_BALANCED),
        (ContentType.BREAKING, PatternName.CLOSE_START),
        (ContentType.PREDICTION, PatternName.ALTERNATING),
        (ContentType.GENERIC, PatternName.RANDOM),
    ])
    def test_pattern_per_content_type(self, content_type, pattern):
        assert create_plan(content_type).pattern == pattern

    def test_urgent_flag_forces_close_start(self):
        plan = create_plan(ContentType.ANALYSIS, options=PlanOptions(urgent=True))

        assert plan.pattern == PatternName.CLOSE_START
        assert plan.segments[0].cinematography.shot_type == ShotType.CLOSEUP

    def test_urgent_opening_forces_close_start(self):
        script = _script(
            ContentType.ANALYSIS,
            [Role.INTRO, Role.MIDDLE, Role.OUTRO],
            [Emotion.URGENCIA, Emotion.CONFIDENCE, Emotion.DETERMINATION],
        )
        assert create_plan(ContentType.ANALYSIS, script=script).pattern == PatternName.CLOSE_START

    def test_single_closing_urgency_keeps_pattern(self):
        script = template_script(ContentType.CHOLLO, Preset.STANDARD)

        assert [s.emotion for s in script.segments] == [Emotion.CURIOSIDAD, Emotion.VALIDACION, Emotion.URGENCIA]
        assert not is_urgent(script)

    def test_urgency_majority_is_urgent(self):
        script = _script(
            ContentType.CHOLLO,
            [Role.INTRO, Role.MIDDLE, Role.OUTRO],
            [Emotion.CURIOSIDAD, Emotion.URGENCIA, Emotion.URGENCIA],
        )
        assert is_urgent(script)

    def test_explicit_pattern_wins(self):
        plan = create_plan(ContentType.CHOLLO, options=PlanOptions(pattern=PatternName.ALTERNATING, urgent=True))

        assert plan.pattern == PatternName.ALTERNATING

    def test_random_pattern_never_repeats_previous_shot(self):
        for seed in range(50):
            plan = create_plan(ContentType.GENERIC, preset=Preset.EXTENDED, rng=random.Random(seed))
            shots = [s.cinematography.shot_type for s in plan.segments]
            assert all(a != b for a, b in zip(shots, shots[1:]))

    def test_prompt_carries_dialogue_and_framing(self):
        plan = create_plan(ContentType.CHOLLO)
        first = plan.segments[0]

        assert first.dialogue in first.prompt_text
        assert "SPANISH FROM SPAIN" in first.prompt_text
        assert first.cinematography.behavior_description in first.prompt_text

    def test_video_prompt_points_at_reference_image(self):
        plan = create_plan(ContentType.ANALYSIS)

        for spec in plan.segments:
            assert "reference image" in spec.prompt_text
            assert spec.dialogue in spec.prompt_text


class TestValidation:

    def test_unknown_content_type_without_override(self):
        with pytest.raises(PlanValidationError) as exc:
            create_plan("documental")
        assert "unknown content type" in str(exc.value)

    def test_unknown_content_type_with_override(self):
        plan = create_plan("documental", options=PlanOptions(pattern=PatternName.ZOOM_IN))

        assert plan.content_type == ContentType.GENERIC
        assert plan.pattern == PatternName.ZOOM_IN

    def test_all_dialogue_errors_reported_together(self):
        table = TEMPLATE_DIALOGUE[ContentType.CHOLLO]
        script = Script(segments=(
            DialogueSegment(role=Role.INTRO, emotion=Emotion.CURIOSIDAD, text=" ".join(["palabra"] * 21)),
            DialogueSegment(role=Role.MIDDLE, emotion=Emotion.VALIDACION, text=table[Role.MIDDLE][1]),
            DialogueSegment(role=Role.OUTRO, emotion=Emotion.URGENCIA, text=table[Role.OUTRO][1].replace("Fichadlo", "Fichad a Pedri")),
        ))

        with pytest.raises(PlanValidationError) as exc:
            create_plan(ContentType.CHOLLO, script=script)

        errors = exc.value.errors
        assert any("segment 1" in e and "21 words" in e for e in errors)
        assert any("segment 3" in e and "Pedri" in e for e in errors)

    def test_empty_dialogue_is_a_missing_field(self):
        table = TEMPLATE_DIALOGUE[ContentType.CHOLLO]
        script = Script(segments=(
            DialogueSegment(role=Role.INTRO, emotion=Emotion.CURIOSIDAD, text="   "),
            DialogueSegment(role=Role.OUTRO, emotion=Emotion.URGENCIA, text=table[Role.OUTRO][1]),
        ))

        with pytest.raises(PlanValidationError) as exc:
            create_plan(ContentType.CHOLLO, script=script, preset=Preset.SHORT)
        assert any("missing dialogue" in e for e in exc.value.errors)

    def test_script_length_must_match_preset(self):
        script = template_script(ContentType.CHOLLO, Preset.SHORT)

        with pytest.raises(PlanValidationError) as exc:
            create_plan(ContentType.CHOLLO, script=script, preset=Preset.STANDARD)
        assert "needs 3 segments" in str(exc.value)

    def test_roles_must_match_preset(self):
        script = _script(
            ContentType.CHOLLO,
            [Role.INTRO, Role.ANALYSIS, Role.OUTRO],
            [Emotion.CURIOSIDAD, Emotion.AUTORIDAD, Emotion.URGENCIA],
        )
        with pytest.raises(PlanValidationError) as exc:
            create_plan(ContentType.CHOLLO, script=script)
        assert "expected middle" in str(exc.value)

    def test_fixed_identity_needs_an_image(self, monkeypatch):
        monkeypatch.setattr(planner, "PRESENTER_IMAGE_URLS", [])

        with pytest.raises(PlanValidationError):
            create_plan(ContentType.CHOLLO, options=PlanOptions(continuity_mode=ContinuityMode.FIXED_IDENTITY))

        plan = create_plan(ContentType.CHOLLO, options=PlanOptions(continuity_mode=ContinuityMode.REFERENCE_IMAGES))
        assert plan.segments[0].reference_image_url is None

    def test_shipped_identity_images_when_unset(self, monkeypatch):
        monkeypatch.delenv("PRESENTER_IMAGE_URLS", raising=False)

        assert settings.presenter_image_urls() == settings.DEFAULT_PRESENTER_IMAGE_URLS

        monkeypatch.setattr(planner, "PRESENTER_IMAGE_URLS", settings.presenter_image_urls())
        plan = create_plan(ContentType.CHOLLO)
        assert plan.segments[0].reference_image_url in settings.DEFAULT_PRESENTER_IMAGE_URLS

    def test_plan_is_immutable(self):
        plan = create_plan(ContentType.CHOLLO)

        with pytest.raises(Exception):
            plan.segments[0].dialogue = "otra cosa"
