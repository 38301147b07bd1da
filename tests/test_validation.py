import pytest

from presenter_reel.validation import (
    MAX_WORDS,
    MIN_WORDS,
    find_forbidden_names,
    missing_prompt_fields,
    validate_dialogue,
)


def words(n):
    return " ".join(["jugador"] * n)


@pytest.mark.parametrize("count", [MIN_WORDS, 24, MAX_WORDS])
def test_word_count_inside_range(count):
    assert validate_dialogue(words(count)) == []


@pytest.mark.parametrize("count", [MIN_WORDS - 1, MAX_WORDS + 1, 0])
def test_word_count_outside_range(count):
    errors = validate_dialogue(words(count))
    assert len(errors) == 1
    assert f"{count} words" in errors[0]


def test_forbidden_names_are_whole_words_and_accent_insensitive():
    assert find_forbidden_names("Qué partido de Vinícius anoche") == ["Vinicius"]
    assert find_forbidden_names("El GAVI de siempre") == ["Gavi"]
    assert find_forbidden_names("Gavilán juega de lateral") == []


def test_custom_forbidden_list():
    assert find_forbidden_names("Hoy habla Carlos", forbidden=["Carlos"]) == ["Carlos"]
    assert find_forbidden_names("Hoy habla Pedri", forbidden=[]) == []


def test_both_problems_reported():
    errors = validate_dialogue("Morata marca")
    assert len(errors) == 2


def test_missing_prompt_fields():
    assert missing_prompt_fields({"dialogue": "hola", "emotion": "joy", "shot_type": "wide", "behavior": "x"}) == []
    assert missing_prompt_fields({"dialogue": " ", "emotion": None, "shot_type": "wide"}) == [
        "dialogue", "emotion", "behavior",
    ]
