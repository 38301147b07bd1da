import pytest

from presenter_reel.captions import (
    CaptionSynchronizer,
    DriftPolicy,
    apply_drift_policy,
    build_ass,
    compute_word_timings,
    is_important,
    synchronize,
)
from presenter_reel.models import CaptionWord

TEXT = "Este chollo es IMPRESIONANTE y cuesta MUY poco"


class TestRawTimings:

    def test_monotonic_and_nominal(self):
        words = compute_word_timings(8.0, TEXT)

        assert [w.text for w in words] == TEXT.split()
        assert words[0].start_time == 0.0
        for prev, cur in zip(words, words[1:]):
            assert cur.start_time == pytest.approx(prev.end_time)
            assert cur.end_time > cur.start_time
        assert words[0].end_time == pytest.approx(1.0)

    def test_important_words_last_longer(self):
        words = compute_word_timings(8.0, TEXT)
        by_text = {w.text: w for w in words}

        assert by_text["IMPRESIONANTE"].is_important
        assert by_text["IMPRESIONANTE"].end_time - by_text["IMPRESIONANTE"].start_time == pytest.approx(1.3)
        # Three letters is not enough
        assert not by_text["MUY"].is_important

    def test_raw_timings_overrun_total(self):
        words = compute_word_timings(8.0, TEXT)
        assert words[-1].end_time >= 8.0

    def test_words_per_second_fallback(self):
        words = compute_word_timings(None, "uno dos tres cuatro cinco", words_per_second=2.5)
        assert words[-1].end_time == pytest.approx(2.0)

    def test_empty_text(self):
        assert compute_word_timings(8.0, "   ") == []

    @pytest.mark.parametrize("word,expected", [
        ("GOLAZO", True), ("GOL!", True), ("2024", False), ("Gol", False), ("VAR", False),
    ])
    def test_is_important(self, word, expected):
        assert is_important(word) is expected


class TestDriftPolicy:

    def test_renormalize_ends_exactly_at_total(self):
        words = synchronize(8.0, TEXT, DriftPolicy.RENORMALIZE)

        assert words[-1].end_time == 8.0
        assert words[0].start_time == 0.0
        important = next(w for w in words if w.text == "IMPRESIONANTE")
        plain = words[0]
        assert (important.end_time - important.start_time) / (plain.end_time - plain.start_time) == pytest.approx(1.3)

    def test_clamp_cuts_at_total(self):
        words = synchronize(8.0, TEXT, DriftPolicy.CLAMP)

        assert words[-1].end_time <= 8.0
        assert all(w.start_time < 8.0 for w in words)

    def test_allow_keeps_raw(self):
        assert synchronize(8.0, TEXT, DriftPolicy.ALLOW) == compute_word_timings(8.0, TEXT)

    def test_clamp_drops_words_past_the_end(self):
        words = [
            CaptionWord(text="a", start_time=0.0, end_time=1.0),
            CaptionWord(text="b", start_time=1.0, end_time=2.5),
            CaptionWord(text="c", start_time=2.5, end_time=3.0),
        ]
        clamped = apply_drift_policy(words, 2.0, DriftPolicy.CLAMP)

        assert [w.text for w in clamped] == ["a", "b"]
        assert clamped[-1].end_time == 2.0


class TestAss:

    def test_styles_and_events(self):
        words = synchronize(8.0, TEXT)
        ass = build_ass(words)

        assert "PlayResX: 1080" in ass and "PlayResY: 1920" in ass
        assert "Style: Default,Arial Black,80,&H00FFFFFF" in ass
        assert "Style: Emphasis,Arial Black,88,&H0000D7FF" in ass
        assert ",410,1" in ass
        assert ass.count("Dialogue:") == len(TEXT.split())
        assert "Dialogue: 0,0:00:00.00,0:00:00.96,Default,,0,0,0,,Este" in ass
        assert ",Emphasis,,0,0,0,,IMPRESIONANTE" in ass

    def test_override_braces_are_neutralised(self):
        ass = build_ass([CaptionWord(text="{\\b1}hola", start_time=0.0, end_time=1.0)])
        assert "(b1)hola" in ass

    async def test_burn_writes_subtitles(self, tmp_path, fake_media):
        subs = tmp_path / "captions.ass"
        out = tmp_path / "final.mp4"

        words = await CaptionSynchronizer().burn(str(tmp_path / "assembled.mp4"), TEXT, 8.0, str(subs), str(out))

        assert subs.read_text(encoding="utf-8").count("Dialogue:") == len(words)
        assert fake_media["burn"] == [(str(tmp_path / "assembled.mp4"), str(subs), str(out))]
