"""
Word-by-word captions for the assembled video.

Each word gets an equal share of the spoken window, and emphasised words
(all caps, longer than three characters) hold 1.3x as long. Because the
emphasis stretches the total, the raw timings overrun the window; DriftPolicy
decides what to do about that.
"""
import asyncio
import logging
from enum import Enum
from typing import List, Optional

from . import media
from .errors import AssemblyError, EncodingError
from .models import CaptionWord
from .settings import CAPTION_FONT, CAPTION_WORDS_PER_SECOND, VIDEO_HEIGHT, VIDEO_WIDTH

logger = logging.getLogger(__name__)

IMPORTANT_FACTOR = 1.3
FONT_SIZE = 80
IMPORTANT_FONT_BONUS = 8
OUTLINE_WIDTH = 6
SHADOW_DEPTH = 2
BOTTOM_MARGIN = 410

# ASS colours are &HAABBGGRR, alpha 00 is opaque
WHITE = "&H00FFFFFF"
GOLD = "&H0000D7FF"
BLACK = "&H00000000"
BOX_70 = "&H4D000000"


class DriftPolicy(str, Enum):
    ALLOW = "allow"
    CLAMP = "clamp"
    RENORMALIZE = "renormalize"


def is_important(word: str) -> bool:
    return word.isupper() and len(word) > 3


def compute_word_timings(duration: Optional[float], text: str, words_per_second: float = CAPTION_WORDS_PER_SECOND) -> List[CaptionWord]:
    words = text.split()
    if not words:
        return []
    if duration and duration > 0:
        nominal = duration / len(words)
    else:
        nominal = 1.0 / words_per_second

    timings = []
    t = 0.0
    for word in words:
        important = is_important(word)
        length = nominal * IMPORTANT_FACTOR if important else nominal
        timings.append(CaptionWord(text=word, start_time=t, end_time=t + length, is_important=important))
        t += length
    return timings


def apply_drift_policy(words: List[CaptionWord], total: float, policy: DriftPolicy) -> List[CaptionWord]:
    if not words or total <= 0 or policy == DriftPolicy.ALLOW:
        return words
    if policy == DriftPolicy.RENORMALIZE:
        end = words[-1].end_time
        if end <= 0:
            return words
        scale = total / end
        fitted = [
            CaptionWord(text=w.text, start_time=w.start_time * scale, end_time=w.end_time * scale, is_important=w.is_important)
            for w in words
        ]
        # Float error must not leave the last word a hair off the end
        fitted[-1] = fitted[-1].model_copy(update={"end_time": total})
        return fitted
    clamped = []
    for w in words:
        if w.start_time >= total:
            break
        clamped.append(w.model_copy(update={"end_time": min(w.end_time, total)}))
    return clamped


def synchronize(
    duration: Optional[float],
    text: str,
    policy: DriftPolicy = DriftPolicy.RENORMALIZE,
    words_per_second: float = CAPTION_WORDS_PER_SECOND,
) -> List[CaptionWord]:
    raw = compute_word_timings(duration, text, words_per_second)
    total = duration if duration and duration > 0 else (raw[-1].end_time if raw else 0.0)
    if raw and raw[-1].end_time > total:
        logger.info(f"Caption drift {raw[-1].end_time - total:.2f}s over {total:.2f}s, policy {policy.value}")
    return apply_drift_policy(raw, total, policy)


def _ass_time(seconds: float) -> str:
    cs = int(round(max(0.0, seconds) * 100))
    h, cs = divmod(cs, 360000)
    m, cs = divmod(cs, 6000)
    s, cs = divmod(cs, 100)
    return f"{h}:{m:02d}:{s:02d}.{cs:02d}"


def _ass_text(word: str) -> str:
    return word.replace("\\", "").replace("{", "(").replace("}", ")")


def build_ass(words: List[CaptionWord], font: str = CAPTION_FONT, width: int = VIDEO_WIDTH, height: int = VIDEO_HEIGHT) -> str:
    style = (
        "{name},{font},{size},{colour},{colour},{outline},{back},-1,0,0,0,100,100,0,0,1,"
        f"{OUTLINE_WIDTH},{SHADOW_DEPTH},2,40,40,{BOTTOM_MARGIN},1"
    )
    lines = [
        "[Script Info]",
        "ScriptType: v4.00+",
        f"PlayResX: {width}",
        f"PlayResY: {height}",
        "WrapStyle: 0",
        "ScaledBorderAndShadow: yes",
        "",
        "[V4+ Styles]",
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
        "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, "
        "Shadow, Alignment, MarginL, MarginR, MarginV, Encoding",
        "Style: " + style.format(name="Default", font=font, size=FONT_SIZE, colour=WHITE, outline=BLACK, back=BOX_70),
        "Style: " + style.format(name="Emphasis", font=font, size=FONT_SIZE + IMPORTANT_FONT_BONUS, colour=GOLD, outline=BLACK, back=BOX_70),
        "",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
    ]
    for w in words:
        style_name = "Emphasis" if w.is_important else "Default"
        lines.append(f"Dialogue: 0,{_ass_time(w.start_time)},{_ass_time(w.end_time)},{style_name},,0,0,0,,{_ass_text(w.text)}")
    return "\n".join(lines) + "\n"


class CaptionSynchronizer:
    def __init__(self, policy: DriftPolicy = DriftPolicy.RENORMALIZE, words_per_second: float = CAPTION_WORDS_PER_SECOND):
        self.policy = policy
        self.words_per_second = words_per_second

    def timings(self, duration: Optional[float], text: str) -> List[CaptionWord]:
        return synchronize(duration, text, self.policy, self.words_per_second)

    async def burn(self, video_path: str, text: str, spoken_seconds: Optional[float], subs_path: str, out_path: str) -> List[CaptionWord]:
        """Write the subtitle file and burn it into `out_path`."""
        words = self.timings(spoken_seconds, text)
        media.write_text(subs_path, build_ass(words))
        logger.info(f"Wrote {len(words)} caption events to {subs_path}")
        try:
            await asyncio.to_thread(media.ffmpeg_burn_subs, video_path, subs_path, out_path)
        except EncodingError as e:
            raise AssemblyError(f"caption burn-in failed: {e}") from e
        return words
