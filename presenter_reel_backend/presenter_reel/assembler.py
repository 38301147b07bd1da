import os
import asyncio
import logging
from typing import List

from . import media
from .errors import AssemblyError, EncodingError
from .models import AssemblyOptions, AssemblyResult, SegmentClip, TransitionType

logger = logging.getLogger(__name__)


class SegmentAssembler:
    """Joins generated clips in plan order, regardless of the order they finished in."""

    def _check_inputs(self, clips: List[SegmentClip], options: AssemblyOptions):
        if not clips:
            raise AssemblyError("no clips to assemble")
        missing = [c.local_path for c in clips if not os.path.exists(c.local_path)]
        if options.append_outro and not (options.outro_path and os.path.exists(options.outro_path)):
            missing.append(options.outro_path or "<outro not configured>")
        if missing:
            raise AssemblyError(f"missing input files: {', '.join(missing)}")

    def _assemble(self, clips: List[SegmentClip], out_path: str, options: AssemblyOptions) -> float:
        paths = [c.local_path for c in clips]
        crossfade = options.crossfade_seconds if options.transition == TransitionType.CROSSFADE else 0.0

        if not options.append_outro and crossfade <= 0:
            logger.info(f"Concatenating {len(paths)} clips with stream copy")
            media.ffmpeg_concat(paths, out_path)
            return 0.0

        durations = [media.probe_duration(p) for p in paths]
        audio = [media.has_audio(p) for p in paths]
        tail = 0.0
        outro_duration = None
        outro_audio = True
        if options.append_outro:
            outro_duration = media.probe_duration(options.outro_path)
            outro_audio = media.has_audio(options.outro_path)
            paths.append(options.outro_path)
            tail = options.freeze_seconds + outro_duration

        graph = media.build_join_filter(
            durations, audio,
            crossfade_s=crossfade,
            freeze_s=options.freeze_seconds,
            outro_duration=outro_duration,
            outro_audio=outro_audio,
        )
        logger.info(f"Joining {len(clips)} clips (crossfade={crossfade}, outro={options.append_outro})")
        media.ffmpeg_join(paths, graph, out_path)
        return tail

    async def assemble(self, clips: List[SegmentClip], out_path: str, options: AssemblyOptions) -> AssemblyResult:
        """Returns the output path and how many trailing seconds are not speech.

        Inputs are verified before ffmpeg runs; on any failure the clips are
        left exactly as they were.
        """
        ordered = sorted(clips, key=lambda c: c.index)
        self._check_inputs(ordered, options)
        try:
            tail = await asyncio.to_thread(self._assemble, ordered, out_path, options)
        except EncodingError as e:
            raise AssemblyError(f"encoding failed: {e}") from e
        if not os.path.exists(out_path):
            raise AssemblyError(f"encoder produced no output at {out_path}")
        logger.info(f"Assembled video: {out_path}")
        return AssemblyResult(output_path=out_path, tail_seconds=tail)
