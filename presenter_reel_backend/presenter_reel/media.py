import os, subprocess, shlex, logging
from typing import List, Optional, Sequence

from .errors import EncodingError
from .settings import VIDEO_WIDTH, VIDEO_HEIGHT, FPS

logger = logging.getLogger(__name__)

AUDIO_RATE = 48000


def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def write_text(path: str, text: str):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def probe_duration(path: str) -> float:
    cmd = (
        f"ffprobe -v error -show_entries format=duration "
        f"-of default=noprint_wrappers=1:nokey=1 {shlex.quote(path)}"
    )
    out = _run(cmd).strip()
    try:
        return float(out)
    except ValueError:
        raise EncodingError(f"ffprobe returned no duration for {path}: {out!r}")


def has_audio(path: str) -> bool:
    cmd = f"ffprobe -v error -select_streams a -show_entries stream=index -of csv=p=0 {shlex.quote(path)}"
    return bool(_run(cmd).strip())


def extract_frame(video_path: str, out_path: str, at_seconds: float):
    cmd = (
        f"ffmpeg -y -ss {at_seconds:.3f} -i {shlex.quote(video_path)} "
        f"-frames:v 1 -q:v 2 {shlex.quote(out_path)}"
    )
    _run(cmd)


def ffmpeg_concat(scene_files: List[str], out_tmp_path: str):
    list_path = out_tmp_path.replace(".mp4", "_concat.txt")
    with open(list_path, "w") as f:
        for p in scene_files:
            f.write(f"file '{p}'\n")
    cmd = f"ffmpeg -y -f concat -safe 0 -i {shlex.quote(list_path)} -c copy {shlex.quote(out_tmp_path)}"
    _run(cmd)


def build_join_filter(
    durations: Sequence[float],
    audio: Sequence[bool],
    crossfade_s: float = 0.0,
    freeze_s: float = 0.0,
    outro_duration: Optional[float] = None,
    outro_audio: bool = True,
    w=VIDEO_WIDTH, h=VIDEO_HEIGHT, fps=FPS,
) -> str:
    """filter_complex that joins the clips, optionally cross-fading and
    appending a frozen last frame plus an outro clip (the last input).
    Output pads are [vout] and [aout]."""
    parts = []
    inputs = list(zip(durations, audio))
    if outro_duration is not None:
        inputs.append((outro_duration, outro_audio))
    for i, (dur, with_audio) in enumerate(inputs):
        parts.append(
            f"[{i}:v]scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,fps={fps},format=yuv420p,setsar=1[v{i}]"
        )
        if with_audio:
            parts.append(f"[{i}:a]aformat=sample_rates={AUDIO_RATE}:channel_layouts=stereo[a{i}]")
        else:
            parts.append(f"anullsrc=r={AUDIO_RATE}:cl=stereo,atrim=duration={dur:.3f}[a{i}]")

    n = len(durations)
    if crossfade_s > 0 and n > 1:
        v_prev, a_prev, length = "v0", "a0", durations[0]
        for k in range(1, n):
            offset = max(0.0, length - crossfade_s)
            parts.append(f"[{v_prev}][v{k}]xfade=transition=fade:duration={crossfade_s:.3f}:offset={offset:.3f}[vx{k}]")
            parts.append(f"[{a_prev}][a{k}]acrossfade=d={crossfade_s:.3f}[ax{k}]")
            v_prev, a_prev = f"vx{k}", f"ax{k}"
            length += durations[k] - crossfade_s
    else:
        pairs = "".join(f"[v{i}][a{i}]" for i in range(n))
        parts.append(f"{pairs}concat=n={n}:v=1:a=1[vj][aj]")
        v_prev, a_prev = "vj", "aj"

    if outro_duration is None:
        parts.append(f"[{v_prev}]null[vout]")
        parts.append(f"[{a_prev}]anull[aout]")
    else:
        parts.append(f"[{v_prev}]tpad=stop_mode=clone:stop_duration={freeze_s:.3f}[vf]")
        parts.append(f"[{a_prev}]apad=pad_dur={freeze_s:.3f}[af]")
        parts.append(f"[vf][af][v{n}][a{n}]concat=n=2:v=1:a=1[vout][aout]")
    return ";".join(parts)


def ffmpeg_join(input_paths: List[str], filter_complex: str, out_path: str, fps=FPS):
    ins = " ".join(f"-i {shlex.quote(p)}" for p in input_paths)
    cmd = (
        f"ffmpeg -y {ins} -filter_complex {shlex.quote(filter_complex)} "
        f'-map "[vout]" -map "[aout]" -c:v libx264 -pix_fmt yuv420p -r {fps} '
        f"-c:a aac -movflags +faststart {shlex.quote(out_path)}"
    )
    _run(cmd)


def ffmpeg_burn_subs(in_path: str, subs_path: str, out_path: str):
    cmd = f"ffmpeg -y -i {shlex.quote(in_path)} -vf subtitles={shlex.quote(subs_path)} -c:a copy {shlex.quote(out_path)}"
    _run(cmd)


def _run(cmd: str) -> str:
    logger.info(f"Running command: {cmd}")
    proc = subprocess.run(cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if proc.returncode != 0:
        error_msg = proc.stderr.decode("utf-8", errors="ignore")
        logger.error(f"Command failed with return code {proc.returncode}: {error_msg}")
        raise EncodingError(f"FFmpeg failed: {error_msg}")
    return proc.stdout.decode("utf-8", errors="ignore")
