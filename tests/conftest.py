"""
Shared fixtures: fake external services and a stubbed ffmpeg layer.
"""
import os

os.environ.setdefault("PRESENTER_IMAGE_URLS", "https://img.test/ana-1.png,https://img.test/ana-2.png")
os.environ.setdefault("VEO_API_KEY", "test-key")

from datetime import timedelta
from typing import Dict, Iterable, List, Optional

import httpx
import pytest

from presenter_reel import media
from presenter_reel.models import ReferenceImage, TaskStatus, utcnow
from presenter_reel.session_store import SessionStore
from presenter_reel.video_client import TaskPoll


class FakeVideoClient:
    """Scripted stand-in for the video generation service.

    `hang` maps a prompt substring to how many submissions matching it never
    finish; `fail` lists substrings whose tasks report an explicit failure.
    """

    def __init__(
        self,
        polls_until_done: int = 2,
        hang: Optional[Dict[str, int]] = None,
        fail: Iterable[str] = (),
        submit_errors: Optional[List[Exception]] = None,
        poll_errors: Optional[List[Exception]] = None,
    ):
        self.polls_until_done = polls_until_done
        self.hang = dict(hang or {})
        self.fail = tuple(fail)
        self.submit_errors = list(submit_errors or [])
        self.poll_errors = list(poll_errors or [])
        self.submitted: List[dict] = []
        self.tasks: Dict[str, dict] = {}

    def register(self, task_id: str, prompt: str, hangs: bool = False):
        self.tasks[task_id] = {"prompt": prompt, "polls": 0, "hangs": hangs}

    async def submit(self, prompt, reference_url, seed, duration, aspect_ratio="9:16"):
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        hangs = False
        for key, remaining in self.hang.items():
            if key in prompt and remaining > 0:
                self.hang[key] = remaining - 1
                hangs = True
        task_id = f"task-{len(self.submitted) + 1}"
        self.submitted.append({"task_id": task_id, "prompt": prompt, "reference_url": reference_url, "seed": seed})
        self.register(task_id, prompt, hangs)
        return task_id

    async def poll(self, task_id):
        if self.poll_errors:
            raise self.poll_errors.pop(0)
        task = self.tasks[task_id]
        task["polls"] += 1
        if task["hangs"]:
            return TaskPoll(status=TaskStatus.PROCESSING)
        if any(key in task["prompt"] for key in self.fail):
            return TaskPoll(status=TaskStatus.FAILED, error="content policy violation")
        if task["polls"] >= self.polls_until_done:
            return TaskPoll(status=TaskStatus.SUCCEEDED, result_url=f"https://cdn.test/{task_id}.mp4")
        return TaskPoll(status=TaskStatus.PROCESSING)

    def polls(self, task_id: str) -> int:
        return self.tasks[task_id]["polls"]


class FakeReferences:
    def __init__(self, ttl_seconds: int = 86400):
        self.ttl_seconds = ttl_seconds
        self.generated = []
        self.frames = []

    async def generate(self, spec, session_id):
        self.generated.append(spec.index)
        return ReferenceImage(
            role=spec.role,
            shot_type=spec.cinematography.shot_type,
            emotion=spec.emotion,
            ephemeral_source_url=f"https://tmp.test/{spec.index}.png",
            storage_path=f"presenter-refs/{session_id}/segment_{spec.index + 1}.png",
            persisted_url=f"https://store.test/signed/{session_id}/{spec.index}.png",
            expires_at=utcnow() + timedelta(seconds=self.ttl_seconds),
        )

    async def persist_frame(self, frame_path, spec, session_id):
        self.frames.append(frame_path)
        return ReferenceImage(
            role=spec.role,
            shot_type=spec.cinematography.shot_type,
            emotion=spec.emotion,
            storage_path=f"video-frames/{session_id}/segment_{spec.index + 1}_start.jpg",
            persisted_url=f"https://store.test/frames/{spec.index}.jpg",
            expires_at=utcnow() + timedelta(seconds=self.ttl_seconds),
        )


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


def video_transport(fail_first: int = 0, status_code: int = 503) -> httpx.MockTransport:
    """Serves fake mp4 bytes, failing the first `fail_first` requests."""
    state = {"requests": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"] += 1
        if state["requests"] <= fail_first:
            return httpx.Response(status_code)
        return httpx.Response(200, content=b"\x00\x00\x00\x18ftypmp42fake-video-bytes")

    transport = httpx.MockTransport(handler)
    transport.state = state
    return transport


@pytest.fixture
def fake_client():
    return FakeVideoClient()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def store(tmp_path):
    return SessionStore(base_dir=str(tmp_path / "sessions"))


@pytest.fixture
def fake_media(monkeypatch):
    """Replace ffmpeg/ffprobe with file writes and record every call."""
    calls = {"concat": [], "join": [], "burn": [], "extract": []}
    durations: Dict[str, float] = {}

    def probe_duration(path):
        return durations.get(path, 8.0 if "segment_" in path else 24.0)

    def ffmpeg_concat(paths, out_path):
        calls["concat"].append(list(paths))
        with open(out_path, "wb") as f:
            f.write(b"assembled")

    def ffmpeg_join(paths, graph, out_path, fps=30):
        calls["join"].append((list(paths), graph))
        with open(out_path, "wb") as f:
            f.write(b"joined")

    def ffmpeg_burn_subs(in_path, subs_path, out_path):
        calls["burn"].append((in_path, subs_path, out_path))
        with open(out_path, "wb") as f:
            f.write(b"final")

    def extract_frame(video_path, out_path, at_seconds):
        calls["extract"].append((video_path, out_path, at_seconds))
        with open(out_path, "wb") as f:
            f.write(b"jpeg")

    monkeypatch.setattr(media, "probe_duration", probe_duration)
    monkeypatch.setattr(media, "has_audio", lambda path: True)
    monkeypatch.setattr(media, "ffmpeg_concat", ffmpeg_concat)
    monkeypatch.setattr(media, "ffmpeg_join", ffmpeg_join)
    monkeypatch.setattr(media, "ffmpeg_burn_subs", ffmpeg_burn_subs)
    monkeypatch.setattr(media, "extract_frame", extract_frame)
    calls["durations"] = durations
    return calls
