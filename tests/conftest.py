from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Tuple

import httpx
import pytest

from slidecast.clients.webhook import WebhookNotifier
from slidecast.config import Settings
from slidecast.models.api import JobRequest
from slidecast.pipeline.durations import DurationResolver
from slidecast.pipeline.fetcher import AssetFetcher
from slidecast.pipeline.mixer import AudioMixer, MixPlan, MixPolicy
from slidecast.pipeline.renderer import RenderError
from slidecast.models.domain import RenderSpec
from slidecast.services.video_service import VideoService
from slidecast.storage.repository import JobRepository

ASSET_HOST = "https://assets.test"
HOOK_URL = "https://hooks.test/notify"


class AssetServer:
    """Serves canned bytes per URL path and counts requests."""

    def __init__(self) -> None:
        self.files: Dict[str, Tuple[int, bytes]] = {}
        self.hits: Dict[str, int] = {}

    def add(self, path: str, content: bytes, status_code: int = 200) -> str:
        self.files[path] = (status_code, content)
        return f"{ASSET_HOST}{path}"

    def image(self, name: str) -> str:
        return self.add(f"/images/{name}", b"\x89PNG fake image")

    def narration(self, name: str, seconds: float) -> str:
        # the fake probe reads the duration back from the file body
        return self.add(f"/audio/{name}", str(seconds).encode())

    def missing(self, path: str) -> str:
        return self.add(path, b"not found", status_code=404)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.hits[path] = self.hits.get(path, 0) + 1
        status_code, content = self.files.get(path, (404, b"not found"))
        return httpx.Response(status_code, content=content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class WebhookRecorder:
    def __init__(self) -> None:
        self.payloads: List[dict] = []
        self.statuses: List[int] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        import json

        self.payloads.append(json.loads(request.content))
        status_code = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status_code, json={"ok": status_code < 400})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeRenderer:
    def __init__(self, error: Exception | None = None) -> None:
        self.specs: List[RenderSpec] = []
        self.error = error

    def render(self, spec: RenderSpec) -> str:
        self.specs.append(spec)
        if self.error is not None:
            raise self.error
        Path(spec.output_path).write_bytes(b"fake-mp4")
        return spec.output_path


class FakeMixBackend:
    def __init__(self, fail_when: Callable[[MixPlan], bool] | None = None) -> None:
        self.plans: List[MixPlan] = []
        self.fail_when = fail_when

    def render(self, plan: MixPlan, output_path: str) -> None:
        self.plans.append(plan)
        if self.fail_when is not None and self.fail_when(plan):
            raise RuntimeError("mixer exploded")
        Path(output_path).write_bytes(b"RIFF fake wav")


def text_probe(path: str) -> float:
    return float(Path(path).read_text())


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        work_root=str(tmp_path / "work"),
        output_root=str(tmp_path / "output"),
        public_base_url="https://cdn.test/videos",
        fetch_backoff_seconds=0.0,
        webhook_backoff_seconds=0.0,
        cleanup_delay_success_seconds=0.0,
        cleanup_delay_failure_seconds=0.0,
    )


@pytest.fixture()
def assets() -> AssetServer:
    return AssetServer()


@pytest.fixture()
def hooks() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture()
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def mix_backend() -> FakeMixBackend:
    return FakeMixBackend()


@pytest.fixture()
def make_service(settings, assets, hooks, renderer, mix_backend):
    def _make(**overrides) -> VideoService:
        components = dict(
            fetcher=AssetFetcher(timeout=5.0, retries=1, backoff_seconds=0.0, transport=assets.transport),
            resolver=DurationResolver(
                default_duration=settings.default_slide_duration,
                min_duration=settings.min_slide_duration,
                probe=text_probe,
            ),
            mixer=AudioMixer(MixPolicy(music_gain=settings.music_gain), backend=mix_backend),
            renderer=renderer,
            notifier=WebhookNotifier(retries=2, backoff_seconds=0.0, transport=hooks.transport),
        )
        components.update(overrides)
        return VideoService(repo=JobRepository(), settings=settings, **components)

    return _make


@pytest.fixture()
def job_request() -> Callable[..., JobRequest]:
    def _build(slides: list[dict], **extra) -> JobRequest:
        return JobRequest(slides=slides, webhook_url=HOOK_URL, **extra)

    return _build


@pytest.fixture()
def render_error() -> RenderError:
    return RenderError("video render failed: codec missing", diagnostics="ffmpeg: libx264 not found")


@pytest.fixture()
def failing_renderer(render_error) -> FakeRenderer:
    return FakeRenderer(error=render_error)
