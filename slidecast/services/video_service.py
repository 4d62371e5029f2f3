from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Set, Tuple
from uuid import UUID, uuid4

from slidecast.clients.blob_store import BlobStore, build_blob_store
from slidecast.clients.webhook import WebhookNotifier
from slidecast.config import Settings
from slidecast.models.api import JobRequest, WebhookPayload
from slidecast.models.domain import (
    ALLOWED_TRANSITIONS,
    CaptionPosition,
    Job,
    JobResult,
    JobState,
    JobStatusHistory,
    MasterAudioTrack,
    RenderSpec,
    ResolvedClip,
    SlideSpec,
    utcnow,
)
from slidecast.pipeline.composer import SceneComposer
from slidecast.pipeline.durations import DurationResolver
from slidecast.pipeline.fetcher import AssetFetcher, FetchRequest, guess_suffix
from slidecast.pipeline.mixer import AudioMixer, MixPolicy
from slidecast.pipeline.renderer import MoviePyRenderer, Renderer, RenderError
from slidecast.queue.queue import BaseQueue
from slidecast.storage.repository import JobRepository
from slidecast.storage.workspace import JobWorkspace, safe_segment


class PipelineError(Exception):
    """Fatal pipeline failure; the message is shown to the caller."""


class InvalidTransition(Exception):
    def __init__(self, current: JobState, target: JobState) -> None:
        super().__init__(f"cannot move job from {current.value} to {target.value}")
        self.current = current
        self.target = target


@dataclass
class SlideAssets:
    index: int
    slide: SlideSpec
    image_path: str
    narration_path: Optional[str] = None
    caption_text: Optional[str] = None


class VideoService:
    def __init__(
        self,
        repo: JobRepository,
        settings: Settings,
        *,
        storage: BlobStore | None = None,
        fetcher: AssetFetcher | None = None,
        resolver: DurationResolver | None = None,
        composer: SceneComposer | None = None,
        mixer: AudioMixer | None = None,
        renderer: Renderer | None = None,
        notifier: WebhookNotifier | None = None,
    ) -> None:
        self.repo = repo
        self.queue: BaseQueue | None = None
        self.settings = settings
        self.log = logging.getLogger(__name__)
        self.storage = storage if storage is not None else build_blob_store(settings)
        self.fetcher = fetcher or AssetFetcher(
            timeout=settings.fetch_timeout_seconds,
            retries=settings.fetch_retries,
            backoff_seconds=settings.fetch_backoff_seconds,
            logger=self.log,
            local_root=settings.local_asset_root or None,
        )
        self.resolver = resolver or DurationResolver(
            default_duration=settings.default_slide_duration,
            min_duration=settings.min_slide_duration,
            logger=self.log,
        )
        self.composer = composer or SceneComposer(
            max_words_per_line=settings.caption_max_words_per_line,
            default_color=settings.caption_default_color,
            default_position=CaptionPosition(settings.caption_default_position),
        )
        self.mixer = mixer or AudioMixer(
            MixPolicy(
                music_gain=settings.music_gain,
                narration_gain=settings.narration_gain,
                sample_rate=settings.audio_sample_rate,
            ),
            logger=self.log,
        )
        self.renderer: Renderer = renderer or MoviePyRenderer(
            codec=settings.video_codec,
            audio_codec=settings.audio_codec,
            font_path=settings.caption_font_path,
            logger=self.log,
        )
        self.notifier = notifier or WebhookNotifier(
            timeout=settings.webhook_timeout_seconds,
            retries=settings.webhook_retries,
            backoff_seconds=settings.webhook_backoff_seconds,
            logger=self.log,
        )
        self._background: Set[asyncio.Task] = set()

    def bind_queue(self, queue: BaseQueue) -> None:
        self.queue = queue

    def create_job(self, payload: JobRequest) -> Job:
        job_id = uuid4()
        job = Job(
            id=job_id,
            request_id=payload.request_id or job_id.hex,
            state=JobState.REGISTERED,
            slides=[SlideSpec.model_validate(slide.model_dump()) for slide in payload.slides],
            music_url=payload.music_url,
            webhook_url=payload.webhook_url,
            return_inline=payload.return_inline,
            status_history=[JobStatusHistory(state=JobState.REGISTERED, message="Job registered")],
        )
        self.repo.create(job)
        self.log.info(
            "job registered",
            extra={"job_id": str(job.id), "request_id": job.request_id, "slides": len(job.slides)},
        )
        if self.queue is not None:
            self.queue.enqueue(job.id)
        return job

    def get_job(self, job_id: UUID) -> Job:
        job = self.repo.get(job_id)
        if not job:
            raise ValueError("Job not found")
        return job

    def list_jobs(self) -> list[Job]:
        jobs = self.repo.list()
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs

    async def process_job(self, job_id: UUID) -> None:
        job = self.repo.get(job_id)
        if not job:
            self.log.warning("job vanished before processing", extra={"job_id": str(job_id)})
            return
        if job.state != JobState.REGISTERED:
            self.log.debug("pipeline invocation skipped", extra={"job_id": str(job_id), "state": job.state.value})
            return
        workspace = JobWorkspace(self.settings.work_root, job.request_id, job.id)
        try:
            result, payload = await self._pipeline(job, workspace)
        except Exception as exc:
            self.log.exception("video job failed", extra={"job_id": str(job.id)})
            self._fail(job, exc)
            await self._notify(job, self._failure_payload(job))
        else:
            await self._notify(job, payload)
            job.result = result
            self._update_status(job, JobState.COMPLETED, "Video is ready")
        finally:
            self._schedule_cleanup(job, workspace)

    async def _pipeline(self, job: Job, workspace: JobWorkspace) -> Tuple[JobResult, WebhookPayload]:
        self._update_status(job, JobState.DOWNLOADING, "Fetching slide assets")
        try:
            workspace.create()
        except OSError as exc:
            raise PipelineError(f"cannot create working storage: {exc}") from exc
        slides, music_path = await self._download(job, workspace)
        if not slides:
            raise PipelineError(f"no usable slides: all {len(job.slides)} slide images failed to download")

        self._update_status(job, JobState.PROCESSING, f"Composing {len(slides)} slides")
        clips = await self._resolve_clips(job, slides)
        audio = await self._mix(job, clips, music_path, workspace)
        spec = RenderSpec(
            output_path=workspace.file("video.mp4"),
            width=self.settings.render_width,
            height=self.settings.render_height,
            fps=self.settings.render_fps,
            clips=tuple(clips),
            audio=audio,
            transition=self.settings.transition,
            transition_duration=self.settings.transition_duration,
        )
        await self._render(job, spec)

        self._update_status(job, JobState.UPLOADING, "Uploading rendered video")
        return await self._upload(job, spec)

    async def _download(self, job: Job, workspace: JobWorkspace) -> Tuple[List[SlideAssets], Optional[str]]:
        requests: dict[Tuple[int, str], FetchRequest] = {}
        for index, slide in enumerate(job.slides):
            prefix = f"slide-{index:03d}"
            requests[(index, "image")] = FetchRequest(
                ref=slide.image_url,
                destination=workspace.file(f"{prefix}-image{guess_suffix(slide.image_url, '.png')}"),
                kind="image",
            )
            if slide.narration_url:
                requests[(index, "narration")] = FetchRequest(
                    ref=slide.narration_url,
                    destination=workspace.file(f"{prefix}-narration{guess_suffix(slide.narration_url, '.mp3')}"),
                    kind="narration",
                )
            caption = slide.caption
            if caption and not (caption.text or "").strip() and caption.text_url:
                requests[(index, "caption")] = FetchRequest(
                    ref=caption.text_url,
                    destination=workspace.file(f"{prefix}-caption.txt"),
                    kind="caption",
                )
        if job.music_url:
            requests[(-1, "music")] = FetchRequest(
                ref=job.music_url,
                destination=workspace.file(f"music{guess_suffix(job.music_url, '.mp3')}"),
                kind="music",
            )

        keys = list(requests)
        results = await self.fetcher.fetch_all([requests[key] for key in keys])
        fetched = dict(zip(keys, results))

        music_path = None
        music = fetched.get((-1, "music"))
        if music is not None:
            if music.ok:
                music_path = music.path
            else:
                self._warn(job, f"background music unavailable ({music.error}); rendering without music")

        slides: List[SlideAssets] = []
        for index, slide in enumerate(job.slides):
            image = fetched[(index, "image")]
            if not image.ok:
                self._warn(job, f"slide {index + 1} dropped: image unavailable ({image.error})")
                continue
            assets = SlideAssets(index=index, slide=slide, image_path=image.request.destination)
            narration = fetched.get((index, "narration"))
            if narration is not None:
                if narration.ok:
                    assets.narration_path = narration.path
                else:
                    self._warn(job, f"slide {index + 1} narration unavailable ({narration.error}); slide is silent")
            assets.caption_text = self._caption_text(job, index, slide, fetched.get((index, "caption")))
            slides.append(assets)
        self._save_job(job)
        return slides, music_path

    def _caption_text(self, job: Job, index: int, slide: SlideSpec, fetched) -> Optional[str]:
        if slide.caption is None:
            return None
        if (slide.caption.text or "").strip():
            return slide.caption.text
        if fetched is None:
            return None
        if not fetched.ok:
            self._warn(job, f"slide {index + 1} caption unavailable ({fetched.error})")
            return None
        try:
            return Path(fetched.request.destination).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self._warn(job, f"slide {index + 1} caption unreadable ({exc})")
            return None

    async def _resolve_clips(self, job: Job, slides: List[SlideAssets]) -> List[ResolvedClip]:
        clips: List[ResolvedClip] = []
        for assets in slides:
            narration_path = assets.narration_path
            duration = self.resolver.default_duration
            if narration_path:
                measured = await asyncio.to_thread(self.resolver.measure, narration_path)
                if measured is None:
                    self._warn(job, f"slide {assets.index + 1} narration unreadable; using default duration")
                    narration_path = None
                else:
                    duration = measured
            clips.append(
                self.composer.compose(
                    index=assets.index,
                    slide=assets.slide,
                    image_path=assets.image_path,
                    duration=duration,
                    narration_path=narration_path,
                    caption_text=assets.caption_text,
                )
            )
        return clips

    async def _mix(
        self,
        job: Job,
        clips: List[ResolvedClip],
        music_path: Optional[str],
        workspace: JobWorkspace,
    ) -> Optional[MasterAudioTrack]:
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.mixer.mix, clips, music_path, workspace.file("master.wav")),
                timeout=self.settings.render_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._warn(job, "audio mix timed out; rendering without audio")
            return None
        if result.degraded and result.reason:
            self._warn(job, result.reason)
        return result.track

    async def _render(self, job: Job, spec: RenderSpec) -> None:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.renderer.render, spec),
                timeout=self.settings.render_timeout_seconds,
            )
        except RenderError as exc:
            self.log.error(
                "renderer failed",
                extra={"job_id": str(job.id), "diagnostics": exc.diagnostics},
            )
            raise PipelineError(str(exc)) from exc
        except asyncio.TimeoutError as exc:
            raise PipelineError(f"render timed out after {self.settings.render_timeout_seconds:.0f}s") from exc
        if not Path(spec.output_path).is_file():
            raise PipelineError("renderer produced no output file")

    async def _upload(self, job: Job, spec: RenderSpec) -> Tuple[JobResult, WebhookPayload]:
        data = await asyncio.to_thread(Path(spec.output_path).read_bytes)
        object_path = "/".join(
            part
            for part in (
                self.settings.storage_folder_prefix.strip("/"),
                safe_segment(job.request_id),
                f"{job.id}.mp4",
            )
            if part
        )
        try:
            video_url = await asyncio.to_thread(self.storage.put, data, object_path, "video/mp4")
        except ValueError as exc:
            raise PipelineError(f"upload failed: {exc}") from exc
        self.log.info(
            "video uploaded",
            extra={"job_id": str(job.id), "video_url": video_url, "size": len(data)},
        )
        duration = round(spec.duration, 3)
        result = JobResult(video_url=video_url, clips=len(spec.clips), duration=duration)
        payload = WebhookPayload(
            job_id=str(job.id),
            request_id=job.request_id,
            success=True,
            state=JobState.COMPLETED.value,
            video_url=video_url,
            video_base64=base64.b64encode(data).decode("ascii") if job.return_inline else None,
            clips=result.clips,
            duration=duration,
        )
        return result, payload

    def _failure_payload(self, job: Job) -> WebhookPayload:
        return WebhookPayload(
            job_id=str(job.id),
            request_id=job.request_id,
            success=False,
            state=job.state.value,
            error=job.error or "Video generation failed",
        )

    async def _notify(self, job: Job, payload: WebhookPayload) -> None:
        delivered = await self.notifier.notify(job.webhook_url, payload)
        if not delivered:
            self.log.warning("webhook not delivered", extra={"job_id": str(job.id)})

    def _fail(self, job: Job, exc: Exception) -> None:
        if job.state.terminal:
            return
        message = str(exc) or exc.__class__.__name__
        self._update_status(job, JobState.FAILED, "Video generation failed", error=message)

    def _update_status(
        self,
        job: Job,
        state: JobState,
        message: str,
        error: str | None = None,
    ) -> None:
        if state not in ALLOWED_TRANSITIONS[job.state]:
            raise InvalidTransition(job.state, state)
        job.state = state
        job.status_history.append(JobStatusHistory(state=state, message=message))
        job.updated_at = utcnow()
        if error:
            job.error = error
        self._save_job(job)
        self.log.info(
            "job state changed",
            extra={"job_id": str(job.id), "state": state.value, "detail": message},
        )

    def _warn(self, job: Job, message: str) -> None:
        job.warnings.append(message)
        self.log.warning("job degraded: %s", message, extra={"job_id": str(job.id)})

    def _save_job(self, job: Job) -> None:
        if not self.repo.update(job):
            self.log.warning("job record missing from store", extra={"job_id": str(job.id)})

    def _schedule_cleanup(self, job: Job, workspace: JobWorkspace) -> None:
        if job.state == JobState.COMPLETED:
            delay = self.settings.cleanup_delay_success_seconds
        else:
            delay = self.settings.cleanup_delay_failure_seconds
        task = asyncio.get_running_loop().create_task(self._cleanup_later(job.id, workspace, delay))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _cleanup_later(self, job_id: UUID, workspace: JobWorkspace, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))
        await asyncio.to_thread(workspace.remove)
        self.log.debug("workspace cleaned up", extra={"job_id": str(job_id)})

    async def wait_for_cleanup(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def evict_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.job_retention_seconds)
        stale_cutoff = now - timedelta(
            seconds=max(self.settings.stale_job_retention_seconds, self.settings.job_retention_seconds)
        )
        evicted = self.repo.evict(cutoff, stale_older_than=stale_cutoff)
        if evicted:
            self.log.info("evicted expired jobs", extra={"count": len(evicted)})
        return len(evicted)

    async def run_eviction(self) -> None:
        interval = max(1.0, self.settings.eviction_interval_seconds)
        while True:
            await asyncio.sleep(interval)
            self.evict_expired()
