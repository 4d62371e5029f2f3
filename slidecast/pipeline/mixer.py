from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, Sequence, Tuple

from slidecast.models.domain import MasterAudioTrack, ResolvedClip


@dataclass(frozen=True)
class MixPolicy:
    """Gain ratios applied when building the master track.

    ``music_gain`` is relative to narration at unity; values between 0.15 and
    0.3 keep speech intelligible over the bed.
    """

    music_gain: float = 0.2
    narration_gain: float = 1.0
    sample_rate: int = 44100


@dataclass(frozen=True)
class NarrationPlacement:
    path: str
    start: float
    duration: float


@dataclass(frozen=True)
class MixPlan:
    placements: Tuple[NarrationPlacement, ...]
    music_path: Optional[str]
    total_duration: float
    policy: MixPolicy

    @property
    def has_narration(self) -> bool:
        return bool(self.placements)

    @property
    def has_music(self) -> bool:
        return bool(self.music_path)

    @property
    def is_empty(self) -> bool:
        return not self.has_narration and not self.has_music

    def without_music(self) -> "MixPlan":
        return replace(self, music_path=None)


@dataclass(frozen=True)
class MixResult:
    track: Optional[MasterAudioTrack]
    degraded: bool = False
    reason: Optional[str] = None


def plan_mix(clips: Sequence[ResolvedClip], music_path: Optional[str], policy: MixPolicy) -> MixPlan:
    placements: List[NarrationPlacement] = []
    elapsed = 0.0
    for clip in clips:
        if clip.narration_path:
            placements.append(NarrationPlacement(path=clip.narration_path, start=elapsed, duration=clip.duration))
        elapsed += clip.duration
    return MixPlan(
        placements=tuple(placements),
        music_path=music_path or None,
        total_duration=elapsed,
        policy=policy,
    )


class MixBackend(Protocol):
    def render(self, plan: MixPlan, output_path: str) -> None: ...  # pragma: no cover


class MoviePyMixBackend:
    def render(self, plan: MixPlan, output_path: str) -> None:
        from moviepy import AudioFileClip, CompositeAudioClip
        from moviepy.audio.fx import AudioLoop, MultiplyVolume

        sources: list = []
        layers: list = []
        try:
            for placement in plan.placements:
                source = AudioFileClip(placement.path)
                sources.append(source)
                end = min(source.duration, placement.duration)
                layer = source.subclipped(0, end).with_start(placement.start)
                if plan.policy.narration_gain != 1.0:
                    layer = layer.with_effects([MultiplyVolume(plan.policy.narration_gain)])
                layers.append(layer)
            if plan.music_path:
                music = AudioFileClip(plan.music_path)
                sources.append(music)
                bed = music.with_effects(
                    [AudioLoop(duration=plan.total_duration), MultiplyVolume(plan.policy.music_gain)]
                ).with_start(0)
                layers.append(bed)
            master = CompositeAudioClip(layers).with_duration(plan.total_duration)
            master.write_audiofile(output_path, fps=plan.policy.sample_rate, logger=None)
        finally:
            for source in sources:
                source.close()


class AudioMixer:
    """Builds the single master audio track for a job.

    Mixing is best effort: when the backend fails with music present the
    mixer retries voice-only, and when that fails too the render goes out
    silent.
    """

    def __init__(
        self,
        policy: MixPolicy | None = None,
        backend: MixBackend | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.policy = policy or MixPolicy()
        self.backend = backend or MoviePyMixBackend()
        self.log = logger or logging.getLogger(__name__)

    def plan(self, clips: Sequence[ResolvedClip], music_path: Optional[str]) -> MixPlan:
        return plan_mix(clips, music_path, self.policy)

    def mix(self, clips: Sequence[ResolvedClip], music_path: Optional[str], output_path: str) -> MixResult:
        plan = self.plan(clips, music_path)
        if plan.is_empty:
            return MixResult(track=None)
        try:
            return MixResult(track=self._render(plan, output_path))
        except Exception as exc:
            self.log.warning(
                "audio mix failed",
                extra={"has_music": plan.has_music, "has_narration": plan.has_narration},
                exc_info=True,
            )
            reason = f"audio mix failed: {exc}"
        if plan.has_music and plan.has_narration:
            try:
                track = self._render(plan.without_music(), output_path)
                return MixResult(track=track, degraded=True, reason=f"{reason}; using narration only")
            except Exception:
                self.log.warning("voice-only mix failed", exc_info=True)
        return MixResult(track=None, degraded=True, reason=f"{reason}; rendering without audio")

    def _render(self, plan: MixPlan, output_path: str) -> MasterAudioTrack:
        self.backend.render(plan, output_path)
        return MasterAudioTrack(
            path=output_path,
            duration=plan.total_duration,
            has_narration=plan.has_narration,
            has_music=plan.has_music,
        )
