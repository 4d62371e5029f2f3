from __future__ import annotations

import logging
import math
from typing import Callable, Optional


def probe_audio_duration(path: str) -> float:
    from moviepy import AudioFileClip

    clip = AudioFileClip(path)
    try:
        return float(clip.duration or 0.0)
    finally:
        clip.close()


class DurationResolver:
    """Turns a narration file into a slide duration; never raises."""

    def __init__(
        self,
        default_duration: float = 4.0,
        min_duration: float = 2.0,
        probe: Callable[[str], float] = probe_audio_duration,
        logger: logging.Logger | None = None,
    ) -> None:
        self.default_duration = max(default_duration, min_duration)
        self.probe = probe
        self.log = logger or logging.getLogger(__name__)

    def measure(self, narration_path: str) -> Optional[float]:
        """Probed duration in seconds, or ``None`` when it is unusable."""
        try:
            duration = float(self.probe(narration_path))
        except Exception:
            self.log.warning(
                "narration probe failed, using default duration",
                extra={"path": narration_path, "default": self.default_duration},
                exc_info=True,
            )
            return None
        if math.isnan(duration) or math.isinf(duration) or duration <= 0:
            self.log.warning(
                "narration probe returned unusable duration, using default",
                extra={"path": narration_path, "probed": duration, "default": self.default_duration},
            )
            return None
        return duration
