from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from slidecast.models.domain import CaptionLayer, CaptionPosition, ResolvedClip, SlideSpec

# (max characters, font size); the last tier catches everything longer
DEFAULT_FONT_TIERS: Tuple[Tuple[int, int], ...] = (
    (40, 48),
    (100, 40),
    (200, 32),
)
SMALLEST_FONT_SIZE = 26


def wrap_caption(text: str, max_words_per_line: int = 8) -> List[str]:
    words = text.split()
    if not words:
        return []
    step = max(1, max_words_per_line)
    return [" ".join(words[i : i + step]) for i in range(0, len(words), step)]


def caption_font_size(
    text: str,
    tiers: Tuple[Tuple[int, int], ...] = DEFAULT_FONT_TIERS,
    smallest: int = SMALLEST_FONT_SIZE,
) -> int:
    length = len(text.strip())
    for limit, size in tiers:
        if length <= limit:
            return size
    return smallest


@dataclass(frozen=True)
class SceneComposer:
    max_words_per_line: int = 8
    default_color: str = "white"
    default_position: CaptionPosition = CaptionPosition.BOTTOM

    def caption_layer(self, slide: SlideSpec, caption_text: Optional[str]) -> Optional[CaptionLayer]:
        text = (caption_text or "").strip()
        if not text:
            return None
        spec = slide.caption
        lines = wrap_caption(text, self.max_words_per_line)
        return CaptionLayer(
            text=text,
            lines=tuple(lines),
            font_size=(spec.font_size if spec and spec.font_size else caption_font_size(text)),
            color=(spec.color if spec and spec.color else self.default_color),
            position=(spec.position if spec and spec.position else self.default_position),
        )

    def compose(
        self,
        index: int,
        slide: SlideSpec,
        image_path: str,
        duration: float,
        narration_path: Optional[str] = None,
        caption_text: Optional[str] = None,
    ) -> ResolvedClip:
        return ResolvedClip(
            index=index,
            image_path=image_path,
            narration_path=narration_path,
            caption=self.caption_layer(slide, caption_text),
            duration=duration,
        )
