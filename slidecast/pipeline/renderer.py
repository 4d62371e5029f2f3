from __future__ import annotations

import logging
import traceback
from typing import Protocol, Tuple

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from slidecast.models.domain import CaptionLayer, CaptionPosition, RenderSpec, ResolvedClip

CAPTION_MARGIN = 40
CAPTION_LINE_SPACING = 8


class RenderError(Exception):
    def __init__(self, message: str, diagnostics: str | None = None) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class Renderer(Protocol):
    def render(self, spec: RenderSpec) -> str: ...  # pragma: no cover


def fit_within(size: Tuple[int, int], frame: Tuple[int, int]) -> Tuple[int, int]:
    """Largest even-sized box with the image's aspect ratio that fits the frame."""
    width, height = size
    frame_w, frame_h = frame
    if width <= 0 or height <= 0:
        return frame
    scale = min(frame_w / width, frame_h / height)
    fitted_w = max(2, int(width * scale) // 2 * 2)
    fitted_h = max(2, int(height * scale) // 2 * 2)
    return fitted_w, fitted_h


def _load_font(size: int, font_path: str | None):
    if font_path:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            logging.getLogger(__name__).warning("caption font unavailable", extra={"font_path": font_path})
    return ImageFont.load_default(size=size)


def _caption_rgba(color: str) -> Tuple[int, int, int, int]:
    try:
        rgb = ImageColor.getrgb(color)
    except ValueError:
        rgb = (255, 255, 255)
    return (rgb[0], rgb[1], rgb[2], 255)


def caption_image(layer: CaptionLayer, frame_width: int, font_path: str | None = None) -> np.ndarray:
    """Draws caption lines centred on a transparent strip as an RGBA array."""
    font = _load_font(layer.font_size, font_path)
    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    boxes = [probe.textbbox((0, 0), line, font=font, stroke_width=2) for line in layer.lines]
    line_heights = [box[3] - box[1] for box in boxes]
    height = sum(line_heights) + CAPTION_LINE_SPACING * (len(boxes) - 1) + CAPTION_LINE_SPACING * 2
    image = Image.new("RGBA", (frame_width, max(height, 2)), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    fill = _caption_rgba(layer.color)
    y = CAPTION_LINE_SPACING
    for line, box, line_height in zip(layer.lines, boxes, line_heights):
        x = (frame_width - (box[2] - box[0])) // 2
        draw.text((x, y - box[1]), line, font=font, fill=fill, stroke_width=2, stroke_fill=(0, 0, 0, 255))
        y += line_height + CAPTION_LINE_SPACING
    return np.array(image)


def caption_offset(position: CaptionPosition, frame_height: int, caption_height: int) -> int:
    if position == CaptionPosition.TOP:
        return CAPTION_MARGIN
    if position == CaptionPosition.CENTER:
        return max(0, (frame_height - caption_height) // 2)
    return max(0, frame_height - caption_height - CAPTION_MARGIN)


class MoviePyRenderer:
    def __init__(
        self,
        codec: str = "libx264",
        audio_codec: str = "aac",
        font_path: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.codec = codec
        self.audio_codec = audio_codec
        self.font_path = font_path or None
        self.log = logger or logging.getLogger(__name__)

    def render(self, spec: RenderSpec) -> str:
        if not spec.clips:
            raise RenderError("nothing to render: no clips")
        try:
            self._render(spec)
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError(f"video render failed: {exc}", diagnostics=traceback.format_exc()) from exc
        return spec.output_path

    def _render(self, spec: RenderSpec) -> None:
        from moviepy import AudioFileClip, concatenate_videoclips, vfx

        frame = (spec.width, spec.height)
        scenes = []
        audio = None
        video = None
        try:
            for position, clip in enumerate(spec.clips):
                scene = self._scene(clip, frame)
                if position > 0 and spec.transition == "fade" and spec.transition_duration > 0:
                    fade = min(spec.transition_duration, clip.duration / 2)
                    scene = scene.with_effects([vfx.FadeIn(fade)])
                scenes.append(scene)
            video = concatenate_videoclips(scenes, method="compose")
            if spec.audio is not None:
                audio = AudioFileClip(spec.audio.path)
                if audio.duration > video.duration:
                    audio = audio.subclipped(0, video.duration)
                video = video.with_audio(audio)
            self.log.info(
                "rendering video",
                extra={"output": spec.output_path, "clips": len(spec.clips), "has_audio": audio is not None},
            )
            video.write_videofile(
                spec.output_path,
                fps=spec.fps,
                codec=self.codec,
                audio_codec=self.audio_codec,
                logger=None,
                ffmpeg_params=["-pix_fmt", "yuv420p"],
            )
        finally:
            for scene in scenes:
                scene.close()
            if audio is not None:
                audio.close()
            if video is not None:
                video.close()

    def _scene(self, clip: ResolvedClip, frame: Tuple[int, int]):
        from moviepy import ColorClip, CompositeVideoClip, ImageClip

        background = ColorClip(size=frame, color=(0, 0, 0)).with_duration(clip.duration)
        image = ImageClip(clip.image_path)
        image = image.resized(new_size=fit_within(image.size, frame))
        layers = [background, image.with_duration(clip.duration).with_position("center")]
        if clip.caption is not None and clip.caption.lines:
            strip = caption_image(clip.caption, frame[0], self.font_path)
            top = caption_offset(clip.caption.position, frame[1], strip.shape[0])
            layers.append(
                ImageClip(strip, transparent=True).with_duration(clip.duration).with_position((0, top))
            )
        return CompositeVideoClip(layers, size=frame).with_duration(clip.duration)
