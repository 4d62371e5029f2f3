"""Adapters from legacy client payloads to the canonical ``JobRequest``."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from .api import CaptionRequest, JobRequest, SlideRequest


def from_n8n_payload(body: Any) -> JobRequest:
    """Convert the n8n workflow body into a ``JobRequest``.

    Expected shape::

        {"supabaseData": [{"image_url": "...", "audio_url": "...", "caption": "..."}],
         "n8nWebhookUrl": "https://...", "musicUrl": "..."}

    Raises ``ValueError`` when the body cannot be adapted.
    """
    if not isinstance(body, dict):
        raise ValueError("payload must be a JSON object")
    rows = body.get("supabaseData")
    if not isinstance(rows, list) or not rows:
        raise ValueError("supabaseData must be a non-empty list")
    slides: list[SlideRequest] = []
    try:
        for position, row in enumerate(rows):
            if not isinstance(row, dict):
                raise ValueError(f"supabaseData[{position}] must be an object")
            image_url = row.get("image_url") or row.get("imageUrl")
            if not image_url:
                raise ValueError(f"supabaseData[{position}] is missing image_url")
            narration_url = row.get("audio_url") or row.get("audioUrl") or row.get("narration_url")
            caption_text = row.get("caption") or row.get("text")
            caption = CaptionRequest(text=str(caption_text)) if caption_text else None
            slides.append(SlideRequest(image_url=str(image_url), narration_url=narration_url, caption=caption))
        return JobRequest(
            request_id=body.get("requestId") or body.get("request_id"),
            slides=slides,
            music_url=body.get("musicUrl") or body.get("music_url"),
            webhook_url=body.get("n8nWebhookUrl") or "",
            return_inline=True if body.get("returnInline") is None else body["returnInline"],
        )
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc
