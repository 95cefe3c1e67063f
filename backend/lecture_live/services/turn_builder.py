"""
Outgoing Turn Builder

Assembles one outgoing multimodal turn (slide image, canvas context, attachments, text)
and sends it with a two-tier strategy: structured client content first, per-part
realtime input as a best-effort fallback.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from lecture_live.llm.prompts.lecture_prompts import CANVAS_CONTEXT_TEXT
from lecture_live.schemas.lecture import ChatAttachment, ImageOptimizationSettings, Slide
from lecture_live.services.image_processing import optimize_image_data_url, split_data_url

logger = logging.getLogger(__name__)

Part = Dict[str, Any]
ImageOptimizer = Callable[[str, ImageOptimizationSettings], str]

PAYLOAD_ATTACHMENT_KINDS = {"image", "selection"}


class LiveConnection(Protocol):
    """Send side of an open streaming session (see live_transport)."""

    @property
    def is_open(self) -> bool: ...

    async def send_client_content(self, turns: List[Dict[str, Any]], turn_complete: bool) -> None: ...

    async def send_realtime_input(
        self,
        *,
        media: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
        end_of_turn: bool = False,
    ) -> None: ...


@dataclass
class OutgoingTurn:
    parts: List[Part]
    turn_complete: bool = True

    @property
    def is_empty(self) -> bool:
        return not self.parts

    def to_request(self) -> Dict[str, Any]:
        return {"turns": [{"role": "user", "parts": self.parts}], "turnComplete": self.turn_complete}


def inline_part(data_url: str, fallback_mime: str = "image/png") -> Optional[Part]:
    mime, payload = split_data_url(data_url)
    if not payload:
        return None
    if not data_url.lower().startswith("data:"):
        # Only bare base64 is accepted without a data URL header (not http URLs).
        try:
            base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            logger.debug("inline_part_skipped reason=not_base64")
            return None
        mime = fallback_mime
    return {"inlineData": {"mimeType": mime, "data": payload}}


class TurnBuilder:
    def __init__(
        self,
        image_settings: Optional[ImageOptimizationSettings] = None,
        force_text_only: bool = False,
        image_optimizer: ImageOptimizer = optimize_image_data_url,
    ) -> None:
        self.image_settings = image_settings
        self.force_text_only = force_text_only
        self._optimize = image_optimizer

    async def _optimized(self, data_url: str, label: str) -> str:
        if self.image_settings is None:
            return data_url
        try:
            return await asyncio.to_thread(self._optimize, data_url, self.image_settings)
        except Exception:
            logger.warning("image_optimization_failed source=%s, sending original", label, exc_info=True)
            return data_url

    async def build(
        self,
        *,
        slide: Optional[Slide] = None,
        text: Union[str, Sequence[str], None] = None,
        attachments: Optional[Sequence[ChatAttachment]] = None,
        turn_complete: bool = True,
    ) -> OutgoingTurn:
        parts: List[Part] = []

        if slide is not None:
            if slide.has_images and not self.force_text_only:
                image_data = await self._optimized(slide.image_data_url, f"slide-{slide.page_number}")
                part = inline_part(image_data)
                if part:
                    parts.append(part)
            else:
                reason = "force_text_only" if self.force_text_only else "text_only_slide"
                logger.debug("slide_image_skipped page=%s reason=%s", slide.page_number, reason)

            if slide.canvas_content:
                canvas_json = json.dumps([b.model_dump() for b in slide.canvas_content], ensure_ascii=False)
                parts.append({"text": CANVAS_CONTEXT_TEXT.format(canvas_json=canvas_json)})

        for attachment in attachments or []:
            if attachment.type not in PAYLOAD_ATTACHMENT_KINDS:
                logger.debug("attachment_skipped id=%s type=%s", attachment.id, attachment.type)
                continue
            image_data = await self._optimized(attachment.data, f"attachment-{attachment.id}")
            part = inline_part(image_data, fallback_mime=attachment.mime_type or "image/png")
            if part:
                parts.append(part)

        if isinstance(text, str):
            parts.append({"text": text})
        elif text is not None:
            for chunk in text:
                parts.append({"text": chunk})

        return OutgoingTurn(parts=parts, turn_complete=turn_complete)


async def send_turn(connection: Optional[LiveConnection], turn: OutgoingTurn) -> bool:
    """
    Deliver a built turn. Returns True when the structured send succeeded.

    A closed session or an empty turn is a silent no-op; delivery is not guaranteed.
    """
    if turn.is_empty:
        logger.warning("send_turn_skipped reason=no_parts")
        return False
    if connection is None or not connection.is_open:
        logger.warning("send_turn_skipped reason=session_not_open")
        return False

    try:
        await connection.send_client_content(
            turns=[{"role": "user", "parts": turn.parts}],
            turn_complete=turn.turn_complete,
        )
        return True
    except Exception:
        logger.warning("send_client_content_failed, falling back to realtime input", exc_info=True)

    try:
        for part in turn.parts:
            inline = part.get("inlineData")
            if inline:
                await connection.send_realtime_input(
                    media={"data": inline["data"], "mimeType": inline["mimeType"]},
                )
            elif isinstance(part.get("text"), str):
                await connection.send_realtime_input(text=part["text"])
        if turn.turn_complete:
            await connection.send_realtime_input(end_of_turn=True)
    except Exception:
        logger.debug("realtime_input_fallback_failed", exc_info=True)
    return False
