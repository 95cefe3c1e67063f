from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from lecture_live.schemas.lecture import ChatAttachment


class SessionControlPayload(BaseModel):
    action: Literal["start", "reconnect", "end"]
    mode: Literal["new", "saved", "disconnected"] = "new"


class SendMessagePayload(BaseModel):
    text: str = ""
    attachments: List[ChatAttachment] = Field(default_factory=list)


class SelectSlidePayload(BaseModel):
    index: int = Field(ge=0)


class MutePayload(BaseModel):
    muted: bool


class AudioChunkPayload(BaseModel):
    payload: str = Field(description="Base64 PCM_S16LE mono 16k microphone audio")
    mime_type: str = "audio/pcm;rate=16000"


class LiveSessionSnapshot(BaseModel):
    session_id: str
    state: str
    muted: bool
    current_slide_index: int
    transcript_entries: int
    usage_reports: int
    estimated_cost: float
    has_resumption_handle: bool
    assistant_turn_open: bool
    pending_save: bool
    last_error: Optional[str] = None
