from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


Speaker = Literal["user", "ai"]
AttachmentKind = Literal["image", "file", "selection"]
CanvasBlockType = Literal["markdown", "diagram", "ascii", "table"]


class CanvasBlock(BaseModel):
    type: CanvasBlockType
    content: str


class ParsedSlide(BaseModel):
    """One page produced by the PDF parsing collaborator."""

    page_number: int = Field(ge=1)
    image_data_url: str
    text_content: str = ""
    has_images: bool = False


class Slide(ParsedSlide):
    summary: str = ""
    canvas_content: Optional[List[CanvasBlock]] = None
    is_important: Optional[bool] = None
    origin_file: Optional[str] = None


class ImageOptimizationSettings(BaseModel):
    max_dimension: int = Field(default=768, gt=0)
    grayscale: bool = False


class LectureConfig(BaseModel):
    language: str
    voice: str
    model: str
    prompt: Optional[str] = None
    image_optimization: Optional[ImageOptimizationSettings] = None
    force_text_only: bool = False


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class UsageReport(BaseModel):
    model_id: str
    usage: TokenUsage
    timestamp: int
    call_type: Optional[str] = None  # plan_gen, live_turn, live_turn_ongoing, markdown_fix
    tag: Optional[str] = None  # lecture_plan, grouping, slide_conversation:<n>


class ChatAttachment(BaseModel):
    id: str
    type: AttachmentKind
    data: str = Field(description="Base64 data URL or raw file content")
    mime_type: str = "image/png"
    file_name: Optional[str] = None


class TranscriptEntry(BaseModel):
    speaker: Speaker
    text: str
    slide_number: Optional[int] = None
    attachments: Optional[List[ChatAttachment]] = None
    estimated_cost: Optional[float] = None
    audio_base64: Optional[str] = None


class SlideGroup(BaseModel):
    title: str
    slide_numbers: List[int] = Field(default_factory=list)


class LectureSession(BaseModel):
    id: str
    file_name: str
    file_names: List[str] = Field(default_factory=list)
    created_at: int
    slides: List[Slide] = Field(default_factory=list)
    general_info: str = ""
    transcript: List[TranscriptEntry] = Field(default_factory=list)
    current_slide_index: int = Field(default=0, ge=0)
    lecture_config: LectureConfig
    slide_groups: Optional[List[SlideGroup]] = None
    usage_reports: List[UsageReport] = Field(default_factory=list)

    def current_slide(self) -> Optional[Slide]:
        if 0 <= self.current_slide_index < len(self.slides):
            return self.slides[self.current_slide_index]
        return None


class LectureSessionMetadata(BaseModel):
    """Session browser row: everything except slide media and transcript."""

    id: str
    file_name: str
    file_names: List[str] = Field(default_factory=list)
    created_at: int
    lecture_config: LectureConfig
    usage_reports: List[UsageReport] = Field(default_factory=list)
    slides_count: int = 0
    general_info: str = ""
    current_slide_index: int = 0
    slide_groups: Optional[List[SlideGroup]] = None

    @classmethod
    def from_session(cls, session: LectureSession) -> "LectureSessionMetadata":
        return cls(
            id=session.id,
            file_name=session.file_name,
            file_names=list(session.file_names),
            created_at=session.created_at,
            lecture_config=LectureConfig(
                language=session.lecture_config.language,
                voice=session.lecture_config.voice,
                model=session.lecture_config.model,
                prompt=session.lecture_config.prompt,
            ),
            usage_reports=list(session.usage_reports),
            slides_count=len(session.slides),
            general_info=session.general_info,
            current_slide_index=session.current_slide_index,
            slide_groups=session.slide_groups,
        )


class LectureSessionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    READY = "READY"
    LECTURING = "LECTURING"
    LISTENING = "LISTENING"
    ENDED = "ENDED"
    ERROR = "ERROR"
    DISCONNECTED = "DISCONNECTED"


class CreateSessionRequest(BaseModel):
    file_names: List[str] = Field(min_length=1)
    slides: List[Slide] = Field(min_length=1)
    general_info: str = ""
    lecture_config: LectureConfig
    slide_groups: Optional[List[SlideGroup]] = None
    usage_reports: List[UsageReport] = Field(default_factory=list)


class TagUsageSummary(BaseModel):
    cost: float = 0.0
    tokens: int = 0
    count: int = 0


class UsageSummary(BaseModel):
    session_id: str
    total_cost: float
    formatted_total_cost: str
    total_tokens: int
    by_tag: dict[str, TagUsageSummary] = Field(default_factory=dict)
    reports: List[UsageReport] = Field(default_factory=list)


class PlanningDocumentPayload(BaseModel):
    file_name: str
    data: str = Field(description="Base64 encoded document (data URL accepted)")
    mime_type: str = "application/pdf"
    slides: List[ParsedSlide] = Field(min_length=1)


class PlanSessionRequest(BaseModel):
    documents: List[PlanningDocumentPayload] = Field(min_length=1)
    lecture_config: LectureConfig
    mark_important: bool = False


class ModelInfo(BaseModel):
    id: str
    name: str
    type: str
    input_per_1m: float
    output_per_1m: float
