"""
Lecture plan generation: one Gemini call per uploaded document, parsed into a general
overview plus one-line slide summaries, then assembled into a new lecture session.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from lecture_live.core.config import get_settings
from lecture_live.llm import gemini_client
from lecture_live.llm.gemini_client import PlanGenerationError
from lecture_live.llm.prompts.lecture_prompts import (
    LECTURE_PLAN_PROMPT,
    PLAN_IMPORTANT_REQUIREMENT,
    PLAN_IMPORTANT_RULE,
    PLAN_USER_CONTEXT,
)
from lecture_live.schemas.lecture import (
    LectureConfig,
    LectureSession,
    ParsedSlide,
    Slide,
    SlideGroup,
    TokenUsage,
    UsageReport,
)
from lecture_live.services.usage_tracker import CALL_TYPE_PLAN_GEN, now_ms

logger = logging.getLogger(__name__)
settings = get_settings()

PLAN_TAG = "lecture_plan"
MISSING_SUMMARY_TEXT = "No summary was generated for this slide."
GENERAL_INFO_MAX_CHARS = 1000
SESSION_ID_NAME_MAX_CHARS = 50

_GENERAL_INFO_RE = re.compile(r"^[\s\-*]*general\s+info\s*:\s*(.*)$", re.IGNORECASE)
_SLIDE_HEADER_RE = re.compile(r"^[\s\-]*slide\s+(\d+)\s*(\*)?\s*:\s*(.*)$", re.IGNORECASE)
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

PlanTextFn = Callable[[bytes, str], Awaitable[Tuple[str, TokenUsage, str]]]


@dataclass
class LecturePlan:
    general_info: str = ""
    slide_summaries: Dict[int, str] = field(default_factory=dict)
    important_slides: Set[int] = field(default_factory=set)


@dataclass
class PlanningDocument:
    """One uploaded file: raw bytes for the model plus its already-parsed pages."""

    file_name: str
    data: bytes
    slides: List[ParsedSlide]
    mime_type: str = "application/pdf"


@dataclass
class DocumentPlan:
    file_name: str
    slides: List[ParsedSlide]
    plan: LecturePlan
    usage_report: UsageReport


def build_plan_prompt(user_custom_prompt: Optional[str] = None, mark_important: bool = False) -> str:
    user_prompt = (user_custom_prompt or "").strip()
    pref = " based on user preferences" if user_prompt else ""
    return LECTURE_PLAN_PROMPT.format(
        user_context=PLAN_USER_CONTEXT.format(prompt=user_prompt) if user_prompt else "",
        important_rule=PLAN_IMPORTANT_RULE.format(pref=pref) if mark_important else "",
        important_requirement=PLAN_IMPORTANT_REQUIREMENT.format(pref=pref) if mark_important else "",
    )


def parse_lecture_plan_response(text: str) -> LecturePlan:
    """
    Parse `general info:` and `Slide N:` / `Slide N *:` sections.

    Content may follow the label on the same line or on the lines below it.
    """
    plan = LecturePlan()
    current: Optional[int] = None  # 0 = general info, N = slide
    buffer: List[str] = []

    def flush() -> None:
        if current is None:
            return
        content = " ".join(part for part in buffer if part).strip()
        if current == 0:
            plan.general_info = content
        elif content:
            plan.slide_summaries[current] = content

    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        general = _GENERAL_INFO_RE.match(line)
        slide = _SLIDE_HEADER_RE.match(line)
        if general:
            flush()
            current, buffer = 0, [general.group(1).strip()]
        elif slide:
            flush()
            current, buffer = int(slide.group(1)), [slide.group(3).strip()]
            if slide.group(2):
                plan.important_slides.add(current)
        elif current is not None and line:
            buffer.append(line)
    flush()
    return plan


def generate_session_id(file_names: Sequence[str] | str) -> str:
    name = "-".join(file_names) if not isinstance(file_names, str) else file_names
    safe_name = _UNSAFE_ID_CHARS.sub("", re.sub(r"\s+", "-", name))[:SESSION_ID_NAME_MAX_CHARS]
    return f"{safe_name}-{now_ms()}"


async def plan_document(
    document: PlanningDocument,
    *,
    user_custom_prompt: Optional[str] = None,
    mark_important: bool = False,
    plan_text_fn: Optional[PlanTextFn] = None,
) -> DocumentPlan:
    prompt = build_plan_prompt(user_custom_prompt, mark_important)
    if plan_text_fn is None:
        text, usage, model_id = await gemini_client.generate_plan_text(
            document.data, prompt, mime_type=document.mime_type
        )
    else:
        text, usage, model_id = await plan_text_fn(document.data, prompt)

    plan = parse_lecture_plan_response(text)
    logger.info(
        "lecture_plan_generated file=%s slides=%s summaries=%s important=%s",
        document.file_name,
        len(document.slides),
        len(plan.slide_summaries),
        len(plan.important_slides),
    )
    return DocumentPlan(
        file_name=document.file_name,
        slides=list(document.slides),
        plan=plan,
        usage_report=UsageReport(
            model_id=model_id,
            usage=usage,
            timestamp=now_ms(),
            call_type=CALL_TYPE_PLAN_GEN,
            tag=PLAN_TAG,
        ),
    )


def assemble_session(
    results: Sequence[DocumentPlan],
    lecture_config: LectureConfig,
    *,
    slide_groups: Optional[List[SlideGroup]] = None,
    extra_reports: Optional[List[UsageReport]] = None,
) -> LectureSession:
    """Renumber pages globally (1-based) across files and build the aggregate."""
    if not results:
        raise PlanGenerationError("no documents to assemble")

    slides: List[Slide] = []
    reports: List[UsageReport] = []
    counter = 1
    for result in results:
        for parsed in result.slides:
            summary = result.plan.slide_summaries.get(parsed.page_number)
            slides.append(
                Slide(
                    page_number=counter,
                    image_data_url=parsed.image_data_url,
                    text_content=parsed.text_content,
                    has_images=parsed.has_images,
                    summary=summary or MISSING_SUMMARY_TEXT,
                    is_important=parsed.page_number in result.plan.important_slides,
                    origin_file=result.file_name,
                )
            )
            counter += 1
        reports.append(result.usage_report)
    reports.extend(extra_reports or [])

    file_names = [r.file_name for r in results]
    if len(results) > 1:
        general_info = (
            f"Combined lecture from {len(results)} files: {', '.join(file_names)}. "
            + " ".join(r.plan.general_info for r in results)
        )[:GENERAL_INFO_MAX_CHARS]
    else:
        general_info = results[0].plan.general_info

    return LectureSession(
        id=generate_session_id(file_names),
        file_name=" & ".join(file_names),
        file_names=file_names,
        created_at=now_ms(),
        slides=slides,
        general_info=general_info,
        transcript=[],
        current_slide_index=0,
        lecture_config=lecture_config,
        slide_groups=slide_groups,
        usage_reports=reports,
    )


async def create_session_from_documents(
    documents: Sequence[PlanningDocument],
    lecture_config: LectureConfig,
    *,
    mark_important: bool = False,
    batch_size: Optional[int] = None,
    plan_text_fn: Optional[PlanTextFn] = None,
) -> LectureSession:
    """
    Plan every document in concurrent batches and assemble one session.

    A failure in any document aborts the whole upload (no partial session).
    """
    if not documents:
        raise PlanGenerationError("no documents uploaded")
    batch_size = max(1, int(batch_size or settings.plan_batch_size))

    results: List[DocumentPlan] = []
    total_batches = (len(documents) + batch_size - 1) // batch_size
    for start in range(0, len(documents), batch_size):
        batch = documents[start:start + batch_size]
        logger.info(
            "lecture_plan_batch batch=%s/%s files=%s",
            start // batch_size + 1,
            total_batches,
            len(batch),
        )
        try:
            batch_results = await asyncio.gather(
                *(
                    plan_document(
                        doc,
                        user_custom_prompt=lecture_config.prompt,
                        mark_important=mark_important,
                        plan_text_fn=plan_text_fn,
                    )
                    for doc in batch
                )
            )
        except Exception:
            logger.error("lecture_plan_batch_failed files=%s", [d.file_name for d in batch], exc_info=True)
            raise
        results.extend(batch_results)

    return assemble_session(results, lecture_config)
