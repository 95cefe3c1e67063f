from __future__ import annotations

import asyncio
import base64
import binascii
from typing import Any, Dict, List
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from lecture_live.api.deps import get_live_registry, get_session_store
from lecture_live.llm.gemini_client import PlanGenerationError, get_llm_status
from lecture_live.llm.pricing import MODEL_REGISTRY, calculate_total_session_cost, format_cost, summarize_usage
from lecture_live.schemas.lecture import (
    CreateSessionRequest,
    LectureSession,
    LectureSessionMetadata,
    ModelInfo,
    PlanSessionRequest,
    UsageSummary,
)
from lecture_live.schemas.live import LiveSessionSnapshot
from lecture_live.services.image_processing import split_data_url
from lecture_live.services.lecture_plan_service import (
    PlanningDocument,
    create_session_from_documents,
    generate_session_id,
)
from lecture_live.services.live_session_service import LiveSessionRegistry
from lecture_live.services.session_store import SessionStore
from lecture_live.services.transcript_reconciler import render_transcript_text, transcript_file_name
from lecture_live.services.usage_tracker import now_ms

router = APIRouter()


async def _load(store: SessionStore, registry: LiveSessionRegistry, session_id: str) -> LectureSession:
    # An active live session holds the freshest state.
    live = registry.get(session_id)
    if live is not None:
        return live.session
    session = await asyncio.to_thread(store.get_session, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.get("/models", response_model=List[ModelInfo])
async def list_models() -> List[ModelInfo]:
    return [ModelInfo(**vars(m)) for m in MODEL_REGISTRY.values()]


@router.get("/llm/status")
async def llm_status() -> Dict[str, Any]:
    return get_llm_status()


@router.get("/sessions", response_model=List[LectureSessionMetadata])
async def list_sessions(store: SessionStore = Depends(get_session_store)) -> List[LectureSessionMetadata]:
    return await asyncio.to_thread(store.list_sessions_metadata)


@router.post("/sessions", response_model=LectureSession, status_code=201)
async def create_session(
    body: CreateSessionRequest,
    store: SessionStore = Depends(get_session_store),
) -> LectureSession:
    slides = [slide.model_copy(update={"page_number": idx}) for idx, slide in enumerate(body.slides, start=1)]
    session = LectureSession(
        id=generate_session_id(body.file_names),
        file_name=" & ".join(body.file_names),
        file_names=list(body.file_names),
        created_at=now_ms(),
        slides=slides,
        general_info=body.general_info,
        lecture_config=body.lecture_config,
        slide_groups=body.slide_groups,
        usage_reports=list(body.usage_reports),
    )
    return await asyncio.to_thread(store.add_session, session)


@router.post("/sessions/plan", response_model=LectureSession, status_code=201)
async def plan_session(
    body: PlanSessionRequest,
    store: SessionStore = Depends(get_session_store),
) -> LectureSession:
    documents: List[PlanningDocument] = []
    for doc in body.documents:
        _, payload = split_data_url(doc.data)
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(status_code=422, detail=f"{doc.file_name}: invalid base64 document") from exc
        documents.append(PlanningDocument(file_name=doc.file_name, data=raw, slides=doc.slides, mime_type=doc.mime_type))

    try:
        session = await create_session_from_documents(
            documents,
            body.lecture_config,
            mark_important=body.mark_important,
        )
    except PlanGenerationError as exc:
        raise HTTPException(
            status_code=502,
            detail=f"Failed to process PDFs. The AI may be busy or the files may be invalid. ({exc})",
        ) from exc
    return await asyncio.to_thread(store.add_session, session)


@router.get("/sessions/{session_id}", response_model=LectureSession)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    registry: LiveSessionRegistry = Depends(get_live_registry),
) -> LectureSession:
    return await _load(store, registry, session_id)


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    registry: LiveSessionRegistry = Depends(get_live_registry),
) -> Dict[str, Any]:
    await registry.close(session_id)
    deleted = await asyncio.to_thread(store.delete_session, session_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"deleted": True, "session_id": session_id}


@router.delete("/sessions")
async def clear_sessions(
    store: SessionStore = Depends(get_session_store),
    registry: LiveSessionRegistry = Depends(get_live_registry),
) -> Dict[str, Any]:
    await registry.shutdown()
    count = await asyncio.to_thread(store.clear_all_sessions)
    return {"deleted": count}


@router.get("/sessions/{session_id}/usage", response_model=UsageSummary)
async def get_usage(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    registry: LiveSessionRegistry = Depends(get_live_registry),
) -> UsageSummary:
    session = await _load(store, registry, session_id)
    total = calculate_total_session_cost(session.usage_reports)
    return UsageSummary(
        session_id=session.id,
        total_cost=total,
        formatted_total_cost=format_cost(total),
        total_tokens=sum(r.usage.total_tokens for r in session.usage_reports),
        by_tag=summarize_usage(session.usage_reports),
        reports=list(session.usage_reports),
    )


@router.get("/sessions/{session_id}/transcript", response_class=PlainTextResponse)
async def download_transcript(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    registry: LiveSessionRegistry = Depends(get_live_registry),
) -> PlainTextResponse:
    session = await _load(store, registry, session_id)
    if not session.transcript and not session.general_info:
        raise HTTPException(status_code=404, detail="Transcript is empty")
    return PlainTextResponse(
        render_transcript_text(session),
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(transcript_file_name(session))}"},
    )


@router.get("/sessions/{session_id}/live", response_model=LiveSessionSnapshot)
async def get_live_snapshot(
    session_id: str,
    registry: LiveSessionRegistry = Depends(get_live_registry),
) -> LiveSessionSnapshot:
    live = registry.get(session_id)
    if live is None:
        raise HTTPException(status_code=404, detail="No active live session")
    return live.snapshot()
