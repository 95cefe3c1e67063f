from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from lecture_live.api.deps import get_live_registry
from lecture_live.schemas.live import (
    AudioChunkPayload,
    MutePayload,
    SelectSlidePayload,
    SendMessagePayload,
    SessionControlPayload,
)
from lecture_live.services.live_session_service import LiveLectureSession, LiveSessionRegistry
from lecture_live.services.live_transport import LiveSessionError
from lecture_live.services.session_store import SessionNotFoundError

router = APIRouter()
logger = logging.getLogger(__name__)


async def _safe_send_json(websocket: WebSocket, lock: asyncio.Lock, payload: Dict[str, Any]) -> None:
    async with lock:
        await websocket.send_json(payload)


def _extract_payload(message_obj: Dict[str, Any]) -> Dict[str, Any]:
    payload = message_obj.get("payload")
    if isinstance(payload, dict):
        return payload
    return message_obj


def _error(code: str, message: str) -> Dict[str, Any]:
    return {"event": "error", "payload": {"code": code, "message": message}}


async def _handle_event(
    registry: LiveSessionRegistry,
    live: LiveLectureSession,
    event_name: str,
    payload: Dict[str, Any],
) -> Dict[str, Any] | None:
    """Apply one client event. Returns the ack frame, or None for an unsupported event."""
    if event_name == "session_control":
        data = SessionControlPayload.model_validate(payload)
        if data.action == "end":
            await registry.close(live.session_id)
        else:
            mode = "disconnected" if data.action == "reconnect" else data.mode
            await live.start(mode)
        return {"event": "session_control_received", "payload": live.snapshot().model_dump()}

    if event_name == "send_message":
        data = SendMessagePayload.model_validate(payload)
        sent = await live.send_message(data.text, data.attachments)
        return {"event": "send_message_ack", "payload": {"sent": sent}}

    if event_name == "select_slide":
        data = SelectSlidePayload.model_validate(payload)
        live.select_slide(data.index)
        return {"event": "select_slide_ack", "payload": {"index": data.index}}

    if event_name == "set_muted":
        data = MutePayload.model_validate(payload)
        await live.set_muted(data.muted)
        return {"event": "set_muted_ack", "payload": {"muted": live.muted}}

    if event_name == "audio_chunk":
        data = AudioChunkPayload.model_validate(payload)
        accepted = await live.send_audio_chunk(data.payload, data.mime_type)
        return {"event": "audio_chunk_ack", "payload": {"accepted": accepted}}

    if event_name == "snapshot":
        return {"event": "snapshot", "payload": live.snapshot().model_dump()}

    return None


@router.websocket("/live/{session_id}")
async def live_lecture(
    websocket: WebSocket,
    session_id: str,
    registry: LiveSessionRegistry = Depends(get_live_registry),
) -> None:
    await websocket.accept()
    send_lock = asyncio.Lock()
    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def _push(event: str, payload: Dict[str, Any]) -> None:
        outbox.put_nowait({"event": event, "session_id": session_id, "payload": payload})

    try:
        live = await registry.open(session_id, listener=_push)
    except SessionNotFoundError:
        await websocket.send_json(_error("session_not_found", f"Session not found: {session_id}"))
        await websocket.close(code=4404)
        return

    await websocket.send_json(
        {
            "event": "connected",
            "channel": "live",
            "session_id": session_id,
            "payload": live.snapshot().model_dump(),
        }
    )

    async def _forward_session_events() -> None:
        try:
            while True:
                event = await outbox.get()
                await _safe_send_json(websocket, send_lock, event)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("live_forward_failed session_id=%s", session_id)

    forward_task = asyncio.create_task(_forward_session_events())

    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                # Raw binary frames are PCM microphone audio.
                chunk = message.get("bytes") or b""
                if chunk:
                    await live.send_audio_bytes(chunk)
                continue

            text_payload = message.get("text")
            if text_payload is None:
                continue

            try:
                obj = json.loads(text_payload)
                if not isinstance(obj, dict):
                    raise ValueError("message must be a JSON object")
            except Exception as exc:
                await _safe_send_json(websocket, send_lock, _error("invalid_json", str(exc)))
                continue

            event_name = str(obj.get("event") or "").strip()
            payload = _extract_payload(obj)
            try:
                ack = await _handle_event(registry, live, event_name, payload)
                if ack is None:
                    await _safe_send_json(
                        websocket,
                        send_lock,
                        _error("unsupported_event", f"Unsupported event: {event_name or '<empty>'}"),
                    )
                    continue
                ack["session_id"] = session_id
                await _safe_send_json(websocket, send_lock, ack)
            except (ValidationError, ValueError) as exc:
                await _safe_send_json(websocket, send_lock, _error("validation_error", str(exc)))
            except LiveSessionError as exc:
                await _safe_send_json(websocket, send_lock, _error("live_session_error", str(exc)))
            except Exception as exc:
                logger.exception("live_event_failed session_id=%s event=%s", session_id, event_name)
                await _safe_send_json(websocket, send_lock, _error("server_error", str(exc)))
    except WebSocketDisconnect:
        pass
    finally:
        forward_task.cancel()
        # Closing the page ends the live connection; the final save runs in end().
        await registry.close(session_id)
        try:
            await websocket.close()
        except Exception:
            pass
