"""
Gemini Live transport adapter (google-genai).

Raw server messages are normalized into typed `LiveEvent`s and pushed onto the owning
session's inbound queue; the core never touches SDK objects directly.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from google import genai
from google.genai import types as genai_types

from lecture_live.llm.gemini_client import get_genai_client

logger = logging.getLogger(__name__)

EVENT_INPUT_TRANSCRIPTION = "input_transcription"
EVENT_OUTPUT_TRANSCRIPTION = "output_transcription"
EVENT_AUDIO = "audio"
EVENT_USAGE = "usage"
EVENT_TOOL_CALL = "tool_call"
EVENT_INTERRUPTED = "interrupted"
EVENT_TURN_COMPLETE = "turn_complete"
EVENT_RESUMPTION_UPDATE = "resumption_update"
EVENT_GO_AWAY = "go_away"
EVENT_CLOSED = "closed"
EVENT_ERROR = "error"


class LiveSessionError(RuntimeError):
    pass


@dataclass
class LiveEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[LiveEvent], None]


def _field(obj: Any, snake: str, camel: Optional[str] = None) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        value = obj.get(snake)
        if value is None and camel:
            value = obj.get(camel)
        return value
    return getattr(obj, snake, None)


def _b64(data: Any) -> str:
    if isinstance(data, (bytes, bytearray)):
        return base64.b64encode(bytes(data)).decode("ascii")
    return str(data or "")


def message_to_events(message: Any) -> List[LiveEvent]:
    """
    Normalize one server message into ordered events.

    Usage is emitted before turn_complete so the final snapshot is recorded before the
    turn is closed.
    """
    events: List[LiveEvent] = []

    server_content = _field(message, "server_content", "serverContent")
    if server_content is not None:
        input_tr = _field(server_content, "input_transcription", "inputTranscription")
        text = _field(input_tr, "text")
        if text:
            events.append(LiveEvent(EVENT_INPUT_TRANSCRIPTION, {"text": text}))

        output_tr = _field(server_content, "output_transcription", "outputTranscription")
        text = _field(output_tr, "text")
        if text:
            events.append(LiveEvent(EVENT_OUTPUT_TRANSCRIPTION, {"text": text}))

        model_turn = _field(server_content, "model_turn", "modelTurn")
        for part in _field(model_turn, "parts") or []:
            inline = _field(part, "inline_data", "inlineData")
            data = _field(inline, "data")
            if data:
                events.append(
                    LiveEvent(
                        EVENT_AUDIO,
                        {
                            "data": _b64(data),
                            "mime_type": _field(inline, "mime_type", "mimeType") or "audio/pcm;rate=24000",
                        },
                    )
                )

        if _field(server_content, "interrupted"):
            events.append(LiveEvent(EVENT_INTERRUPTED))

    tool_call = _field(message, "tool_call", "toolCall")
    calls = []
    for call in _field(tool_call, "function_calls", "functionCalls") or []:
        calls.append(
            {
                "id": _field(call, "id"),
                "name": _field(call, "name"),
                "args": dict(_field(call, "args") or {}),
            }
        )
    if calls:
        events.append(LiveEvent(EVENT_TOOL_CALL, {"function_calls": calls}))

    usage = _field(message, "usage_metadata", "usageMetadata")
    turn_complete = bool(server_content is not None and _field(server_content, "turn_complete", "turnComplete"))
    if usage is not None:
        events.append(LiveEvent(EVENT_USAGE, {"usage": usage}))
    if turn_complete:
        events.append(LiveEvent(EVENT_TURN_COMPLETE))

    resumption = _field(message, "session_resumption_update", "sessionResumptionUpdate")
    handle = _field(resumption, "new_handle", "newHandle")
    if handle:
        events.append(LiveEvent(EVENT_RESUMPTION_UPDATE, {"handle": handle}))

    go_away = _field(message, "go_away", "goAway")
    if go_away is not None:
        time_left = _field(go_away, "time_left", "timeLeft")
        events.append(LiveEvent(EVENT_GO_AWAY, {"time_left": str(time_left) if time_left else None}))

    return events


def _to_content(turn: Dict[str, Any]) -> genai_types.Content:
    parts: List[genai_types.Part] = []
    for part in turn.get("parts") or []:
        inline = part.get("inlineData")
        if inline:
            parts.append(
                genai_types.Part.from_bytes(data=base64.b64decode(inline["data"]), mime_type=inline["mimeType"])
            )
        elif isinstance(part.get("text"), str):
            parts.append(genai_types.Part(text=part["text"]))
    return genai_types.Content(role=turn.get("role") or "user", parts=parts)


class GenaiLiveConnection:
    """One open Live API session plus its receive pump."""

    def __init__(self, session: Any, exit_stack: AsyncExitStack, on_event: EventSink) -> None:
        self._session = session
        self._exit_stack = exit_stack
        self._on_event = on_event
        self._open = True
        self._closing = False
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._open

    def start(self) -> None:
        self._pump_task = asyncio.create_task(self._pump(), name="gemini_live_receive")

    async def _pump(self) -> None:
        failure: Optional[BaseException] = None
        try:
            while not self._closing:
                received = 0
                async for message in self._session.receive():
                    received += 1
                    for event in message_to_events(message):
                        self._on_event(event)
                # receive() ends after each turn; an empty pass means the stream is gone
                if received == 0:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = exc
            if not self._closing:
                logger.warning("gemini_live_receive_failed err=%s", exc, exc_info=True)
        finally:
            self._open = False
        if self._closing:
            return
        if failure is not None:
            self._on_event(LiveEvent(EVENT_ERROR, {"message": str(failure)}))
        else:
            self._on_event(LiveEvent(EVENT_CLOSED))

    async def send_client_content(self, turns: List[Dict[str, Any]], turn_complete: bool = True) -> None:
        await self._session.send_client_content(
            turns=[_to_content(turn) for turn in turns],
            turn_complete=turn_complete,
        )

    async def send_realtime_input(
        self,
        *,
        media: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
        end_of_turn: bool = False,
    ) -> None:
        if media is not None:
            await self._session.send_realtime_input(
                media=genai_types.Blob(data=base64.b64decode(media["data"]), mime_type=media["mimeType"])
            )
        if text is not None:
            await self._session.send_realtime_input(text=text)
        if end_of_turn:
            await self._session.send_realtime_input(audio_stream_end=True)

    async def send_audio(self, data: bytes, mime_type: str = "audio/pcm;rate=16000") -> None:
        await self._session.send_realtime_input(audio=genai_types.Blob(data=data, mime_type=mime_type))

    async def send_tool_response(self, responses: List[Dict[str, Any]]) -> None:
        await self._session.send_tool_response(
            function_responses=[
                genai_types.FunctionResponse(id=r.get("id"), name=r.get("name"), response=r.get("response") or {})
                for r in responses
            ]
        )

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._open = False
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.debug("gemini_live_pump_close_failed", exc_info=True)
        try:
            await self._exit_stack.aclose()
        except Exception:
            logger.debug("gemini_live_session_close_failed", exc_info=True)


class GenaiLiveTransport:
    def __init__(self, client: Optional[genai.Client] = None) -> None:
        self._client = client

    async def connect(self, model: str, config: Dict[str, Any], on_event: EventSink) -> GenaiLiveConnection:
        client = self._client or get_genai_client()
        if client is None:
            raise LiveSessionError("GEMINI_API_KEY is not configured")

        stack = AsyncExitStack()
        try:
            session = await stack.enter_async_context(
                client.aio.live.connect(model=model, config=genai_types.LiveConnectConfig.model_validate(config))
            )
        except Exception as exc:
            await stack.aclose()
            raise LiveSessionError(f"cannot open live session: {exc}") from exc

        connection = GenaiLiveConnection(session, stack, on_event)
        connection.start()
        logger.info("gemini_live_connected model=%s resumed=%s", model, "sessionResumption" in config)
        return connection
