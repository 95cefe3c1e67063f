"""
Live lecture session actor.

One `LiveLectureSession` owns one lecture aggregate. Transport events land on a single
inbound queue and are applied strictly in arrival order; user actions (send message,
select slide, mute) run on the same event loop, so no mutation interleaves with another.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from lecture_live.core.config import Settings, get_settings
from lecture_live.llm import gemini_client
from lecture_live.llm.gemini_client import MarkdownFixError
from lecture_live.llm.pricing import calculate_estimated_cost
from lecture_live.llm.prompts.lecture_prompts import (
    ACTIVE_SLIDE_TEXT,
    RESUME_CONTEXT_TEXT,
    SLIDE_SUMMARY_TEXT,
    SLIDE_TEXT_CONTENT,
)
from lecture_live.llm.tools.canvas_tool import CANVAS_TOOL_NAME, parse_canvas_args
from lecture_live.schemas.lecture import (
    CanvasBlock,
    ChatAttachment,
    LectureSession,
    LectureSessionState,
    TokenUsage,
    UsageReport,
)
from lecture_live.schemas.live import LiveSessionSnapshot
from lecture_live.services import live_transport
from lecture_live.services.image_processing import optimize_image_data_url
from lecture_live.services.live_transport import GenaiLiveTransport, LiveEvent, LiveSessionError
from lecture_live.services.notifications import NotificationCenter, Toast
from lecture_live.services.scheduling import DebouncedTask
from lecture_live.services.session_config import SessionConfigParams, build_session_config
from lecture_live.services.session_persistence import SessionPersistence
from lecture_live.services.session_store import SessionNotFoundError, SessionStore
from lecture_live.services.transcript_reconciler import TranscriptReconciler
from lecture_live.services.turn_builder import ImageOptimizer, TurnBuilder, send_turn
from lecture_live.services.usage_tracker import (
    CALL_TYPE_MARKDOWN_FIX,
    DEFAULT_LIVE_TAG,
    UsageTracker,
    now_ms,
)

logger = logging.getLogger(__name__)

START_MODES = ("new", "saved", "disconnected")

Listener = Callable[[str, Dict[str, Any]], None]
MarkdownFixer = Callable[[str], Awaitable[Any]]


class LiveTransport(Protocol):
    async def connect(self, model: str, config: Dict[str, Any], on_event: Callable[[LiveEvent], None]) -> Any: ...


class LiveLectureSession:
    def __init__(
        self,
        session: LectureSession,
        *,
        store: SessionStore,
        transport: Optional[LiveTransport] = None,
        listener: Optional[Listener] = None,
        settings: Optional[Settings] = None,
        markdown_fixer: Optional[MarkdownFixer] = None,
        image_optimizer: ImageOptimizer = optimize_image_data_url,
    ) -> None:
        self.settings = settings or get_settings()
        self.session = session
        self.state = LectureSessionState.IDLE
        self.muted = False
        self.resumption_handle: Optional[str] = None
        self.last_error: Optional[str] = None

        self._listener = listener
        self._transport = transport or GenaiLiveTransport()
        self._connection: Any = None
        self._markdown_fixer = markdown_fixer or gemini_client.fix_markdown_content
        self._last_usage: Any = None
        self._user_turn_open = False
        self._ending = False
        self._pending_slide_index: Optional[int] = None

        config = session.lecture_config
        self.tracker = UsageTracker(session.usage_reports)
        self.reconciler = TranscriptReconciler(session.transcript, lambda: self.session.current_slide_index)
        self.turn_builder = TurnBuilder(
            image_settings=config.image_optimization,
            force_text_only=config.force_text_only,
            image_optimizer=image_optimizer,
        )
        self.notifications = NotificationCenter(
            ttl_seconds=max(0, int(self.settings.notification_ttl_ms)) / 1000.0,
            on_change=self._on_toasts_changed,
        )
        self.persistence = SessionPersistence(
            lambda: self.session,
            store,
            debounce_seconds=max(0, int(self.settings.session_save_debounce_ms)) / 1000.0,
            jpeg_quality=self.settings.legacy_image_jpeg_quality,
            on_migrated=self._apply_migrated_images,
        )
        self._slide_debounce = DebouncedTask(
            max(0, int(self.settings.slide_select_debounce_ms)) / 1000.0,
            self._apply_slide_selection,
            name="slide_select",
        )
        self._auto_mute = DebouncedTask(
            max(0, int(self.settings.auto_mute_delay_ms)) / 1000.0,
            self._auto_mute_fire,
            name="auto_mute",
        )

        self._inbox: "asyncio.Queue[LiveEvent]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ helpers

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def model_id(self) -> str:
        return self.session.lecture_config.model

    @property
    def is_connected(self) -> bool:
        return bool(self._connection is not None and self._connection.is_open)

    @property
    def estimated_cost(self) -> float:
        return self.tracker.estimated_cost

    def attach_listener(self, listener: Optional[Listener]) -> None:
        self._listener = listener

    def usage_tag(self) -> str:
        return f"{DEFAULT_LIVE_TAG}:{self.session.current_slide_index + 1}"

    def snapshot(self) -> LiveSessionSnapshot:
        return LiveSessionSnapshot(
            session_id=self.session.id,
            state=self.state.value,
            muted=self.muted,
            current_slide_index=self.session.current_slide_index,
            transcript_entries=len(self.session.transcript),
            usage_reports=len(self.session.usage_reports),
            estimated_cost=self.tracker.estimated_cost,
            has_resumption_handle=bool(self.resumption_handle),
            assistant_turn_open=self.reconciler.assistant_turn_open,
            pending_save=self.persistence.pending,
            last_error=self.last_error,
        )

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event, payload)
        except Exception:
            logger.debug("live_session_listener_failed session_id=%s event=%s", self.session.id, event, exc_info=True)

    def _set_state(self, state: LectureSessionState) -> None:
        if self.state == state:
            return
        logger.info("live_session_state session_id=%s %s->%s", self.session.id, self.state.value, state.value)
        self.state = state
        self._emit("state_changed", {"state": state.value, "muted": self.muted, "error": self.last_error})

    def _changed(self) -> None:
        if self._ending:
            return
        self.persistence.notify_changed()

    def _emit_transcript(self) -> None:
        if not self.session.transcript:
            return
        index = len(self.session.transcript) - 1
        self._emit(
            "transcript_updated",
            {"index": index, "entry": self.session.transcript[index].model_dump(mode="json")},
        )

    def _emit_usage(self) -> None:
        self._emit(
            "usage_updated",
            {"estimated_cost": self.tracker.estimated_cost, "reports": len(self.session.usage_reports)},
        )

    def _on_toasts_changed(self, toasts: List[Toast]) -> None:
        self._emit("notification", {"toasts": [t.to_dict() for t in toasts]})

    def _apply_migrated_images(self, converted: Dict[int, str]) -> None:
        for slide in self.session.slides:
            data_url = converted.get(slide.page_number)
            if data_url and slide.image_data_url.startswith("data:image/png"):
                slide.image_data_url = data_url

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name=f"live_session_{self.session.id}")

    # ------------------------------------------------------------------ lifecycle

    async def start(self, mode: str = "new") -> None:
        """Open (or reopen) the streaming session. Raises LiveSessionError on failure."""
        if mode not in START_MODES:
            raise ValueError(f"unknown start mode: {mode}")
        if self.state == LectureSessionState.ENDED:
            raise LiveSessionError("session has ended")

        await self._close_connection()
        self._ensure_consumer()
        self.last_error = None
        self._set_state(LectureSessionState.CONNECTING)

        config = self.session.lecture_config
        handle = self.resumption_handle if mode != "new" else None
        request = build_session_config(
            SessionConfigParams(
                model=config.model,
                selected_voice=config.voice,
                selected_language=config.language,
                general_info=self.session.general_info,
                user_custom_prompt=config.prompt,
                resumption_handle=handle,
            )
        )
        try:
            self._connection = await self._transport.connect(request["model"], request["config"], self._enqueue)
        except Exception as exc:
            self.last_error = str(exc)
            logger.error("live_session_start_failed session_id=%s mode=%s err=%s", self.session.id, mode, exc)
            self._set_state(LectureSessionState.ERROR)
            self.notifications.show(f"Could not start the live session: {exc}", "error")
            if isinstance(exc, LiveSessionError):
                raise
            raise LiveSessionError(str(exc)) from exc

        self.tracker.reset_baseline()
        self._last_usage = None
        self._user_turn_open = False
        self.reconciler.close_assistant_turn()
        self._set_state(LectureSessionState.READY)
        logger.info(
            "live_session_started session_id=%s mode=%s resumed=%s",
            self.session.id,
            mode,
            bool(handle),
        )

        if mode == "new":
            await self.request_explanation(self.session.current_slide_index)
        elif not handle:
            await self._send_resume_context()

    async def end(self) -> None:
        """Final save, then close the transport. Independent of the debounce window."""
        self._ending = True
        self._slide_debounce.cancel()
        self._auto_mute.cancel()
        await self._close_connection()
        # Queued events are dropped once ending; the final save is the last write.
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None
        self._set_state(LectureSessionState.ENDED)
        await self.persistence.flush()
        self.persistence.cancel()
        self.notifications.clear()

    async def flush(self) -> bool:
        return await self.persistence.flush()

    async def drain(self) -> None:
        """Wait until every queued transport event has been applied."""
        await self._inbox.join()

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception:
            logger.debug("live_connection_close_failed session_id=%s", self.session.id, exc_info=True)

    # ------------------------------------------------------------------ outgoing

    async def _send(self, **kwargs: Any) -> bool:
        turn = await self.turn_builder.build(**kwargs)
        return await send_turn(self._connection, turn)

    def _slide_text(self, index: int) -> List[str]:
        slide = self.session.slides[index]
        parts = [ACTIVE_SLIDE_TEXT.format(page_number=slide.page_number)]
        if slide.summary:
            parts.append(SLIDE_SUMMARY_TEXT.format(page_number=slide.page_number, summary=slide.summary))
        if slide.text_content and (self.turn_builder.force_text_only or not slide.has_images):
            parts.append(SLIDE_TEXT_CONTENT.format(page_number=slide.page_number, text=slide.text_content))
        return parts

    async def request_explanation(self, index: Optional[int] = None) -> bool:
        """Ask the assistant to explain a slide (image policy + summary + active marker)."""
        if index is None:
            index = self.session.current_slide_index
        if not 0 <= index < len(self.session.slides):
            logger.warning("explain_slide_out_of_range session_id=%s index=%s", self.session.id, index)
            return False
        return await self._send(slide=self.session.slides[index], text=self._slide_text(index))

    async def _send_resume_context(self) -> bool:
        slide = self.session.current_slide()
        if slide is None:
            return False
        return await self._send(slide=slide, text=RESUME_CONTEXT_TEXT.format(page_number=slide.page_number))

    async def send_message(self, text: str, attachments: Optional[List[ChatAttachment]] = None) -> bool:
        attachments = list(attachments or [])
        trimmed = (text or "").strip()
        if not trimmed and not attachments:
            return False

        entry = self.reconciler.append_or_update(text, "user", attachments=attachments or None)
        self._user_turn_open = False
        if entry is not None:
            self._emit_transcript()
            self._changed()
        return await self._send(text=text if trimmed else None, attachments=attachments)

    def select_slide(self, index: int) -> None:
        """Coalesce rapid navigation; only the last selection in the window is explained."""
        if not 0 <= index < len(self.session.slides):
            raise ValueError(f"slide index out of range: {index}")
        self._pending_slide_index = index
        self._slide_debounce.schedule()

    async def _apply_slide_selection(self) -> None:
        index, self._pending_slide_index = self._pending_slide_index, None
        if index is None or index == self.session.current_slide_index:
            return
        self.session.current_slide_index = index
        self._emit("slide_changed", {"index": index, "page_number": self.session.slides[index].page_number})
        self._changed()
        await self.request_explanation(index)

    async def next_slide(self) -> None:
        if self.session.current_slide_index < len(self.session.slides) - 1:
            self.select_slide(self.session.current_slide_index + 1)

    async def previous_slide(self) -> None:
        if self.session.current_slide_index > 0:
            self.select_slide(self.session.current_slide_index - 1)

    async def replay(self) -> bool:
        return await self.request_explanation(self.session.current_slide_index)

    async def set_muted(self, muted: bool) -> None:
        self.muted = bool(muted)
        if not self.muted:
            self._auto_mute.cancel()
        self._emit("state_changed", {"state": self.state.value, "muted": self.muted, "error": self.last_error})
        if not self.muted and self.state == LectureSessionState.DISCONNECTED:
            logger.info("live_session_auto_reconnect session_id=%s", self.session.id)
            try:
                await self.start("disconnected")
            except LiveSessionError:
                pass

    async def send_audio_chunk(self, payload: str, mime_type: str = "audio/pcm;rate=16000") -> bool:
        if self.muted or not self.is_connected:
            return False
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            self.notifications.show("Could not decode microphone audio.", "error")
            return False
        return await self.send_audio_bytes(data, mime_type)

    async def send_audio_bytes(self, data: bytes, mime_type: str = "audio/pcm;rate=16000") -> bool:
        """Forward microphone audio unless muted or disconnected."""
        if not data or self.muted or not self.is_connected:
            return False
        try:
            await self._connection.send_audio(data, mime_type)
        except Exception:
            logger.debug("live_audio_send_failed session_id=%s", self.session.id, exc_info=True)
            return False
        return True

    async def _auto_mute_fire(self) -> None:
        last = self.session.transcript[-1] if self.session.transcript else None
        if last is not None and last.speaker == "user":
            return
        if not self.muted:
            logger.debug("live_session_auto_muted session_id=%s", self.session.id)
            await self.set_muted(True)

    # ------------------------------------------------------------------ inbound

    def _enqueue(self, event: LiveEvent) -> None:
        self._inbox.put_nowait(event)

    async def _consume(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("live_event_failed session_id=%s event=%s", self.session.id, event.type)
            finally:
                self._inbox.task_done()

    async def handle_event(self, event: LiveEvent) -> None:
        data = event.data
        if event.type == live_transport.EVENT_INPUT_TRANSCRIPTION:
            self._auto_mute.cancel()
            entry = self.reconciler.append_or_update(
                data.get("text") or "",
                "user",
                update_last_entry=self._user_turn_open,
            )
            if entry is not None:
                self._user_turn_open = True
                self._set_state(LectureSessionState.LISTENING)
                self._emit_transcript()
                self._changed()
        elif event.type == live_transport.EVENT_OUTPUT_TRANSCRIPTION:
            was_open = self.reconciler.assistant_turn_open
            entry = self.reconciler.append_or_update(
                data.get("text") or "",
                "ai",
                update_last_entry=was_open,
            )
            if entry is not None:
                self._user_turn_open = False
                if not was_open:
                    self._auto_mute.schedule()
                self._set_state(LectureSessionState.LECTURING)
                self._emit_transcript()
                self._changed()
        elif event.type == live_transport.EVENT_AUDIO:
            self._emit("audio", {"data": data.get("data"), "mime_type": data.get("mime_type")})
        elif event.type == live_transport.EVENT_USAGE:
            self._last_usage = data.get("usage")
            self.tracker.record_turn_usage(self.model_id, self._last_usage, is_final=False, tag=self.usage_tag())
            self._emit_usage()
            self._changed()
        elif event.type == live_transport.EVENT_TURN_COMPLETE:
            self._finalize_turn()
        elif event.type == live_transport.EVENT_INTERRUPTED:
            self.reconciler.close_assistant_turn()
            self._emit("interrupted", {})
        elif event.type == live_transport.EVENT_TOOL_CALL:
            await self._handle_tool_calls(data.get("function_calls") or [])
        elif event.type == live_transport.EVENT_RESUMPTION_UPDATE:
            self.resumption_handle = data.get("handle") or self.resumption_handle
        elif event.type == live_transport.EVENT_GO_AWAY:
            logger.info("live_session_go_away session_id=%s time_left=%s", self.session.id, data.get("time_left"))
            await self._close_connection()
            self._set_state(LectureSessionState.DISCONNECTED)
            try:
                await self.start("disconnected")
            except LiveSessionError:
                pass
        elif event.type == live_transport.EVENT_CLOSED:
            if self._ending or self.state == LectureSessionState.ENDED:
                return
            await self._close_connection()
            self.reconciler.close_assistant_turn()
            self._set_state(LectureSessionState.DISCONNECTED)
            self.notifications.show("Live session disconnected. Unmute or reconnect to continue.", "error")
        elif event.type == live_transport.EVENT_ERROR:
            await self._close_connection()
            self.last_error = data.get("message") or "live session error"
            self.reconciler.close_assistant_turn()
            self._set_state(LectureSessionState.ERROR)
            self.notifications.show(self.last_error, "error")
        else:
            logger.debug("live_event_ignored session_id=%s event=%s", self.session.id, event.type)

    def _finalize_turn(self) -> None:
        if self._last_usage is not None:
            turn_usage = self.tracker.record_turn_usage(
                self.model_id,
                self._last_usage,
                is_final=True,
                tag=self.usage_tag(),
            )
            self._last_usage = None
            cost = calculate_estimated_cost(self.model_id, turn_usage)
            if self.reconciler.set_last_entry_cost(cost, "ai") is not None:
                self._emit_transcript()
            self._emit_usage()
        self.reconciler.close_assistant_turn()
        self._user_turn_open = False
        self._set_state(LectureSessionState.LISTENING)
        self._changed()

    async def _handle_tool_calls(self, calls: List[Dict[str, Any]]) -> None:
        responses = []
        for call in calls:
            name = call.get("name")
            if name == CANVAS_TOOL_NAME:
                response = await self._render_canvas(call.get("args") or {})
            else:
                logger.warning("live_tool_unknown session_id=%s name=%s", self.session.id, name)
                response = {"error": f"unknown tool: {name}"}
            responses.append({"id": call.get("id"), "name": name, "response": response})

        if not responses or not self.is_connected:
            return
        try:
            await self._connection.send_tool_response(responses)
        except Exception:
            logger.warning("live_tool_response_failed session_id=%s", self.session.id, exc_info=True)

    async def _render_canvas(self, args: Dict[str, Any]) -> Dict[str, Any]:
        blocks, slide_number = parse_canvas_args(args)
        if not blocks:
            return {"error": "no valid content blocks"}

        index = self.session.current_slide_index
        if slide_number is not None:
            if 1 <= slide_number <= len(self.session.slides):
                index = slide_number - 1
            else:
                logger.warning("canvas_slide_out_of_range session_id=%s slide=%s", self.session.id, slide_number)

        if self.settings.canvas_markdown_fix_enabled:
            blocks = [await self._fix_block(block) for block in blocks]

        slide = self.session.slides[index]
        slide.canvas_content = blocks
        self._emit(
            "canvas_updated",
            {"index": index, "page_number": slide.page_number, "blocks": [b.model_dump() for b in blocks]},
        )
        self._changed()
        return {"result": "ok", "slideNumber": slide.page_number, "blocks": len(blocks)}

    async def _fix_block(self, block: CanvasBlock) -> CanvasBlock:
        if block.type != "markdown":
            return block
        try:
            content, usage, model_id = await self._markdown_fixer(block.content)
        except MarkdownFixError as exc:
            logger.warning("canvas_markdown_fix_failed session_id=%s err=%s", self.session.id, exc)
            return block
        self.tracker.add_report(
            UsageReport(
                model_id=model_id,
                usage=usage if isinstance(usage, TokenUsage) else TokenUsage.model_validate(usage),
                timestamp=now_ms(),
                call_type=CALL_TYPE_MARKDOWN_FIX,
                tag=CALL_TYPE_MARKDOWN_FIX,
            )
        )
        self._emit_usage()
        return CanvasBlock(type="markdown", content=content or block.content)


class LiveSessionRegistry:
    """Tracks the one active live session per lecture id."""

    def __init__(
        self,
        store: SessionStore,
        transport_factory: Callable[[], LiveTransport] = GenaiLiveTransport,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self._transport_factory = transport_factory
        self._settings = settings
        self._sessions: Dict[str, LiveLectureSession] = {}
        self._lock = asyncio.Lock()

    def get(self, session_id: str) -> Optional[LiveLectureSession]:
        return self._sessions.get(session_id)

    @property
    def active_ids(self) -> List[str]:
        return list(self._sessions)

    async def open(self, session_id: str, listener: Optional[Listener] = None) -> LiveLectureSession:
        async with self._lock:
            live = self._sessions.get(session_id)
            if live is None:
                session = await asyncio.to_thread(self.store.get_session, session_id)
                if session is None:
                    raise SessionNotFoundError(session_id)
                live = LiveLectureSession(
                    session,
                    store=self.store,
                    transport=self._transport_factory(),
                    settings=self._settings,
                )
                self._sessions[session_id] = live
            live.attach_listener(listener)
            return live

    async def close(self, session_id: str) -> None:
        async with self._lock:
            live = self._sessions.pop(session_id, None)
        if live is not None:
            await live.end()

    async def shutdown(self) -> None:
        """Teardown hook: force a final save for every active session."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for live in sessions:
            try:
                await live.end()
            except Exception:
                logger.exception("live_session_shutdown_failed session_id=%s", live.session_id)
