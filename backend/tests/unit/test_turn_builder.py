import base64
import io
from typing import Any, Dict, List, Optional

import pytest

from lecture_live.schemas.lecture import CanvasBlock, ChatAttachment, ImageOptimizationSettings, Slide
from lecture_live.services.turn_builder import OutgoingTurn, TurnBuilder, send_turn


def _png_data_url(size=(1200, 600), color=(200, 30, 30)) -> str:
    from PIL import Image

    image = Image.new("RGB", size, color=color)
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class FakeConnection:
    def __init__(self, fail_structured: bool = False, fail_fallback: bool = False, is_open: bool = True) -> None:
        self.fail_structured = fail_structured
        self.fail_fallback = fail_fallback
        self.is_open = is_open
        self.client_content: List[Dict[str, Any]] = []
        self.realtime: List[Dict[str, Any]] = []

    async def send_client_content(self, turns, turn_complete=True) -> None:
        if self.fail_structured:
            raise RuntimeError("sendClientContent unavailable")
        self.client_content.append({"turns": turns, "turn_complete": turn_complete})

    async def send_realtime_input(
        self,
        *,
        media: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
        end_of_turn: bool = False,
    ) -> None:
        if self.fail_fallback:
            raise RuntimeError("socket closed")
        self.realtime.append({"media": media, "text": text, "end_of_turn": end_of_turn})


def _slide(**overrides) -> Slide:
    data = {
        "page_number": 4,
        "image_data_url": "data:image/jpeg;base64,SLIDEDATA",
        "text_content": "Bayes rule",
        "has_images": True,
        "summary": "Posterior from prior and likelihood.",
    }
    data.update(overrides)
    return Slide(**data)


@pytest.mark.asyncio
async def test_text_only_slide_sends_only_text() -> None:
    builder = TurnBuilder(image_settings=ImageOptimizationSettings(), force_text_only=False)

    turn = await builder.build(slide=_slide(has_images=False), text="explain")

    assert turn.parts == [{"text": "explain"}]


@pytest.mark.asyncio
async def test_force_text_only_omits_slide_image() -> None:
    builder = TurnBuilder(force_text_only=True)

    turn = await builder.build(slide=_slide(), text=["ACTIVE SLIDE: 4", "summary"])

    assert turn.parts == [{"text": "ACTIVE SLIDE: 4"}, {"text": "summary"}]


@pytest.mark.asyncio
async def test_slide_image_then_canvas_then_attachments_then_text() -> None:
    slide = _slide(canvas_content=[CanvasBlock(type="markdown", content="$P(A|B)$")])
    attachment = ChatAttachment(id="sel", type="selection", data="data:image/webp;base64,SELDATA", mime_type="image/webp")
    builder = TurnBuilder()

    turn = await builder.build(slide=slide, text="why?", attachments=[attachment])

    assert turn.parts[0] == {"inlineData": {"mimeType": "image/jpeg", "data": "SLIDEDATA"}}
    assert turn.parts[1]["text"].startswith("Context: Canvas Content: ")
    assert '"$P(A|B)$"' in turn.parts[1]["text"]
    assert turn.parts[2] == {"inlineData": {"mimeType": "image/webp", "data": "SELDATA"}}
    assert turn.parts[3] == {"text": "why?"}
    assert turn.to_request()["turns"][0]["role"] == "user"


@pytest.mark.asyncio
async def test_file_attachments_are_skipped() -> None:
    builder = TurnBuilder()
    attachment = ChatAttachment(id="f", type="file", data="plain text file", mime_type="text/plain")

    turn = await builder.build(attachments=[attachment])

    assert turn.is_empty


@pytest.mark.asyncio
async def test_optimizer_failure_falls_back_to_original_attachment() -> None:
    def broken_optimizer(data_url, settings):
        raise ValueError("cannot decode")

    builder = TurnBuilder(image_settings=ImageOptimizationSettings(), image_optimizer=broken_optimizer)
    attachment = ChatAttachment(id="img", type="image", data="data:image/png;base64,ORIGINAL")

    turn = await builder.build(attachments=[attachment])

    assert turn.parts == [{"inlineData": {"mimeType": "image/png", "data": "ORIGINAL"}}]


@pytest.mark.asyncio
async def test_slide_image_is_downscaled_by_default_optimizer() -> None:
    from PIL import Image

    builder = TurnBuilder(image_settings=ImageOptimizationSettings(max_dimension=300, grayscale=True))

    turn = await builder.build(slide=_slide(image_data_url=_png_data_url()))

    part = turn.parts[0]["inlineData"]
    assert part["mimeType"] == "image/png"
    image = Image.open(io.BytesIO(base64.b64decode(part["data"])))
    assert image.size == (300, 150)
    assert image.mode == "L"


@pytest.mark.asyncio
async def test_empty_turn_is_never_sent() -> None:
    conn = FakeConnection()
    turn = await TurnBuilder().build()

    assert turn.is_empty
    assert await send_turn(conn, turn) is False
    assert conn.client_content == []
    assert conn.realtime == []


@pytest.mark.asyncio
async def test_closed_session_aborts_silently() -> None:
    conn = FakeConnection(is_open=False)

    assert await send_turn(conn, OutgoingTurn(parts=[{"text": "hi"}])) is False
    assert await send_turn(None, OutgoingTurn(parts=[{"text": "hi"}])) is False
    assert conn.client_content == []


@pytest.mark.asyncio
async def test_structured_send_uses_single_user_turn() -> None:
    conn = FakeConnection()
    turn = OutgoingTurn(parts=[{"text": "a"}, {"text": "b"}], turn_complete=False)

    assert await send_turn(conn, turn) is True

    assert conn.client_content == [
        {"turns": [{"role": "user", "parts": [{"text": "a"}, {"text": "b"}]}], "turn_complete": False}
    ]


@pytest.mark.asyncio
async def test_fallback_streams_parts_then_end_of_turn() -> None:
    conn = FakeConnection(fail_structured=True)
    turn = OutgoingTurn(parts=[{"inlineData": {"mimeType": "image/png", "data": "IMG"}}, {"text": "explain"}])

    assert await send_turn(conn, turn) is False

    assert conn.realtime == [
        {"media": {"data": "IMG", "mimeType": "image/png"}, "text": None, "end_of_turn": False},
        {"media": None, "text": "explain", "end_of_turn": False},
        {"media": None, "text": None, "end_of_turn": True},
    ]


@pytest.mark.asyncio
async def test_fallback_without_turn_complete_skips_marker_and_swallows_errors() -> None:
    conn = FakeConnection(fail_structured=True)
    await send_turn(conn, OutgoingTurn(parts=[{"text": "x"}], turn_complete=False))
    assert conn.realtime == [{"media": None, "text": "x", "end_of_turn": False}]

    broken = FakeConnection(fail_structured=True, fail_fallback=True)
    assert await send_turn(broken, OutgoingTurn(parts=[{"text": "x"}])) is False


@pytest.mark.asyncio
async def test_attachment_without_data_url_must_be_base64() -> None:
    builder = TurnBuilder()
    remote = ChatAttachment(id="url", type="image", data="https://example.com/diagram.png")
    bare = ChatAttachment(id="raw", type="image", data="QUJD", mime_type="image/jpeg")

    turn = await builder.build(attachments=[remote, bare])

    assert turn.parts == [{"inlineData": {"mimeType": "image/jpeg", "data": "QUJD"}}]
