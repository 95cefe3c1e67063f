import pytest

from lecture_live.schemas.lecture import LectureConfig, ParsedSlide, TokenUsage
from lecture_live.services.lecture_plan_service import (
    MISSING_SUMMARY_TEXT,
    PLAN_TAG,
    PlanningDocument,
    build_plan_prompt,
    create_session_from_documents,
    generate_session_id,
    parse_lecture_plan_response,
)


def _config(prompt=None) -> LectureConfig:
    return LectureConfig(language="English", voice="Puck", model="m", prompt=prompt)


def _doc(name: str, pages: int) -> PlanningDocument:
    return PlanningDocument(
        file_name=name,
        data=name.encode(),
        slides=[
            ParsedSlide(page_number=i + 1, image_data_url=f"data:image/jpeg;base64,{name}{i}", text_content=f"p{i + 1}")
            for i in range(pages)
        ],
    )


def test_parse_plan_with_inline_and_following_line_content() -> None:
    plan = parse_lecture_plan_response(
        """general info: A short course on
probability theory.

Slide 1: Title slide.
Slide 2 *:
Bayes theorem, the key idea.
- slide 3: Worked example
"""
    )

    assert plan.general_info == "A short course on probability theory."
    assert plan.slide_summaries == {
        1: "Title slide.",
        2: "Bayes theorem, the key idea.",
        3: "Worked example",
    }
    assert plan.important_slides == {2}


def test_parse_plan_tolerates_garbage() -> None:
    plan = parse_lecture_plan_response("The model said something unexpected.")
    assert plan.general_info == ""
    assert plan.slide_summaries == {}


def test_plan_prompt_variants() -> None:
    plain = build_plan_prompt()
    custom = build_plan_prompt("Focus on proofs", mark_important=True)

    assert "Focus on proofs" not in plain
    assert "Focus on proofs" in custom
    assert len(custom) > len(plain)


def test_session_id_is_sanitized_and_bounded() -> None:
    session_id = generate_session_id(["My Deck (v2).pdf", "other.pdf"])
    name, _, stamp = session_id.rpartition("-")

    assert name == "My-Deck-v2.pdf-other.pdf"
    assert stamp.isdigit()
    assert len(generate_session_id("x" * 200).rpartition("-")[0]) == 50


@pytest.mark.asyncio
async def test_multiple_documents_are_renumbered_and_combined() -> None:
    async def fake_plan(data: bytes, prompt: str):
        if data == b"a.pdf":
            text = "general info: Deck A\nSlide 1: A one\nSlide 2 *: A two"
        else:
            text = "general info: Deck B\nSlide 1: B one"
        return text, TokenUsage(prompt_tokens=100, completion_tokens=10, total_tokens=110), "gemini-2.5-pro"

    session = await create_session_from_documents(
        [_doc("a.pdf", 2), _doc("b.pdf", 2)],
        _config(),
        mark_important=True,
        batch_size=1,
        plan_text_fn=fake_plan,
    )

    assert [s.page_number for s in session.slides] == [1, 2, 3, 4]
    assert [s.summary for s in session.slides] == ["A one", "A two", "B one", MISSING_SUMMARY_TEXT]
    assert [s.is_important for s in session.slides] == [False, True, False, False]
    assert [s.origin_file for s in session.slides] == ["a.pdf", "a.pdf", "b.pdf", "b.pdf"]
    assert session.file_name == "a.pdf & b.pdf"
    assert session.general_info.startswith("Combined lecture from 2 files: a.pdf, b.pdf.")
    assert len(session.usage_reports) == 2
    assert {r.tag for r in session.usage_reports} == {PLAN_TAG}
    assert session.transcript == []
    assert session.current_slide_index == 0


@pytest.mark.asyncio
async def test_single_document_keeps_plain_general_info() -> None:
    async def fake_plan(data: bytes, prompt: str):
        assert "Explain slowly" in prompt
        return "general info: " + "x" * 1500, TokenUsage(), "gemini-2.5-pro"

    session = await create_session_from_documents([_doc("solo.pdf", 1)], _config("Explain slowly"), plan_text_fn=fake_plan)

    assert session.general_info == "x" * 1500
    assert session.file_names == ["solo.pdf"]


@pytest.mark.asyncio
async def test_one_failing_document_aborts_the_upload() -> None:
    async def fake_plan(data: bytes, prompt: str):
        if data == b"bad.pdf":
            raise RuntimeError("quota exceeded")
        return "general info: ok", TokenUsage(), "gemini-2.5-pro"

    with pytest.raises(RuntimeError, match="quota exceeded"):
        await create_session_from_documents(
            [_doc("good.pdf", 1), _doc("bad.pdf", 1)],
            _config(),
            plan_text_fn=fake_plan,
        )
