from typing import List

from lecture_live.schemas.lecture import ChatAttachment, LectureConfig, LectureSession, TranscriptEntry
from lecture_live.services.transcript_reconciler import (
    TranscriptReconciler,
    render_transcript_text,
    transcript_file_name,
)


def _reconciler(entries: List[TranscriptEntry] | None = None, slide_index: int = 0) -> TranscriptReconciler:
    return TranscriptReconciler(entries if entries is not None else [], lambda: slide_index)


def test_streaming_full_transcripts_collapse_into_one_entry() -> None:
    rec = _reconciler()

    rec.append_or_update("Hello", "ai")
    rec.append_or_update("Hello world", "ai", update_last_entry=True)
    rec.append_or_update("Hello world", "ai", update_last_entry=True)

    assert len(rec.entries) == 1
    assert rec.entries[0].text == "Hello world"
    assert rec.assistant_turn_open is True


def test_duplicate_suffix_chunk_does_not_grow_text() -> None:
    rec = _reconciler()
    rec.append_or_update("The derivative of x", "ai")
    rec.append_or_update(" squared", "ai", update_last_entry=True)
    before = rec.entries[0].text

    rec.append_or_update(" squared", "ai", update_last_entry=True)
    rec.append_or_update("squared", "ai", update_last_entry=True)

    assert rec.entries[0].text == before == "The derivative of x squared"


def test_stale_prefix_chunk_is_ignored_and_delta_is_appended() -> None:
    rec = _reconciler()
    rec.append_or_update("Gradient descent works", "ai")

    rec.append_or_update("Gradient", "ai", update_last_entry=True)
    assert rec.entries[0].text == "Gradient descent works"

    rec.append_or_update(" step by step.", "ai", update_last_entry=True)
    assert rec.entries[0].text == "Gradient descent works step by step."


def test_blank_text_is_a_no_op() -> None:
    rec = _reconciler()
    assert rec.append_or_update("   ", "user") is None
    assert rec.append_or_update("", "ai", update_last_entry=True) is None
    assert rec.entries == []
    assert rec.assistant_turn_open is False


def test_speakers_are_never_merged() -> None:
    rec = _reconciler()
    rec.append_or_update("What is entropy?", "user")
    rec.append_or_update("Entropy measures", "ai", update_last_entry=True)

    assert [e.speaker for e in rec.entries] == ["user", "ai"]
    assert rec.entries[0].text == "What is entropy?"


def test_slide_number_defaults_and_is_backfilled() -> None:
    entries = [TranscriptEntry(speaker="ai", text="Intro")]
    rec = _reconciler(entries, slide_index=2)

    rec.append_or_update("Intro and more", "ai", update_last_entry=True)
    assert entries[0].slide_number == 3

    entry = rec.append_or_update("Question", "user")
    assert entry.slide_number == 3

    explicit = rec.append_or_update("Other", "ai", slide_number=9)
    assert explicit.slide_number == 9


def test_user_entry_keeps_attachments_and_does_not_open_assistant_turn() -> None:
    rec = _reconciler()
    attachment = ChatAttachment(id="a1", type="image", data="data:image/png;base64,AAAA")

    entry = rec.append_or_update("look at this", "user", attachments=[attachment])

    assert entry.attachments == [attachment]
    assert rec.assistant_turn_open is False


def test_set_last_entry_cost_targets_latest_entry_of_speaker() -> None:
    rec = _reconciler()
    rec.append_or_update("first answer", "ai")
    rec.append_or_update("a question", "user")

    stamped = rec.set_last_entry_cost(0.0123, "ai")

    assert stamped is rec.entries[0]
    assert rec.entries[0].estimated_cost == 0.0123
    assert rec.entries[1].estimated_cost is None
    assert _reconciler().set_last_entry_cost(1.0, "ai") is None


def test_render_transcript_text_and_file_name() -> None:
    session = LectureSession(
        id="deck-1",
        file_name="Intro to ML.pdf",
        created_at=1,
        general_info="Basics of supervised learning.",
        lecture_config=LectureConfig(language="English", voice="Puck", model="m"),
        transcript=[
            TranscriptEntry(speaker="ai", text="Welcome."),
            TranscriptEntry(speaker="user", text="Thanks!"),
        ],
    )

    text = render_transcript_text(session)

    assert text.startswith("AI Lecture Transcript\n")
    assert "Presentation Overview:\nBasics of supervised learning." in text
    assert text.endswith("AI Lecturer: Welcome.\n\nUser: Thanks!")
    assert transcript_file_name(session) == "Intro to ML-transcript.txt"
