"""
Transcript Reconciler

Merges streaming transcription chunks (user and assistant) into a linear transcript.
Entries are never reordered; only the last entry is updated in place.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from lecture_live.schemas.lecture import ChatAttachment, LectureSession, Speaker, TranscriptEntry

logger = logging.getLogger(__name__)


class TranscriptReconciler:
    def __init__(
        self,
        entries: List[TranscriptEntry],
        current_slide_index: Callable[[], int],
    ) -> None:
        self.entries = entries
        self._current_slide_index = current_slide_index
        self.assistant_turn_open = False

    def append_or_update(
        self,
        text: str,
        speaker: Speaker,
        *,
        slide_number: Optional[int] = None,
        attachments: Optional[List[ChatAttachment]] = None,
        update_last_entry: bool = False,
        estimated_cost: Optional[float] = None,
    ) -> Optional[TranscriptEntry]:
        """
        Apply one chunk to the transcript.

        Returns the created or updated entry, or None when the chunk was blank.
        """
        trimmed = (text or "").strip()
        if not trimmed:
            return None

        if slide_number is None:
            slide_number = self._current_slide_index() + 1

        last = self.entries[-1] if self.entries else None
        if update_last_entry and last is not None and last.speaker == speaker:
            previous = last.text or ""
            if previous.endswith(trimmed):
                # late duplicate chunk
                pass
            elif text.startswith(previous):
                last.text = text
            elif previous.startswith(text):
                # stale chunk, already covered
                pass
            else:
                last.text = previous + text
            if not last.slide_number:
                last.slide_number = slide_number
            return last

        entry = TranscriptEntry(
            speaker=speaker,
            text=text,
            slide_number=slide_number,
            attachments=attachments,
            estimated_cost=estimated_cost,
        )
        self.entries.append(entry)
        if speaker == "ai":
            self.assistant_turn_open = True
        return entry

    def close_assistant_turn(self) -> None:
        self.assistant_turn_open = False

    def set_last_entry_cost(self, cost: float, speaker: Speaker) -> Optional[TranscriptEntry]:
        for entry in reversed(self.entries):
            if entry.speaker == speaker:
                entry.estimated_cost = cost
                return entry
        return None


def render_transcript_text(session: LectureSession) -> str:
    """Plain-text transcript download."""
    header = "AI Lecture Transcript\n=====================\n\n"
    overview = (
        f"Presentation Overview:\n{session.general_info}\n\n"
        "---------------------\nConversation History:\n---------------------\n\n"
    )
    conversation = "\n\n".join(
        f"{'User' if entry.speaker == 'user' else 'AI Lecturer'}: {entry.text}"
        for entry in session.transcript
    )
    return header + overview + conversation


def transcript_file_name(session: LectureSession) -> str:
    base = session.file_name
    if base.lower().endswith(".pdf"):
        base = base[:-4]
    return f"{base}-transcript.txt"
