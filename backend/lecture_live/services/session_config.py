"""
Session Config / Resumption Builder for the Gemini Live API.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from lecture_live.llm.prompts.lecture_prompts import LECTURER_SYSTEM_PROMPT, USER_PREFERENCES_LINE
from lecture_live.llm.tools.canvas_tool import CANVAS_FUNCTION_DECLARATION, CANVAS_TOOL_NAME


@dataclass(frozen=True)
class SessionConfigParams:
    model: str
    selected_voice: str
    selected_language: str
    general_info: str
    user_custom_prompt: Optional[str] = None
    resumption_handle: Optional[str] = None


def build_system_instruction(language: str, general_info: str, user_custom_prompt: Optional[str] = None) -> str:
    prompt = (user_custom_prompt or "").strip()
    return LECTURER_SYSTEM_PROMPT.format(
        language=language,
        general_info=general_info,
        user_preferences=USER_PREFERENCES_LINE.format(prompt=prompt) if prompt else "",
        canvas_tool=CANVAS_TOOL_NAME,
    )


def build_session_config(params: SessionConfigParams) -> Dict[str, Any]:
    """Return `{"model", "config"}` for opening (or resuming) a live session."""
    config: Dict[str, Any] = {
        "responseModalities": ["AUDIO"],
        "inputAudioTranscription": {},
        "outputAudioTranscription": {},
        "speechConfig": {
            "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": params.selected_voice}},
        },
        "tools": [{"functionDeclarations": [CANVAS_FUNCTION_DECLARATION]}],
        # Sliding window keeps long lectures inside the context limit
        "contextWindowCompression": {"slidingWindow": {}},
        "systemInstruction": build_system_instruction(
            params.selected_language,
            params.general_info,
            params.user_custom_prompt,
        ),
    }
    if params.resumption_handle:
        config["sessionResumption"] = {"handle": params.resumption_handle}
    return {"model": params.model, "config": config}
