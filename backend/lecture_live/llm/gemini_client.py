import asyncio
import logging
import re
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from google import genai
from google.genai import types as genai_types
from groq import Groq

from lecture_live.core.config import get_settings
from lecture_live.llm.prompts.lecture_prompts import MARKDOWN_FIX_PROMPT
from lecture_live.schemas.lecture import TokenUsage
from lecture_live.services.usage_tracker import normalize_usage_metadata

logger = logging.getLogger(__name__)
settings = get_settings()

_FENCE_OPEN = re.compile(r"^```(?:markdown)?\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```$")


class MarkdownFixError(RuntimeError):
    pass


class PlanGenerationError(RuntimeError):
    pass


@lru_cache()
def get_genai_client() -> Optional[genai.Client]:
    """Shared google-genai client (sync + `.aio`), None when no key is configured."""
    if not settings.gemini_api_key:
        return None
    return genai.Client(api_key=settings.gemini_api_key)


def get_groq_client() -> Optional[Groq]:
    """Return Groq client."""
    if not settings.groq_api_key:
        return None
    return Groq(api_key=settings.groq_api_key)


def get_llm_status() -> Dict[str, Any]:
    """Return provider + model metadata for UI/health checks."""
    provider = settings.llm_provider
    if provider == "gemini":
        key = settings.gemini_api_key
        model = settings.markdown_fixer_model
    elif provider == "groq":
        key = settings.groq_api_key
        model = settings.llm_groq_chat_model
    else:
        key = ""
        model = None
    return {
        "provider": provider,
        "status": "ready" if provider != "none" else "not_configured",
        "model": model,
        "live_model": settings.gemini_live_model if settings.has_gemini else None,
        "api_key_set": bool(key and len(key) > 10),
        "api_key_preview": (key[:8] + "...") if key else None,
    }


def strip_markdown_fence(text: str) -> str:
    cleaned = _FENCE_OPEN.sub("", (text or "").strip(), count=1)
    cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def _groq_generate(prompt: str, *, model_name: str, temperature: float, max_tokens: int) -> Tuple[str, TokenUsage]:
    client = get_groq_client()
    if not client:
        raise MarkdownFixError("groq client not configured")
    resp = client.chat.completions.create(
        model=model_name,
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    usage = getattr(resp, "usage", None)
    token_usage = TokenUsage(
        prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
    )
    return (resp.choices[0].message.content or "").strip(), token_usage


def _token_usage(usage_metadata: Any) -> TokenUsage:
    normalized = normalize_usage_metadata(usage_metadata)
    return TokenUsage(
        prompt_tokens=normalized.prompt_tokens,
        completion_tokens=normalized.completion_tokens,
        total_tokens=normalized.total_tokens,
    )


async def fix_markdown_content(markdown: str) -> Tuple[str, TokenUsage, str]:
    """
    Repair assistant-authored canvas markdown (fences, mermaid, KaTeX).

    Returns (content, usage, model_id). Raises MarkdownFixError; callers keep the
    original content when it does.
    """
    prompt = MARKDOWN_FIX_PROMPT.format(markdown=markdown)
    provider = settings.llm_provider
    try:
        if provider == "gemini":
            client = get_genai_client()
            response = await client.aio.models.generate_content(
                model=settings.markdown_fixer_model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(temperature=0),
            )
            text = getattr(response, "text", None) or ""
            return (
                strip_markdown_fence(text),
                _token_usage(getattr(response, "usage_metadata", None)),
                settings.markdown_fixer_model,
            )
        if provider == "groq":
            text, usage = await asyncio.to_thread(
                _groq_generate,
                prompt,
                model_name=settings.llm_groq_chat_model,
                temperature=0.0,
                max_tokens=settings.ai_max_tokens,
            )
            return strip_markdown_fence(text), usage, settings.llm_groq_chat_model
    except MarkdownFixError:
        raise
    except Exception as exc:
        raise MarkdownFixError(f"Failed to fix markdown: {exc}") from exc
    raise MarkdownFixError("no LLM provider configured")


async def generate_plan_text(
    document: bytes,
    prompt: str,
    *,
    mime_type: str = "application/pdf",
    model_name: Optional[str] = None,
) -> Tuple[str, TokenUsage, str]:
    """One-shot multimodal call: the uploaded document plus the plan prompt."""
    client = get_genai_client()
    if client is None:
        raise PlanGenerationError("GEMINI_API_KEY is not configured")
    model_name = model_name or settings.plan_generation_model
    try:
        response = await client.aio.models.generate_content(
            model=model_name,
            contents=[
                genai_types.Part.from_bytes(data=document, mime_type=mime_type),
                genai_types.Part(text=prompt),
            ],
        )
    except Exception as exc:
        raise PlanGenerationError(f"plan generation failed: {exc}") from exc
    text = (getattr(response, "text", None) or "").strip()
    if not text:
        raise PlanGenerationError("plan generation returned no text")
    return text, _token_usage(getattr(response, "usage_metadata", None)), model_name
