"""
Usage Delta Tracker

The Live API reports *cumulative* prompt tokens per turn (entire history + new input).
This tracker converts those snapshots into per-turn deltas and keeps a running cost.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from lecture_live.llm.pricing import calculate_total_session_cost
from lecture_live.schemas.lecture import TokenUsage, UsageReport

logger = logging.getLogger(__name__)

CALL_TYPE_LIVE_TURN = "live_turn"
CALL_TYPE_LIVE_TURN_ONGOING = "live_turn_ongoing"
CALL_TYPE_PLAN_GEN = "plan_gen"
CALL_TYPE_MARKDOWN_FIX = "markdown_fix"

DEFAULT_LIVE_TAG = "slide_conversation"

_PROMPT_KEYS = ("promptTokenCount", "prompt_token_count")
_COMPLETION_KEYS = (
    "responseTokenCount",
    "response_token_count",
    "candidatesTokenCount",
    "candidates_token_count",
)
_THOUGHTS_KEYS = ("thoughtsTokenCount", "thoughts_token_count")
_TOTAL_KEYS = ("totalTokenCount", "total_token_count")


@dataclass(frozen=True)
class NormalizedUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


def _lookup(raw: Any, keys: tuple[str, ...]) -> Optional[int]:
    for key in keys:
        if isinstance(raw, Mapping):
            value = raw.get(key)
        else:
            value = getattr(raw, key, None)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def normalize_usage_metadata(raw: Any) -> NormalizedUsage:
    """
    Read token counters from a usage snapshot regardless of transport revision.

    Accepts dicts (camelCase wire JSON or snake_case dumps) and SDK objects.
    Thinking tokens are folded into the completion count.
    """
    if raw is None:
        return NormalizedUsage(0, 0, 0)
    prompt = _lookup(raw, _PROMPT_KEYS) or 0
    completion = (_lookup(raw, _COMPLETION_KEYS) or 0) + (_lookup(raw, _THOUGHTS_KEYS) or 0)
    total = _lookup(raw, _TOTAL_KEYS)
    if total is None:
        total = prompt + completion
    return NormalizedUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def now_ms() -> int:
    return int(time.time() * 1000)


class UsageTracker:
    """Owns the ordered usage report list of one lecture session."""

    def __init__(self, reports: Optional[List[UsageReport]] = None) -> None:
        # Shared with the session aggregate; mutated in place.
        self.reports: List[UsageReport] = reports if reports is not None else []
        self._previous_cumulative_total = 0
        self._revision = 0
        self._cost_cache: Optional[tuple[int, float]] = None

    @property
    def previous_cumulative_total(self) -> int:
        return self._previous_cumulative_total

    @property
    def estimated_cost(self) -> float:
        if self._cost_cache is None or self._cost_cache[0] != self._revision:
            self._cost_cache = (self._revision, calculate_total_session_cost(self.reports))
        return self._cost_cache[1]

    def reset_baseline(self) -> None:
        """A new transport connection restarts its cumulative counters."""
        self._previous_cumulative_total = 0

    def record_turn_usage(
        self,
        model_id: str,
        usage_metadata: Any,
        is_final: bool,
        tag: str = DEFAULT_LIVE_TAG,
    ) -> TokenUsage:
        usage = normalize_usage_metadata(usage_metadata)

        input_delta = max(0, usage.prompt_tokens - self._previous_cumulative_total)
        turn_usage = TokenUsage(
            prompt_tokens=input_delta,
            completion_tokens=usage.completion_tokens,
            total_tokens=input_delta + usage.completion_tokens,
        )
        report = UsageReport(
            model_id=model_id,
            usage=turn_usage,
            timestamp=now_ms(),
            call_type=CALL_TYPE_LIVE_TURN if is_final else CALL_TYPE_LIVE_TURN_ONGOING,
            tag=tag,
        )

        if self.reports and self.reports[-1].call_type == CALL_TYPE_LIVE_TURN_ONGOING:
            self.reports[-1] = report
        else:
            self.reports.append(report)
        self._revision += 1

        if is_final:
            self._previous_cumulative_total = usage.total_tokens
            logger.debug(
                "live_turn_usage_final model=%s input_delta=%s completion=%s baseline=%s",
                model_id,
                input_delta,
                usage.completion_tokens,
                self._previous_cumulative_total,
            )
        return turn_usage

    def add_report(self, report: UsageReport) -> None:
        """Append a one-shot report (plan generation, markdown fix) as-is."""
        # A provisional live report stays last until its turn is finalized.
        if self.reports and self.reports[-1].call_type == CALL_TYPE_LIVE_TURN_ONGOING:
            self.reports.insert(len(self.reports) - 1, report)
        else:
            self.reports.append(report)
        self._revision += 1
