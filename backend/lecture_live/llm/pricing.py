"""
Static pricing registry and cost estimation for Gemini usage reports.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Literal

from lecture_live.schemas.lecture import TagUsageSummary, TokenUsage, UsageReport


ModelType = Literal["live", "auxiliary"]


@dataclass(frozen=True)
class ModelDefinition:
    id: str
    name: str
    type: ModelType
    input_per_1m: float
    output_per_1m: float


MODEL_REGISTRY: Dict[str, ModelDefinition] = {
    "gemini-2.5-flash-native-audio-preview-09-2025": ModelDefinition(
        id="gemini-2.5-flash-native-audio-preview-09-2025",
        name="Gemini 2.5 Flash Native Audio",
        type="live",
        input_per_1m=0.1,
        output_per_1m=0.4,
    ),
    "gemini-2.0-flash-exp": ModelDefinition(
        id="gemini-2.0-flash-exp",
        name="Gemini 2.0 Flash",
        type="auxiliary",
        input_per_1m=0.1,
        output_per_1m=0.4,
    ),
    "gemini-2.5-pro": ModelDefinition(
        id="gemini-2.5-pro",
        name="Gemini 2.5 Pro (Plan Gen)",
        type="auxiliary",
        input_per_1m=1.25,
        output_per_1m=5.0,
    ),
}

# Rate applied to any model id missing from the registry.
DEFAULT_MODEL_COST = ModelDefinition(
    id="default",
    name="Default rate",
    type="auxiliary",
    input_per_1m=0.1,
    output_per_1m=0.4,
)

LIVE_MODELS: List[ModelDefinition] = [m for m in MODEL_REGISTRY.values() if m.type == "live"]


def get_model_pricing(model_id: str) -> ModelDefinition:
    return MODEL_REGISTRY.get(model_id, DEFAULT_MODEL_COST)


def calculate_estimated_cost(model_id: str, usage: TokenUsage) -> float:
    pricing = get_model_pricing(model_id)
    prompt_tokens = usage.prompt_tokens or 0
    completion_tokens = usage.completion_tokens or 0

    input_cost = (prompt_tokens / 1_000_000) * pricing.input_per_1m
    output_cost = (completion_tokens / 1_000_000) * pricing.output_per_1m
    total = input_cost + output_cost
    return 0.0 if math.isnan(total) else total


def calculate_total_session_cost(reports: Iterable[UsageReport]) -> float:
    return sum(calculate_estimated_cost(r.model_id, r.usage) for r in reports)


def summarize_usage(reports: Iterable[UsageReport]) -> Dict[str, TagUsageSummary]:
    """Group cost and token totals by report tag (missing tag -> "other")."""
    by_tag: Dict[str, TagUsageSummary] = {}
    for report in reports:
        tag = report.tag or "other"
        bucket = by_tag.setdefault(tag, TagUsageSummary())
        bucket.cost += calculate_estimated_cost(report.model_id, report.usage)
        bucket.tokens += report.usage.total_tokens or 0
        bucket.count += 1
    return by_tag


def format_cost(cost: float) -> str:
    if cost == 0:
        return "$0.00"
    text = f"{cost:,.6f}".rstrip("0")
    whole, _, frac = text.partition(".")
    frac = frac.ljust(2, "0")
    return f"${whole}.{frac}"
