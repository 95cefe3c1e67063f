from types import SimpleNamespace

import pytest

from lecture_live.llm.pricing import calculate_estimated_cost
from lecture_live.schemas.lecture import TokenUsage, UsageReport
from lecture_live.services.usage_tracker import (
    CALL_TYPE_LIVE_TURN,
    CALL_TYPE_LIVE_TURN_ONGOING,
    CALL_TYPE_PLAN_GEN,
    UsageTracker,
    normalize_usage_metadata,
)


def _ongoing_count(tracker: UsageTracker) -> int:
    return sum(1 for r in tracker.reports if r.call_type == CALL_TYPE_LIVE_TURN_ONGOING)


def test_ongoing_then_final_collapses_into_one_report() -> None:
    tracker = UsageTracker()

    tracker.record_turn_usage("m", {"promptTokenCount": 100, "candidatesTokenCount": 20}, False)
    assert len(tracker.reports) == 1
    assert tracker.reports[0].call_type == CALL_TYPE_LIVE_TURN_ONGOING

    tracker.record_turn_usage("m", {"promptTokenCount": 150, "candidatesTokenCount": 40}, True)

    assert len(tracker.reports) == 1
    report = tracker.reports[0]
    assert report.call_type == CALL_TYPE_LIVE_TURN
    assert report.usage.prompt_tokens == 150
    assert report.usage.completion_tokens == 40
    assert report.usage.total_tokens == 190
    # totalTokenCount missing -> prompt + completion
    assert tracker.previous_cumulative_total == 190


def test_final_commits_reported_total_as_baseline() -> None:
    tracker = UsageTracker()
    tracker.record_turn_usage(
        "m",
        {"promptTokenCount": 150, "candidatesTokenCount": 40, "totalTokenCount": 200},
        True,
    )
    assert tracker.previous_cumulative_total == 200

    usage = tracker.record_turn_usage("m", {"promptTokenCount": 260, "candidatesTokenCount": 10}, True)
    assert usage.prompt_tokens == 60
    assert usage.total_tokens == 70
    assert len(tracker.reports) == 2


def test_delta_never_negative_for_non_monotonic_counters() -> None:
    tracker = UsageTracker()
    for prompt, final in [(500, True), (300, False), (120, True), (0, True), (900, False), (10, True)]:
        usage = tracker.record_turn_usage("m", {"promptTokenCount": prompt, "candidatesTokenCount": 5}, final)
        assert usage.prompt_tokens >= 0
    assert all(r.usage.prompt_tokens >= 0 for r in tracker.reports)


def test_single_ongoing_report_is_always_last() -> None:
    tracker = UsageTracker()
    sequence = [False, False, True, False, True, True, False, False]
    for i, final in enumerate(sequence):
        tracker.record_turn_usage("m", {"promptTokenCount": 100 * (i + 1)}, final)
        assert _ongoing_count(tracker) <= 1
        if _ongoing_count(tracker):
            assert tracker.reports[-1].call_type == CALL_TYPE_LIVE_TURN_ONGOING


def test_add_report_keeps_ongoing_report_last() -> None:
    tracker = UsageTracker()
    tracker.record_turn_usage("m", {"promptTokenCount": 10}, False)
    plan = UsageReport(
        model_id="gemini-2.5-pro",
        usage=TokenUsage(prompt_tokens=1000, completion_tokens=100, total_tokens=1100),
        timestamp=1,
        call_type=CALL_TYPE_PLAN_GEN,
        tag="lecture_plan",
    )

    tracker.add_report(plan)

    assert [r.call_type for r in tracker.reports] == [CALL_TYPE_PLAN_GEN, CALL_TYPE_LIVE_TURN_ONGOING]
    tracker.record_turn_usage("m", {"promptTokenCount": 20}, True)
    assert [r.call_type for r in tracker.reports] == [CALL_TYPE_PLAN_GEN, CALL_TYPE_LIVE_TURN]


def test_estimated_cost_tracks_report_list() -> None:
    tracker = UsageTracker()
    assert tracker.estimated_cost == 0.0

    usage = tracker.record_turn_usage("gemini-2.5-pro", {"promptTokenCount": 1_000_000}, True)
    assert tracker.estimated_cost == pytest.approx(calculate_estimated_cost("gemini-2.5-pro", usage))
    assert tracker.estimated_cost == pytest.approx(1.25)

    tracker.reset_baseline()
    tracker.record_turn_usage("gemini-2.5-pro", {"promptTokenCount": 0, "candidatesTokenCount": 1_000_000}, True)
    assert tracker.estimated_cost == pytest.approx(6.25)


def test_normalize_usage_accepts_all_aliases() -> None:
    snake = normalize_usage_metadata(
        {"prompt_token_count": 10, "response_token_count": 3, "total_token_count": 13}
    )
    assert (snake.prompt_tokens, snake.completion_tokens, snake.total_tokens) == (10, 3, 13)

    camel = normalize_usage_metadata(
        {"promptTokenCount": 7, "responseTokenCount": 2, "thoughtsTokenCount": 4, "totalTokenCount": 13}
    )
    assert camel.completion_tokens == 6

    sdk_like = SimpleNamespace(
        prompt_token_count=5,
        response_token_count=None,
        candidates_token_count=2,
        thoughts_token_count=None,
        total_token_count=7,
    )
    obj = normalize_usage_metadata(sdk_like)
    assert (obj.prompt_tokens, obj.completion_tokens, obj.total_tokens) == (5, 2, 7)

    assert normalize_usage_metadata(None).total_tokens == 0
