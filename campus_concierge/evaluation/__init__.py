"""Evaluation harness for deterministic intent/action regression runs."""

from .harness import (
    CATEGORY_EXPECTATIONS,
    EvalExpectation,
    EvalReport,
    QueryOutcome,
    expected_for_query,
    looks_like_route_query,
    run_evaluation,
)

__all__ = [
    "CATEGORY_EXPECTATIONS",
    "EvalExpectation",
    "EvalReport",
    "QueryOutcome",
    "expected_for_query",
    "looks_like_route_query",
    "run_evaluation",
]
