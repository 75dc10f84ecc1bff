"""Data loaders for the campus dataset and the evaluation corpus."""

from .campus_loader import build_knowledge_base, load_knowledge_base
from .eval_set_loader import EvalGroup, EvalSet, load_eval_set, parse_eval_set

__all__ = [
    "build_knowledge_base",
    "load_knowledge_base",
    "EvalGroup",
    "EvalSet",
    "load_eval_set",
    "parse_eval_set",
]
