"""Loader for the labeled student-support evaluation corpus.

The corpus groups queries by category:

    version: "1.0"
    language: en
    groups:
      - category: library
        queries:
          - where is the library

YAML and JSON files share the same shape.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvalGroup:
    """Queries that share one category expectation."""
    category: str
    queries: tuple[str, ...]


@dataclass(frozen=True)
class EvalSet:
    """A versioned, grouped evaluation corpus."""
    version: str
    language: str
    groups: tuple[EvalGroup, ...] = field(default_factory=tuple)

    @property
    def total_queries(self) -> int:
        return sum(len(g.queries) for g in self.groups)


def load_eval_set(path: Union[str, Path]) -> EvalSet:
    """Load and validate an evaluation corpus from YAML or JSON.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the corpus is malformed
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            raw = json.load(f)
        else:
            raw = yaml.safe_load(f)

    eval_set = parse_eval_set(raw, source=path.name)
    logger.info(
        f"Loaded eval set v{eval_set.version} from {path.name}: "
        f"{len(eval_set.groups)} groups, {eval_set.total_queries} queries"
    )
    return eval_set


def parse_eval_set(raw: object, source: str = "<memory>") -> EvalSet:
    """Validate an already parsed corpus document."""
    if not isinstance(raw, dict):
        raise ValueError(f"Eval set {source} must be a mapping")

    for key in ("version", "groups"):
        if key not in raw:
            raise ValueError(f"Eval set {source} missing required key: {key}")

    if not isinstance(raw["groups"], list):
        raise ValueError(f"Eval set {source}: 'groups' must be a list")

    groups = []
    for i, group in enumerate(raw["groups"]):
        if not isinstance(group, dict) or "category" not in group or "queries" not in group:
            raise ValueError(f"Eval set {source}: group {i} missing 'category' or 'queries'")
        queries = group["queries"]
        if not isinstance(queries, list) or not all(isinstance(q, str) and q.strip() for q in queries):
            raise ValueError(f"Eval set {source}: group '{group['category']}' needs non-empty string queries")
        groups.append(EvalGroup(category=str(group["category"]), queries=tuple(queries)))

    return EvalSet(
        version=str(raw["version"]),
        language=str(raw.get("language", "en")),
        groups=tuple(groups),
    )
