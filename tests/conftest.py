"""
Pytest configuration and fixtures for Campus Concierge tests.

This conftest.py provides:
- The bundled campus knowledge base and eval set
- A small in-memory knowledge base for loader/matcher edge cases
- Metrics reset between tests (the registry is process-global)
"""

import pytest

from campus_concierge.config import BUNDLED_DATA_DIR
from campus_concierge.engine import ConciergeEngine
from campus_concierge.loaders import build_knowledge_base, load_eval_set, load_knowledge_base
from campus_concierge.observability import metrics


@pytest.fixture
def data_dir():
    """Return the data directory shipped inside the package."""
    return BUNDLED_DATA_DIR


@pytest.fixture
def campus_kb(data_dir):
    """The bundled campus knowledge base."""
    return load_knowledge_base(data_dir / "campus_data.json")


@pytest.fixture
def eval_set(data_dir):
    """The bundled student-support eval set."""
    return load_eval_set(data_dir / "student_support_eval_set.yaml")


@pytest.fixture
def engine(campus_kb):
    """Deterministic engine over the bundled campus data."""
    return ConciergeEngine(campus_kb)


@pytest.fixture
def mini_kb():
    """Three-location knowledge base for focused matcher tests."""
    return build_knowledge_base([
        {
            "id": "library",
            "name": "Central Library",
            "aliases": ["library"],
            "description": "Books and quiet study rooms",
            "coordinates": {"lat": 27.681, "lng": 85.311},
            "services": [
                {"name": "Book Borrowing Counter", "purpose": "Borrow books", "location_note": "ground floor"},
            ],
        },
        {
            "id": "gate",
            "name": "Main Gate",
            "aliases": ["front gate"],
            "description": "Campus entrance next to the library",
            "coordinates": {"lat": 27.679, "lng": 85.310},
        },
        {
            "id": "security",
            "name": "Security Office",
            "description": "Campus security, open day and night",
            "coordinates": {"lat": 27.6795, "lng": 85.3105},
        },
    ])


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with zeroed metrics."""
    metrics.reset_all()
    yield
    metrics.reset_all()
