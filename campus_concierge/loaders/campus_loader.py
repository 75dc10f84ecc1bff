"""Loader for the campus location dataset.

Reads the static campus JSON (either a top-level list or ``{"locations": [...]}``),
validates it, and derives the lexical fields the matcher relies on. Any defect
is fatal: the loader collects every problem and raises a single
KnowledgeBaseLoadError so a broken dataset is fixed in one pass.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Optional, Union

from ..exceptions import KnowledgeBaseLoadError
from ..knowledge_base import Coordinates, KnowledgeBase, LocationRecord, ServiceInfo
from ..normalization import GENERIC_TOKENS, content_tokens, normalize_query

logger = logging.getLogger(__name__)


def load_knowledge_base(path: Union[str, Path]) -> KnowledgeBase:
    """Load and validate the campus dataset from a JSON file.

    Args:
        path: Path to the campus JSON file

    Returns:
        Immutable KnowledgeBase

    Raises:
        KnowledgeBaseLoadError: If the file is missing, not JSON, or malformed
    """
    path = Path(path)
    if not path.exists():
        raise KnowledgeBaseLoadError(f"Campus dataset not found: {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise KnowledgeBaseLoadError(f"Campus dataset is not valid JSON ({path.name}): {e}") from e
    except OSError as e:
        raise KnowledgeBaseLoadError(f"Campus dataset could not be read ({path}): {e}") from e

    kb = build_knowledge_base(raw)
    logger.info(f"Loaded {len(kb)} campus locations from {path.name}")
    return kb


def build_knowledge_base(raw: Any) -> KnowledgeBase:
    """Validate raw campus data and build the knowledge base.

    Accepts the parsed JSON document: a list of location objects or a dict
    with a ``locations`` list.
    """
    if isinstance(raw, dict):
        entries = raw.get("locations")
    else:
        entries = raw

    if not isinstance(entries, list):
        raise KnowledgeBaseLoadError("Campus dataset must be a list of locations or {'locations': [...]}")

    problems: list[str] = []
    parsed: list[dict] = []
    seen_ids: set[str] = set()

    for index, entry in enumerate(entries):
        label = f"location[{index}]"
        if not isinstance(entry, dict):
            problems.append(f"{label}: expected an object, got {type(entry).__name__}")
            continue

        location_id = entry.get("id")
        if not isinstance(location_id, str) or not location_id.strip():
            problems.append(f"{label}: missing 'id'")
            continue
        location_id = location_id.strip()
        label = f"location '{location_id}'"

        if location_id in seen_ids:
            problems.append(f"{label}: duplicate id")
            continue
        seen_ids.add(location_id)

        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            problems.append(f"{label}: missing 'name'")
            continue

        coordinates = _parse_coordinates(entry.get("coordinates"), label, problems)
        services = _parse_services(entry.get("services", []), label, problems)

        aliases = entry.get("aliases", [])
        if not isinstance(aliases, list) or not all(isinstance(a, str) for a in aliases):
            problems.append(f"{label}: 'aliases' must be a list of strings")
            aliases = []

        description = entry.get("description") or ""
        if not isinstance(description, str):
            problems.append(f"{label}: 'description' must be a string")
            description = ""

        if coordinates is None or services is None:
            continue

        parsed.append({
            "id": location_id,
            "name": name.strip(),
            "description": description.strip(),
            "coordinates": coordinates,
            "services": services,
            "explicit_aliases": [normalize_query(a) for a in aliases if normalize_query(a)],
        })

    if problems:
        raise KnowledgeBaseLoadError("Campus dataset is malformed", problems)

    return KnowledgeBase(_derive_records(parsed))


def _parse_coordinates(value: Any, label: str, problems: list[str]) -> Optional[Coordinates]:
    if not isinstance(value, dict):
        problems.append(f"{label}: missing 'coordinates'")
        return None

    lat, lng = value.get("lat"), value.get("lng")
    if not _is_number(lat) or not _is_number(lng):
        problems.append(f"{label}: coordinates need numeric 'lat' and 'lng'")
        return None
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        problems.append(f"{label}: coordinates out of range ({lat}, {lng})")
        return None

    return Coordinates(lat=float(lat), lng=float(lng))


def _parse_services(value: Any, label: str, problems: list[str]) -> Optional[tuple[ServiceInfo, ...]]:
    if value is None:
        return ()
    if not isinstance(value, list):
        problems.append(f"{label}: 'services' must be a list")
        return None

    services = []
    for i, item in enumerate(value):
        if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"].strip():
            problems.append(f"{label}: service[{i}] needs a 'name'")
            return None
        services.append(ServiceInfo(
            name=item["name"].strip(),
            purpose=str(item.get("purpose") or "").strip(),
            location_note=str(item.get("location_note") or "").strip(),
        ))
    return tuple(services)


def _is_number(value: Any) -> bool:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _derive_records(parsed: list[dict]) -> list[LocationRecord]:
    """Derive keywords, aliases and phrases for every location.

    Strong keywords come from the name and explicit aliases; service keywords
    from the names of the services housed there. Weak alias tokens come from
    the remaining description and service text. Service and weak tokens never
    include a strong keyword of a different location (a cafeteria described as
    "next to the library" is not evidence for "library") or a generic category
    word.
    """
    strong_by_id: dict[str, set[str]] = {}
    for item in parsed:
        strong = set(content_tokens(item["name"]))
        for alias in item["explicit_aliases"]:
            strong.update(content_tokens(alias))
        strong_by_id[item["id"]] = strong

    records = []
    for item in parsed:
        own_strong = strong_by_id[item["id"]]
        foreign_strong = set()
        for other_id, tokens in strong_by_id.items():
            if other_id != item["id"]:
                foreign_strong.update(t for t in tokens if t not in GENERIC_TOKENS)

        service_strong = set()
        for service in item["services"]:
            service_strong.update(content_tokens(service.name))
        service_strong = {
            t for t in service_strong
            if t not in own_strong and t not in foreign_strong and t not in GENERIC_TOKENS
        }

        weak = set(content_tokens(item["description"]))
        for service in item["services"]:
            weak.update(content_tokens(service.purpose))
            weak.update(content_tokens(service.location_note))
        weak = {
            t for t in weak
            if t not in own_strong and t not in service_strong
            and t not in foreign_strong and t not in GENERIC_TOKENS
        }

        phrases = []
        for text in [item["name"], *item["explicit_aliases"], *(s.name for s in item["services"])]:
            phrase = normalize_query(text)
            if len(phrase.split()) >= 2 and phrase not in phrases:
                phrases.append(phrase)

        aliases = frozenset(own_strong | service_strong | weak | set(item["explicit_aliases"]))

        records.append(LocationRecord(
            id=item["id"],
            name=item["name"],
            description=item["description"],
            coordinates=item["coordinates"],
            aliases=aliases,
            services=item["services"],
            keywords=frozenset(own_strong),
            phrases=tuple(phrases),
            service_keywords=frozenset(service_strong),
        ))

    return records
