"""Rule-based triage: category inference, priority scoring, routing and similar-issue ranking.

Everything here is a pure function of its inputs. The only non-determinism is in the
explicitly random branches (fallback category pick, resource and response-time estimates,
duplicate score), and those draw from an injected ``random.Random`` so callers and tests
can seed them.
"""
from __future__ import annotations

import math
import random
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models import ISSUE_CATEGORIES, ISSUE_STATUSES, URGENCY_LEVELS
from utils.errors import InvalidInput

# Ordered (keywords, category, confidence, alternatives); the first rule that matches wins.
CATEGORY_RULES: tuple[tuple[tuple[str, ...], str, float, Dict[str, float]], ...] = (
    (("pothole", "asphalt", "road"), "Road Damage", 0.89, {"Sidewalk Damage": 0.42, "Construction": 0.31}),
    (("trash", "garbage", "waste"), "Garbage & Waste", 0.92, {"Environmental Hazard": 0.38}),
    (("water", "leak", "pipe"), "Water Leakage", 0.87, {"Drainage Blockage": 0.45}),
    (("light", "lamp", "dark"), "Street Light Issue", 0.84, {"Electrical Hazard": 0.29}),
    (("tree", "branch", "vegetation"), "Tree Hazard", 0.91, {"Park Maintenance": 0.36}),
)

FALLBACK_CATEGORIES: tuple[str, ...] = (
    "Road Damage",
    "Garbage & Waste",
    "Water Leakage",
    "Street Light Issue",
)

KEYWORD_VOCABULARY: tuple[str, ...] = (
    "pothole",
    "road",
    "light",
    "street",
    "garbage",
    "waste",
    "water",
    "leak",
    "graffiti",
    "drainage",
    "tree",
    "branch",
    "sidewalk",
    "damage",
    "hazard",
    "danger",
    "repair",
    "fix",
)
MIN_KEYWORDS = 3

SAFETY_CATEGORIES: frozenset[str] = frozenset({"Water Leakage", "Tree Hazard"})
BASE_PRIORITY = 3
MIN_PRIORITY = 1
MAX_PRIORITY = 5

IMPACT_ASSESSMENTS: tuple[str, ...] = (
    "Minimal impact on community",
    "Low impact on small number of residents",
    "Moderate impact on local area",
    "Significant impact on neighborhood",
    "Critical impact requiring immediate attention",
)

DEPARTMENTS: Dict[str, tuple[str, ...]] = {
    "Road Damage": ("Public Works", "Transportation"),
    "Water Leakage": ("Utilities", "Public Works"),
    "Garbage & Waste": ("Sanitation", "Environmental Services"),
    "Street Light Issue": ("Electrical", "Public Safety"),
    "Tree Hazard": ("Parks & Recreation", "Public Works"),
    "Graffiti": ("Maintenance", "Community Services"),
    "Park Maintenance": ("Parks & Recreation", "Public Works"),
    "Sidewalk Damage": ("Public Works", "Transportation"),
}
DEFAULT_DEPARTMENTS: tuple[str, ...] = ("Public Works",)
KNOWN_DEPARTMENTS: frozenset[str] = frozenset(
    name for names in DEPARTMENTS.values() for name in names
) | frozenset(DEFAULT_DEPARTMENTS)

EQUIPMENT: Dict[str, tuple[str, ...]] = {
    "Road Damage": ("Asphalt", "Compactor", "Truck"),
    "Water Leakage": ("Pipe Wrenches", "Replacement Pipes", "Sealant"),
    "Tree Hazard": ("Chainsaw", "Safety Equipment", "Chipper"),
}
DEFAULT_EQUIPMENT: tuple[str, ...] = ("Basic Tools", "Safety Equipment")

PERSONNEL_RANGE = (1, 3)
HOURS_RANGE = (2, 9)
RESPONSE_TIME_RANGE = (24, 71)
SIMILARITY_FLOOR = 0.3
SIMILARITY_CEILING = 0.8
DUPLICATE_CEILING = 0.7
DEFAULT_SIMILAR_LIMIT = 3

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({"the", "and", "for", "with", "near", "from", "this", "that", "are", "was", "has", "have"})

_default_rng = random.Random()


def _rng(rng: Optional[random.Random]) -> random.Random:
    return rng if rng is not None else _default_rng


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string", details={"field": field})
    return value


def _require_category(value: Any) -> str:
    if not isinstance(value, str) or value not in ISSUE_CATEGORIES:
        raise InvalidInput(f"Unknown category: {value!r}", details={"field": "category"})
    return value


def _require_tags(tags: Optional[Iterable[Any]]) -> List[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        raise InvalidInput("tags must be a list of strings", details={"field": "tags"})
    return [_require_text(tag, "tags") for tag in tags]


def _draw(rng: random.Random, low: float, high: float) -> float:
    """Uniform draw in [low, high), truncated to two decimals so it never reaches ``high``."""
    return round(low + math.floor(rng.random() * (high - low) * 100) / 100, 2)


def _combined_text(*parts: str) -> str:
    return " ".join(part for part in parts if part).lower()


def infer_category(
    title: str,
    description: str,
    tags: Optional[Sequence[str]] = None,
    rng: Optional[random.Random] = None,
    fallback_category: Optional[str] = None,
) -> Dict[str, Any]:
    """Predict a category from free text (and optional image tags).

    Returns ``{"category", "confidence", "alternatives", "matched"}``. When no rule
    matches, a fallback category is chosen (``fallback_category`` if given, else a random
    pick among the common categories) with a lower confidence band.
    """
    text = _combined_text(_require_text(title, "title"), _require_text(description, "description"), *_require_tags(tags))
    if fallback_category is not None:
        _require_category(fallback_category)

    for keywords, category, confidence, alternatives in CATEGORY_RULES:
        if any(keyword in text for keyword in keywords):
            return {
                "category": category,
                "confidence": confidence,
                "alternatives": dict(alternatives),
                "matched": True,
            }

    generator = _rng(rng)
    category = fallback_category or generator.choice(FALLBACK_CATEGORIES)
    remaining = [c for c in ISSUE_CATEGORIES if c not in {category, "Other"}]
    alternatives = {alt: _draw(generator, 0.3, 0.6) for alt in generator.sample(remaining, 2)}
    return {
        "category": category,
        "confidence": _draw(generator, 0.75, 0.90),
        "alternatives": alternatives,
        "matched": False,
    }


def extract_keywords(title: str, description: str, rng: Optional[random.Random] = None) -> List[str]:
    text = _combined_text(_require_text(title, "title"), _require_text(description, "description"))
    keywords = [word for word in KEYWORD_VOCABULARY if word in text]
    if len(keywords) < MIN_KEYWORDS:
        unused = [word for word in KEYWORD_VOCABULARY if word not in keywords]
        keywords.extend(_rng(rng).sample(unused, MIN_KEYWORDS - len(keywords)))
    return keywords


def priority_score(category: str, votes: int, status: Optional[str] = None) -> int:
    """Score 1-5: base 3, +1 for safety categories, +1 above 10 votes or +0.5 above 5."""
    _require_category(category)
    if isinstance(votes, bool) or not isinstance(votes, int) or votes < 0:
        raise InvalidInput("votes must be a non-negative integer", details={"field": "votes"})
    if status is not None and status not in ISSUE_STATUSES:
        raise InvalidInput(f"Unknown status: {status!r}", details={"field": "status"})

    raw = float(BASE_PRIORITY)
    if category in SAFETY_CATEGORIES:
        raw += 1
    if votes > 10:
        raw += 1
    elif votes > 5:
        raw += 0.5
    # Half-up rounding: 3.5 -> 4 and 4.5 -> 5.
    rounded = math.floor(raw + 0.5)
    return max(MIN_PRIORITY, min(MAX_PRIORITY, rounded))


def _priority_index(priority: int) -> int:
    return max(0, min(len(URGENCY_LEVELS) - 1, int(priority) - 1))


def urgency_level(priority: int) -> str:
    return URGENCY_LEVELS[_priority_index(priority)]


def impact_assessment(priority: int) -> str:
    return IMPACT_ASSESSMENTS[_priority_index(priority)]


def assign_departments(category: str) -> List[str]:
    _require_category(category)
    return list(DEPARTMENTS.get(category, DEFAULT_DEPARTMENTS))


def estimate_resources(category: str, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    _require_category(category)
    generator = _rng(rng)
    return {
        "personnel": generator.randint(*PERSONNEL_RANGE),
        "estimatedHours": generator.randint(*HOURS_RANGE),
        "equipmentNeeded": list(EQUIPMENT.get(category, DEFAULT_EQUIPMENT)),
    }


def estimate_response_time(rng: Optional[random.Random] = None) -> int:
    # TODO: replace with a per-urgency SLA table once departments publish response targets.
    return _rng(rng).randint(*RESPONSE_TIME_RANGE)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _tokens(*parts: Optional[str]) -> set[str]:
    text = _combined_text(*(part or "" for part in parts))
    return {tok for tok in _TOKEN_RE.findall(text) if len(tok) > 2 and tok not in _STOPWORDS}


def score_similar_issues(issue: Any, candidates: Iterable[Any], limit: int = DEFAULT_SIMILAR_LIMIT) -> Dict[str, float]:
    """Rank same-category issues by token overlap with ``issue``.

    Scores are ``0.3 + 0.5 * jaccard`` so they stay inside [0.3, 0.8]. The issue itself
    and issues from other categories are never returned, and at most ``limit`` ids are.
    """
    issue_id = _field(issue, "id")
    category = _field(issue, "category")
    base_tokens = _tokens(_field(issue, "title"), _field(issue, "description"))

    scored: List[tuple[str, float]] = []
    for candidate in candidates:
        candidate_id = _field(candidate, "id")
        if candidate_id is None or candidate_id == issue_id:
            continue
        if _field(candidate, "category") != category:
            continue
        other_tokens = _tokens(_field(candidate, "title"), _field(candidate, "description"))
        union = base_tokens | other_tokens
        jaccard = len(base_tokens & other_tokens) / len(union) if union else 0.0
        scored.append((str(candidate_id), round(SIMILARITY_FLOOR + (SIMILARITY_CEILING - SIMILARITY_FLOOR) * jaccard, 4)))

    scored.sort(key=lambda pair: pair[1], reverse=True)
    return dict(scored[: max(0, limit)])


def duplicate_score(similarity_scores: Dict[str, float], rng: Optional[random.Random] = None) -> float:
    if not similarity_scores:
        return 0.0
    return _draw(_rng(rng), 0.0, DUPLICATE_CEILING)


def suggest_for_report(
    title: str,
    description: str,
    tags: Optional[Sequence[str]] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Form-time suggestion shown while a citizen is still filling in the report."""
    suggestion = infer_category(title, description, tags=tags, rng=rng)
    suggestion["keywords"] = extract_keywords(title, description, rng=rng)
    return suggestion


def build_analysis(
    issue: Any,
    candidates: Iterable[Any] = (),
    rng: Optional[random.Random] = None,
    similar_limit: int = DEFAULT_SIMILAR_LIMIT,
) -> Dict[str, Any]:
    """Assemble a complete analysis payload for a persisted issue.

    Priority, urgency, departments and resources are keyed off the issue's reported
    category; the predicted category is what the keyword rules infer from the text,
    falling back to the reported category when no rule matches.
    """
    generator = _rng(rng)
    title = _field(issue, "title")
    description = _field(issue, "description")
    category = _require_category(_field(issue, "category"))
    votes = _field(issue, "vote_count", 0) or 0
    status = _field(issue, "status")

    suggestion = infer_category(
        title,
        description,
        tags=_field(issue, "ai_tags") or [],
        rng=generator,
        fallback_category=category,
    )
    similarity = score_similar_issues(issue, candidates, limit=similar_limit)
    priority = priority_score(category, votes, status)

    return {
        "predicted_category": suggestion["category"],
        "category_confidence": suggestion["confidence"],
        "alternative_categories": suggestion["alternatives"],
        "extracted_keywords": extract_keywords(title, description, rng=generator),
        "similar_issue_ids": list(similarity.keys()),
        "similarity_scores": similarity,
        "duplicate_score": duplicate_score(similarity, rng=generator),
        "priority_score": priority,
        "urgency_level": urgency_level(priority),
        "impact_assessment": impact_assessment(priority),
        "assigned_departments": assign_departments(category),
        "estimated_response_time": estimate_response_time(rng=generator),
        "resource_requirements": estimate_resources(category, rng=generator),
        "source": "heuristic",
    }
