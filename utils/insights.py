"""Aggregates for the officials' insights view and the public hotspot map."""
from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func

from extensions import db
from models import AIAnalysis, Issue
from utils.triage import MAX_PRIORITY, MIN_PRIORITY, urgency_level

TOP_CATEGORY_LIMIT = 5
HOTSPOT_PRECISION = 3
VOTE_WEIGHT = 0.1


def analysis_insights() -> Dict[str, Any]:
    """Counts over stored analyses: per priority, top predicted categories, per department."""
    by_priority = dict.fromkeys(range(MIN_PRIORITY, MAX_PRIORITY + 1), 0)
    for priority, count in db.session.query(AIAnalysis.priority_score, func.count(AIAnalysis.id)).group_by(
        AIAnalysis.priority_score
    ):
        by_priority[priority] = count

    top_categories = (
        db.session.query(AIAnalysis.predicted_category, func.count(AIAnalysis.id))
        .group_by(AIAnalysis.predicted_category)
        .order_by(func.count(AIAnalysis.id).desc(), AIAnalysis.predicted_category)
        .limit(TOP_CATEGORY_LIMIT)
        .all()
    )

    # Department lists live in a JSON column, so they are tallied here rather than in SQL.
    departments: Counter = Counter()
    for (assigned,) in db.session.query(AIAnalysis.assigned_departments):
        departments.update(assigned or [])

    return {
        "analyzed_issues": sum(by_priority.values()),
        "by_priority": [
            {"priority": priority, "urgency": urgency_level(priority), "count": count}
            for priority, count in by_priority.items()
        ],
        "top_categories": [{"category": category, "count": count} for category, count in top_categories],
        "by_department": [
            {"department": name, "count": count}
            for name, count in sorted(departments.items(), key=lambda item: (-item[1], item[0]))
        ],
    }


def cluster_hotspots(points: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group points whose coordinates agree to three decimals (roughly 100 m).

    Each point contributes ``1 + 0.1 * votes`` to its cluster weight. Clusters are
    returned heaviest first.
    """
    clusters: Dict[tuple, Dict[str, Any]] = {}
    for point in points:
        lat, lng = point.get("lat"), point.get("lng")
        if lat is None or lng is None:
            continue
        key = (round(float(lat), HOTSPOT_PRECISION), round(float(lng), HOTSPOT_PRECISION))
        cluster = clusters.setdefault(
            key, {"lat": key[0], "lng": key[1], "weight": 0.0, "count": 0, "categories": {}}
        )
        cluster["weight"] += 1 + (point.get("votes") or 0) * VOTE_WEIGHT
        cluster["count"] += 1
        category = point.get("category")
        if category:
            cluster["categories"][category] = cluster["categories"].get(category, 0) + 1

    ranked = sorted(clusters.values(), key=lambda c: (-c["weight"], c["lat"], c["lng"]))
    for cluster in ranked:
        cluster["weight"] = round(cluster["weight"], 2)
    return ranked


def issue_hotspots(category: Optional[str] = None) -> List[Dict[str, Any]]:
    query = db.session.query(Issue.latitude, Issue.longitude, Issue.vote_count, Issue.category).filter(
        Issue.latitude.isnot(None), Issue.longitude.isnot(None), Issue.status != "fake"
    )
    if category:
        query = query.filter(Issue.category == category)
    return cluster_hotspots(
        {"lat": lat, "lng": lng, "votes": votes, "category": cat} for lat, lng, votes, cat in query
    )
