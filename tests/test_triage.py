"""
Rule-based triage engine
========================
Category rules and fallback bands, keyword extraction, priority scoring,
urgency and department routing, resource estimates and similar-issue ranking.
"""

import random

import pytest

from models import AIAnalysis, ISSUE_CATEGORIES, URGENCY_LEVELS
from utils import triage
from utils.errors import InvalidInput


# ---------------------------------------------------------------------------
# Category inference
# ---------------------------------------------------------------------------

def test_pothole_matches_road_rule():
    result = triage.infer_category("Pothole on Main Street", "Deep hole", rng=random.Random(1))
    assert result == {
        "category": "Road Damage",
        "confidence": 0.89,
        "alternatives": {"Sidewalk Damage": 0.42, "Construction": 0.31},
        "matched": True,
    }


@pytest.mark.parametrize(
    "title, description, expected, confidence",
    [
        ("Overflowing bins", "Garbage everywhere on the corner", "Garbage & Waste", 0.92),
        ("Burst pipe", "Flooding the basement", "Water Leakage", 0.87),
        ("Broken street lamp", "The corner is very dark", "Street Light Issue", 0.84),
        ("Fallen branch", "Blocking the footpath", "Tree Hazard", 0.91),
    ],
)
def test_each_rule_has_fixed_confidence(title, description, expected, confidence):
    result = triage.infer_category(title, description)
    assert result["category"] == expected
    assert result["confidence"] == confidence
    assert result["matched"] is True


def test_first_matching_rule_wins():
    result = triage.infer_category("Water running across the road", "")
    assert result["category"] == "Road Damage"


def test_matching_is_case_insensitive():
    assert triage.infer_category("POTHOLE", "")["category"] == "Road Damage"


def test_image_tags_participate_in_matching():
    result = triage.infer_category("Something is wrong", "Please check", tags=["fallen_tree"])
    assert result["category"] == "Tree Hazard"


@pytest.mark.parametrize("seed", range(10))
def test_fallback_stays_inside_bands(seed):
    result = triage.infer_category("Loud music every night", "Neighbours party until 3am", rng=random.Random(seed))
    assert result["matched"] is False
    assert result["category"] in triage.FALLBACK_CATEGORIES
    assert 0.75 <= result["confidence"] < 0.90
    assert len(result["alternatives"]) == 2
    for name, score in result["alternatives"].items():
        assert name in ISSUE_CATEGORIES
        assert name not in {result["category"], "Other"}
        assert 0.3 <= score < 0.6


def test_fallback_category_is_honoured():
    result = triage.infer_category(
        "Loud music every night", "", rng=random.Random(3), fallback_category="Noise Complaint"
    )
    assert result["category"] == "Noise Complaint"
    assert "Noise Complaint" not in result["alternatives"]


def test_seeded_fallback_is_reproducible():
    first = triage.infer_category("Something odd", "", rng=random.Random(11))
    second = triage.infer_category("Something odd", "", rng=random.Random(11))
    assert first == second


@pytest.mark.parametrize("title, description", [(None, "text"), ("text", 42), (["a"], "b")])
def test_non_text_input_is_rejected(title, description):
    with pytest.raises(InvalidInput):
        triage.infer_category(title, description)


def test_string_tags_are_rejected():
    with pytest.raises(InvalidInput):
        triage.infer_category("Pothole", "", tags="pothole")


def test_unknown_fallback_category_is_rejected():
    with pytest.raises(InvalidInput):
        triage.infer_category("Pothole", "", fallback_category="Potholes")


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

def test_keywords_follow_vocabulary_order():
    assert triage.extract_keywords("Pothole on road", "Serious damage") == ["pothole", "road", "damage"]


@pytest.mark.parametrize("seed", range(5))
def test_keywords_are_padded_to_minimum(seed):
    keywords = triage.extract_keywords("Help", "Please come soon", rng=random.Random(seed))
    assert len(keywords) == triage.MIN_KEYWORDS
    assert len(set(keywords)) == len(keywords)
    assert set(keywords) <= set(triage.KEYWORD_VOCABULARY)


def test_padding_keeps_matched_keywords():
    keywords = triage.extract_keywords("Graffiti", "", rng=random.Random(0))
    assert keywords[0] == "graffiti"
    assert len(keywords) == 3


# ---------------------------------------------------------------------------
# Priority and urgency
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "category, votes, expected",
    [
        ("Water Leakage", 3, 4),
        ("Road Damage", 12, 4),
        ("Tree Hazard", 11, 5),
        ("Graffiti", 0, 3),
        ("Graffiti", 5, 3),
        ("Graffiti", 6, 4),
        ("Graffiti", 10, 4),
        ("Water Leakage", 6, 5),
        ("Water Leakage", 50, 5),
    ],
)
def test_priority_scenarios(category, votes, expected):
    assert triage.priority_score(category, votes) == expected


@pytest.mark.parametrize("category", ISSUE_CATEGORIES)
def test_priority_is_bounded_and_monotonic_in_votes(category):
    previous = 0
    for votes in range(0, 30):
        score = triage.priority_score(category, votes)
        assert 1 <= score <= 5
        assert score >= previous
        previous = score


@pytest.mark.parametrize("votes", [0, 5, 6, 10, 11, 50])
@pytest.mark.parametrize("safety, other", [("Water Leakage", "Graffiti"), ("Tree Hazard", "Road Damage")])
def test_safety_category_outranks_non_safety_at_equal_votes(safety, other, votes):
    assert safety in triage.SAFETY_CATEGORIES and other not in triage.SAFETY_CATEGORIES
    assert triage.priority_score(safety, votes) > triage.priority_score(other, votes)


def test_status_does_not_change_priority():
    assert triage.priority_score("Road Damage", 7, "resolved") == triage.priority_score("Road Damage", 7)


@pytest.mark.parametrize(
    "category, votes, status",
    [
        ("Potholes", 1, None),
        ("Road Damage", -1, None),
        ("Road Damage", "3", None),
        ("Road Damage", True, None),
        ("Road Damage", 2.5, None),
        ("Road Damage", 1, "closed"),
    ],
)
def test_priority_rejects_invalid_input(category, votes, status):
    with pytest.raises(InvalidInput):
        triage.priority_score(category, votes, status)


def test_urgency_levels_map_one_to_one():
    assert [triage.urgency_level(p) for p in range(1, 6)] == list(URGENCY_LEVELS)
    assert triage.urgency_level(4) == "High"


def test_impact_assessment_tracks_priority():
    assert triage.impact_assessment(5) == "Critical impact requiring immediate attention"
    assert triage.impact_assessment(1) == "Minimal impact on community"


# ---------------------------------------------------------------------------
# Departments and resources
# ---------------------------------------------------------------------------

def test_departments_for_known_and_unlisted_categories():
    assert triage.assign_departments("Water Leakage") == ["Utilities", "Public Works"]
    assert triage.assign_departments("Noise Complaint") == ["Public Works"]


@pytest.mark.parametrize("category", ISSUE_CATEGORIES)
def test_departments_are_deterministic_and_never_empty(category):
    first = triage.assign_departments(category)
    assert first
    assert first == triage.assign_departments(category)


def test_department_list_is_a_copy():
    departments = triage.assign_departments("Road Damage")
    departments.append("Mutated")
    assert "Mutated" not in triage.assign_departments("Road Damage")


def test_lookup_tables_only_name_known_categories():
    known = set(ISSUE_CATEGORIES)
    assert set(triage.DEPARTMENTS) <= known
    assert set(triage.EQUIPMENT) <= known
    assert set(triage.FALLBACK_CATEGORIES) <= known
    assert triage.SAFETY_CATEGORIES <= known
    for _keywords, category, _confidence, alternatives in triage.CATEGORY_RULES:
        assert category in known
        assert set(alternatives) <= known


@pytest.mark.parametrize("seed", range(5))
def test_resource_estimates_stay_in_range(seed):
    resources = triage.estimate_resources("Road Damage", rng=random.Random(seed))
    assert 1 <= resources["personnel"] <= 3
    assert 2 <= resources["estimatedHours"] <= 9
    assert resources["equipmentNeeded"] == ["Asphalt", "Compactor", "Truck"]
    assert 24 <= triage.estimate_response_time(rng=random.Random(seed)) <= 71


def test_default_equipment_for_unlisted_category():
    assert triage.estimate_resources("Graffiti")["equipmentNeeded"] == ["Basic Tools", "Safety Equipment"]


# ---------------------------------------------------------------------------
# Similar issues and duplicates
# ---------------------------------------------------------------------------

BASE_ISSUE = {
    "id": "a",
    "category": "Road Damage",
    "title": "Pothole on Main Street",
    "description": "Deep pothole",
}


def test_similar_issues_contract():
    candidates = [
        dict(BASE_ISSUE),
        {**BASE_ISSUE, "id": "b"},
        {**BASE_ISSUE, "id": "c", "category": "Graffiti"},
        {"id": "d", "category": "Road Damage", "title": "Cracked asphalt", "description": "Across two lanes"},
    ]
    scores = triage.score_similar_issues(BASE_ISSUE, candidates)
    assert list(scores) == ["b", "d"]
    assert scores["b"] == pytest.approx(0.8)
    assert scores["d"] == pytest.approx(0.3)
    assert all(0.3 <= value <= 0.8 for value in scores.values())


def test_similar_issues_respect_limit():
    candidates = [{**BASE_ISSUE, "id": str(n)} for n in range(10)]
    assert len(triage.score_similar_issues(BASE_ISSUE, candidates, limit=3)) == 3
    assert triage.score_similar_issues(BASE_ISSUE, candidates, limit=0) == {}


def test_duplicate_score_is_zero_without_similar_issues():
    assert triage.duplicate_score({}) == 0.0


@pytest.mark.parametrize("seed", range(5))
def test_duplicate_score_is_bounded(seed):
    score = triage.duplicate_score({"b": 0.8}, rng=random.Random(seed))
    assert 0.0 <= score < 0.7


# ---------------------------------------------------------------------------
# Full analysis payload
# ---------------------------------------------------------------------------

def test_build_analysis_for_water_leak():
    issue = {
        "id": "w1",
        "title": "Burst pipe flooding the sidewalk",
        "description": "Water has been running since morning",
        "category": "Water Leakage",
        "status": "new",
        "vote_count": 3,
    }
    analysis = triage.build_analysis(issue, [], rng=random.Random(5))

    assert set(analysis) == set(AIAnalysis.PAYLOAD_FIELDS) | {"source"}
    assert analysis["source"] == "heuristic"
    assert analysis["predicted_category"] == "Water Leakage"
    assert analysis["priority_score"] == 4
    assert analysis["urgency_level"] == "High"
    assert analysis["assigned_departments"] == ["Utilities", "Public Works"]
    assert analysis["similar_issue_ids"] == []
    assert analysis["duplicate_score"] == 0.0
    assert len(analysis["extracted_keywords"]) >= 3


def test_build_analysis_falls_back_to_reported_category():
    issue = {
        "id": "n1",
        "title": "Loud music",
        "description": "Every weekend after midnight",
        "category": "Noise Complaint",
        "vote_count": 0,
    }
    analysis = triage.build_analysis(issue, [], rng=random.Random(2))
    assert analysis["predicted_category"] == "Noise Complaint"
    assert 0.75 <= analysis["category_confidence"] < 0.90
    assert analysis["priority_score"] == 3


def test_build_analysis_is_reproducible_with_seed():
    candidates = [{**BASE_ISSUE, "id": "b"}]
    first = triage.build_analysis({**BASE_ISSUE, "vote_count": 2}, candidates, rng=random.Random(42))
    second = triage.build_analysis({**BASE_ISSUE, "vote_count": 2}, candidates, rng=random.Random(42))
    assert first == second
    assert first["similar_issue_ids"] == ["b"]
    assert set(first["similarity_scores"]) == set(first["similar_issue_ids"])


def test_suggestion_includes_keywords():
    suggestion = triage.suggest_for_report("Broken street lamp", "dark corner", rng=random.Random(0))
    assert suggestion["category"] == "Street Light Issue"
    assert "street" in suggestion["keywords"]
    assert len(suggestion["keywords"]) >= 3
