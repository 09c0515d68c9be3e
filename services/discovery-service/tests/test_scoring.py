from __future__ import annotations

from datetime import datetime, timezone

import pytest

from schemas import CandidateExercise, Difficulty, DiscoveryMethod, ExerciseCategory, ScoringMode

from app.domain.contracts import DiscoveryContext
from app.domain.scoring import (
    apply_quality_gate,
    average_quality,
    deduplicate,
    fingerprint,
    rescore,
    score_enhanced,
    score_legacy,
)


def make_candidate(name: str = "Squat", **overrides) -> CandidateExercise:
    data = {
        "name": name,
        "category": ExerciseCategory.strength,
        "primary_muscle_group": "Legs",
        "difficulty": Difficulty.intermediate,
        "original_search_term": "squat",
        "discovery_method": DiscoveryMethod.ai_discovery,
        "search_id": f"ai_{name.lower().replace(' ', '_')}",
        "discovered_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return CandidateExercise(**data)


def complete_candidate(**overrides) -> CandidateExercise:
    data = {
        "name": "Barbell Back Squat",
        "description": "Fundamental compound lower body movement loading the legs, hips and trunk.",
        "secondary_muscle_groups": ["Glutes", "Core"],
        "equipment": "Barbell",
        "instructions": ["Unrack the bar", "Brace", "Descend below parallel", "Drive up"],
        "coaching_cues": ["Chest up", "Knees out"],
        "common_mistakes": ["Heels rising", "Knees caving"],
        "benefits": ["Leg strength", "Trunk stiffness"],
        "set_rep_guidelines": "3-5 sets of 5 reps at RPE 8",
        "progressions": ["Goblet squat", "Front squat"],
        "sport_applications": ["tennis"],
        "safety_notes": "Use safety pins in the rack",
    }
    data.update(overrides)
    return make_candidate(**data)


def test_enhanced_score_rewards_complete_candidates():
    assert score_enhanced(complete_candidate()) == 90


def test_enhanced_score_for_minimal_candidate():
    # only category and difficulty are present
    assert score_enhanced(make_candidate()) == 10


def test_enhanced_score_context_bonuses_are_clamped():
    context = DiscoveryContext(sport_filter="tennis", fitness_component_filter="strength")

    assert score_enhanced(complete_candidate(), context) == 100


def test_enhanced_score_sport_bonus_requires_match():
    context = DiscoveryContext(sport_filter="soccer")

    assert score_enhanced(complete_candidate(), context) == 90


def test_legacy_score_buckets():
    assert score_legacy(complete_candidate()) == 100
    assert score_legacy(make_candidate()) == 10


def test_legacy_score_ignores_newer_categories():
    candidate = complete_candidate(category=ExerciseCategory.power, difficulty=Difficulty.elite)

    assert score_legacy(candidate) == 90


def test_rescore_ignores_incoming_score():
    candidate = complete_candidate(quality_score=3)

    rescored = rescore(candidate)

    assert rescored.quality_score == 90
    assert rescored.fingerprint == "back_barbell_squat_legs_strength"
    assert candidate.quality_score == 3


def test_rescore_legacy_mode():
    assert rescore(make_candidate(), mode=ScoringMode.legacy).quality_score == 10


@pytest.mark.parametrize(
    ("method", "expected"),
    [(DiscoveryMethod.fallback, 70), (DiscoveryMethod.taxonomy_fallback, 80)],
)
def test_rescore_keeps_fallback_baselines(method, expected):
    candidate = complete_candidate(discovery_method=method)

    assert rescore(candidate, DiscoveryContext(sport_filter="tennis")).quality_score == expected


def test_scores_stay_in_bounds():
    for candidate in (make_candidate(name=""), complete_candidate()):
        for mode in ScoringMode:
            score = rescore(candidate, DiscoveryContext("tennis", "strength"), mode).quality_score
            assert 0 <= score <= 100


def test_fingerprint_is_order_insensitive():
    first = make_candidate("Barbell Back Squat")
    second = make_candidate("Back Squat Barbell")

    assert fingerprint(first) == fingerprint(second) == "back_barbell_squat_legs_strength"


def test_fingerprint_uses_first_three_sorted_words():
    candidate = make_candidate("Zercher Barbell Box Squat", primary_muscle_group="Full Body")

    assert fingerprint(candidate) == "barbell_box_squat_full body_strength"


def test_deduplicate_keeps_highest_score():
    low = make_candidate("Barbell Back Squat", search_id="a", quality_score=60)
    high = make_candidate("Squat Barbell Back", search_id="b", quality_score=85)
    other = make_candidate("Front Squat", search_id="c", quality_score=60)

    result = deduplicate([low, other, high])

    assert [candidate.search_id for candidate in result.candidates] == ["b", "c"]
    assert result.candidates[0].quality_score == 85
    assert result.duplicates_removed == 1


def test_deduplicate_tie_keeps_first():
    first = make_candidate("Barbell Back Squat", search_id="a", quality_score=80)
    second = make_candidate("Barbell Back Squat", search_id="b", quality_score=80)

    assert [c.search_id for c in deduplicate([first, second]).candidates] == ["a"]


def test_deduplicate_is_idempotent():
    candidates = [
        make_candidate("Barbell Back Squat", search_id="a", quality_score=72),
        make_candidate("Back Squat Barbell", search_id="b", quality_score=85),
        make_candidate("Front Squat", search_id="c", quality_score=60),
    ]

    once = deduplicate(candidates)
    twice = deduplicate(once.candidates)

    assert twice.candidates == once.candidates
    assert twice.duplicates_removed == 0
    assert len({fingerprint(c) for c in once.candidates}) == len(once.candidates)


def test_quality_gate_is_inclusive():
    candidates = [
        make_candidate("A", search_id="a", quality_score=75),
        make_candidate("B", search_id="b", quality_score=74),
        make_candidate("C", search_id="c", quality_score=90),
    ]

    result = apply_quality_gate(candidates, 75)

    assert [c.search_id for c in result.kept] == ["a", "c"]
    assert result.filtered == 1


def test_average_quality():
    candidates = [
        make_candidate("A", search_id="a", quality_score=80),
        make_candidate("B", search_id="b", quality_score=85),
        make_candidate("C", search_id="c", quality_score=86),
    ]

    assert average_quality(candidates) == 83.67
    assert average_quality([]) == 0.0
