"""Quality scoring, fingerprinting and de-duplication of candidate exercises."""

from __future__ import annotations

from dataclasses import dataclass, field

from schemas import CandidateExercise, Difficulty, DiscoveryMethod, ExerciseCategory, ScoringMode

from .contracts import DiscoveryContext
from .terms import FITNESS_COMPONENT_KEYWORDS

FALLBACK_BASELINE_SCORES: dict[DiscoveryMethod, int] = {
    DiscoveryMethod.fallback: 70,
    DiscoveryMethod.taxonomy_fallback: 80,
}

LEGACY_CATEGORIES = {
    ExerciseCategory.strength,
    ExerciseCategory.endurance,
    ExerciseCategory.balance,
    ExerciseCategory.mobility,
}
LEGACY_DIFFICULTIES = {Difficulty.beginner, Difficulty.intermediate, Difficulty.advanced}


def _clamp(score: int) -> int:
    return max(0, min(score, 100))


def _sport_matches(candidate: CandidateExercise, sport: str) -> bool:
    sport = sport.lower()
    return any(sport in application.lower() for application in candidate.sport_applications)


def _component_matches(candidate: CandidateExercise, component: str) -> bool:
    key = component.strip().lower()
    if candidate.category.value == key:
        return True
    keywords = FITNESS_COMPONENT_KEYWORDS.get(key, (key.replace("_", " "),))
    text = f"{candidate.name} {candidate.description} {candidate.category.value}".lower()
    return any(keyword in text for keyword in keywords)


def score_enhanced(candidate: CandidateExercise, context: DiscoveryContext | None = None) -> int:
    """Weighted completeness score with optional filter bonuses, clamped to [0, 100]."""
    score = 0
    if len(candidate.name) > 10:
        score += 8
    if len(candidate.description) > 50:
        score += 8
    if len(candidate.instructions) >= 4:
        score += 12
    if len(candidate.coaching_cues) >= 2:
        score += 6
    if len(candidate.common_mistakes) >= 2:
        score += 6
    if len(candidate.benefits) >= 2:
        score += 8
    if len(candidate.set_rep_guidelines) > 15:
        score += 8
    if len(candidate.progressions) >= 2:
        score += 8
    if len(candidate.safety_notes) > 10:
        score += 6
    if candidate.secondary_muscle_groups:
        score += 5
    if candidate.sport_applications:
        score += 5
    if isinstance(candidate.category, ExerciseCategory):
        score += 5
    if isinstance(candidate.difficulty, Difficulty):
        score += 5

    if context is not None:
        if context.sport_filter and _sport_matches(candidate, context.sport_filter):
            score += 5
        if context.fitness_component_filter and _component_matches(candidate, context.fitness_component_filter):
            score += 5
    return _clamp(score)


def score_legacy(candidate: CandidateExercise) -> int:
    """Coarse 20/15/20/15/10/10/5/5 bucket score."""
    score = 0
    if len(candidate.name) > 8:
        score += 20
    if len(candidate.description) > 30:
        score += 15
    if len(candidate.instructions) >= 3:
        score += 20
    if len(candidate.benefits) >= 2:
        score += 15
    if len(candidate.coaching_cues) >= 2:
        score += 10
    if len(candidate.set_rep_guidelines) > 10:
        score += 10
    if candidate.category in LEGACY_CATEGORIES:
        score += 5
    if candidate.difficulty in LEGACY_DIFFICULTIES:
        score += 5
    return _clamp(score)


def rescore(
    candidate: CandidateExercise,
    context: DiscoveryContext | None = None,
    mode: ScoringMode = ScoringMode.enhanced,
) -> CandidateExercise:
    """Return a copy of ``candidate`` with its quality score recomputed.

    Fallback candidates keep their fixed baseline since they never carry the
    fields the formulas reward.
    """
    baseline = FALLBACK_BASELINE_SCORES.get(candidate.discovery_method)
    if baseline is not None:
        score = baseline
    elif mode is ScoringMode.legacy:
        score = score_legacy(candidate)
    else:
        score = score_enhanced(candidate, context)
    return candidate.model_copy(update={"quality_score": score, "fingerprint": fingerprint(candidate)})


def fingerprint(candidate: CandidateExercise) -> str:
    """Similarity key: first three sorted name words, muscle group and category."""
    words = sorted(candidate.name.lower().split())[:3]
    return "_".join(
        ["_".join(words), candidate.primary_muscle_group.lower(), candidate.category.value.lower()]
    )


@dataclass(slots=True)
class DedupResult:
    candidates: list[CandidateExercise] = field(default_factory=list)
    duplicates_removed: int = 0


@dataclass(slots=True)
class QualityGateResult:
    kept: list[CandidateExercise] = field(default_factory=list)
    filtered: int = 0


def deduplicate(candidates: list[CandidateExercise]) -> DedupResult:
    """Collapse candidates sharing a fingerprint, keeping the highest score.

    The survivor occupies the position of the first candidate seen with that
    fingerprint; ties keep the earlier candidate.
    """
    positions: dict[str, int] = {}
    unique: list[CandidateExercise] = []
    for candidate in candidates:
        key = fingerprint(candidate)
        index = positions.get(key)
        if index is None:
            positions[key] = len(unique)
            unique.append(candidate)
        elif candidate.quality_score > unique[index].quality_score:
            unique[index] = candidate
    return DedupResult(candidates=unique, duplicates_removed=len(candidates) - len(unique))


def apply_quality_gate(candidates: list[CandidateExercise], threshold: int) -> QualityGateResult:
    kept = [candidate for candidate in candidates if candidate.quality_score >= threshold]
    return QualityGateResult(kept=kept, filtered=len(candidates) - len(kept))


def average_quality(candidates: list[CandidateExercise]) -> float:
    if not candidates:
        return 0.0
    return round(sum(candidate.quality_score for candidate in candidates) / len(candidates), 2)
