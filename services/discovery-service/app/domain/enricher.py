"""Turn one search term into candidate exercises via the LLM or the taxonomy fallback."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import time
from typing import Callable
import uuid

from pydantic import ValidationError

from schemas import (
    CandidateExercise,
    Difficulty,
    DiscoveryMethod,
    ExerciseCategory,
    SportRelevance,
)

from ..limits.factory import RateLimiter
from ..metrics import CANDIDATES_DISCOVERED, PROVIDER_FALLBACKS
from ..providers.errors import MalformedResponseError, QuotaExhausted
from ..providers.llm import TextGenerationProvider
from ..providers.retry import RetryPolicy, call_with_fallback
from .contracts import AIDiscoveryResponse, AIExercise, DiscoveryContext
from .prompts import SYSTEM_PROMPT, build_discovery_prompt
from .scoring import FALLBACK_BASELINE_SCORES, fingerprint, rescore
from .taxonomy import ExerciseFamily, RelevanceScore, Taxonomy, Variation

logger = logging.getLogger(__name__)

SPORT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "powerlifting": ("squat", "bench", "deadlift", "powerlifting", "max strength"),
    "bodybuilding": ("muscle", "hypertrophy", "isolation", "bodybuilding"),
    "crossfit": ("functional", "crossfit", "metcon", "wod"),
    "weightlifting": ("clean", "jerk", "snatch", "olympic"),
    "strongman": ("carry", "yoke", "atlas", "strongman"),
    "tennis": ("lateral", "rotation", "agility", "tennis"),
    "basketball": ("jump", "vertical", "explosive", "basketball"),
    "soccer": ("sprint", "agility", "endurance", "soccer", "football"),
    "running": ("endurance", "cardio", "running", "jogging"),
    "swimming": ("upper body", "lat", "swimming", "stroke"),
}

# (keywords, category) checked in order; default strength
TERM_CATEGORIES: tuple[tuple[tuple[str, ...], ExerciseCategory], ...] = (
    (("strength", "squat", "deadlift"), ExerciseCategory.strength),
    (("power", "explosive", "jump"), ExerciseCategory.power),
    (("cardio", "endurance", "running"), ExerciseCategory.endurance),
    (("balance", "stability"), ExerciseCategory.balance),
    (("mobility", "flexibility", "stretch"), ExerciseCategory.mobility),
)

TERM_MUSCLE_GROUPS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("squat", "leg"), "Legs"),
    (("bench", "chest", "push"), "Chest"),
    (("deadlift", "back", "pull"), "Back"),
    (("shoulder", "press"), "Shoulders"),
    (("core", "abs"), "Core"),
    (("arm", "bicep", "tricep"), "Arms"),
)

VARIATION_TYPES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("pause",), "pause"),
    (("pin",), "pin"),
    (("deficit",), "deficit"),
    (("close", "wide"), "grip_variation"),
    (("single", "unilateral"), "unilateral"),
    (("explosive", "speed"), "tempo"),
)

PURPOSES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("competition", "powerlifting"), "competition_lift"),
    (("muscle", "hypertrophy"), "muscle_building"),
    (("power", "explosive"), "power_development"),
    (("conditioning", "cardio"), "conditioning"),
    (("mobility", "flexibility"), "mobility_work"),
)


def _first_match(text: str, table, default):
    for keywords, value in table:
        if any(keyword in text for keyword in keywords):
            return value
    return default


def capitalize_words(term: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in term.split())


def infer_category(term: str) -> ExerciseCategory:
    return _first_match(term.lower(), TERM_CATEGORIES, ExerciseCategory.strength)


def infer_muscle_group(term: str) -> str:
    return _first_match(term.lower(), TERM_MUSCLE_GROUPS, "Full Body")


def purpose_for_sport(name: str, sport_id: str) -> str:
    lowered = name.lower()
    if sport_id == "powerlifting" and any(lift in lowered for lift in ("squat", "bench", "deadlift")):
        return "competition_lift"
    if "power" in lowered or "explosive" in lowered:
        return "power_development"
    if "muscle" in lowered or "hypertrophy" in lowered:
        return "muscle_building"
    return "strength_building"


def relevant_sports(candidate: CandidateExercise, primary_sport: str | None = None) -> list[SportRelevance]:
    """Keyword-based sport tagging, strongest match first."""
    text = " ".join([candidate.name, candidate.description, *candidate.sport_applications]).lower()
    primary = primary_sport.lower() if primary_sport else None
    tagged: list[SportRelevance] = []
    for sport_id, keywords in SPORT_KEYWORDS.items():
        matches = [keyword for keyword in keywords if keyword in text]
        if not matches:
            continue
        score = min(len(matches) * 2 + 4, 10)
        if sport_id == primary:
            score = min(score + 2, 10)
        tagged.append(
            SportRelevance(
                sport_id=sport_id,
                relevance_score=score,
                purpose=purpose_for_sport(candidate.name, sport_id),
                confidence=round(len(matches) / len(keywords), 3),
                is_primary_target=sport_id == primary,
            )
        )
    return sorted(tagged, key=lambda entry: entry.relevance_score, reverse=True)


def fitness_components(candidate: CandidateExercise) -> list[str]:
    text = f"{candidate.name} {candidate.description} {candidate.category.value}".lower()
    category = candidate.category
    components: list[str] = []
    if "strength" in text or category is ExerciseCategory.strength:
        components.append("max_strength")
    if "power" in text or "explosive" in text or category is ExerciseCategory.power:
        components.append("power")
    if "muscle" in text or "hypertrophy" in text:
        components.append("hypertrophy")
    if "endurance" in text or "cardio" in text or category is ExerciseCategory.endurance:
        components.append("aerobic_endurance")
    if "balance" in text or "stability" in text or category is ExerciseCategory.balance:
        components.append("balance")
    if "mobility" in text or "flexibility" in text or category is ExerciseCategory.mobility:
        components.append("mobility")
    if "coordination" in text or "agility" in text:
        components.append("coordination")
    return components


def variation_type(candidate: CandidateExercise) -> str:
    return _first_match(candidate.name.lower(), VARIATION_TYPES, "standard")


def exercise_purpose(candidate: CandidateExercise) -> str:
    return _first_match(candidate.name.lower(), PURPOSES, "strength_building")


@dataclass(slots=True)
class EnrichmentOutcome:
    """Candidates for one term plus how they were obtained."""

    term: str
    candidates: list[CandidateExercise] = field(default_factory=list)
    method: DiscoveryMethod = DiscoveryMethod.fallback
    ai_calls: int = 0
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


class ExerciseEnricher:
    """Discover candidates for a search term, degrading to the taxonomy fallback."""

    def __init__(
        self,
        taxonomy: Taxonomy,
        provider: TextGenerationProvider | None = None,
        *,
        policy: RetryPolicy | None = None,
        quota: RateLimiter | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._taxonomy = taxonomy
        self._provider = provider
        self._policy = policy or RetryPolicy()
        self._quota = quota
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._sleep = sleep
        self.api_calls = 0
        if provider is None:
            logger.warning("no AI credential configured; exercise discovery will use the taxonomy fallback")

    @property
    def ai_enabled(self) -> bool:
        return self._provider is not None

    def discover_exercises_for_term(
        self,
        term: str,
        max_exercises: int = 3,
        context: DiscoveryContext | None = None,
    ) -> list[CandidateExercise]:
        return self.enrich(term, max_exercises, context).candidates

    def enrich(
        self,
        term: str,
        max_exercises: int = 3,
        context: DiscoveryContext | None = None,
    ) -> EnrichmentOutcome:
        """Return candidates for ``term`` along with any provider degradation."""
        context = context or DiscoveryContext()
        if self._provider is None:
            candidates = self.fallback(term, max_exercises, context)
            return self._finish(EnrichmentOutcome(term=term, candidates=candidates, method=candidates[0].discovery_method))

        provider = self._provider
        calls_before = self.api_calls
        outcome = call_with_fallback(
            lambda: self._discover_remote(provider, term, max_exercises, context),
            lambda exc: self.fallback(term, max_exercises, context),
            self._policy,
            provider=provider.name,
            sleep=self._sleep,
        )
        result = EnrichmentOutcome(
            term=term,
            candidates=outcome.value,
            method=outcome.value[0].discovery_method if outcome.value else DiscoveryMethod.ai_discovery,
            ai_calls=self.api_calls - calls_before,
        )
        if outcome.error is not None:
            result.error = str(outcome.error)
            PROVIDER_FALLBACKS.labels(provider=provider.name, reason=type(outcome.error).__name__).inc()
        return self._finish(result)

    def _finish(self, outcome: EnrichmentOutcome) -> EnrichmentOutcome:
        if outcome.candidates:
            CANDIDATES_DISCOVERED.labels(method=outcome.method.value).inc(len(outcome.candidates))
        logger.info(
            "term %r produced %d candidate(s) via %s",
            outcome.term,
            len(outcome.candidates),
            outcome.method.value,
        )
        return outcome

    def _discover_remote(
        self,
        provider: TextGenerationProvider,
        term: str,
        max_exercises: int,
        context: DiscoveryContext,
    ) -> list[CandidateExercise]:
        if self._quota is not None and not self._quota.allow(provider.name):
            raise QuotaExhausted(provider.name, "request quota exhausted for the current window")

        self.api_calls += 1
        raw = provider.complete(
            SYSTEM_PROMPT,
            build_discovery_prompt(term, max_exercises, context),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        response = self._parse(provider.name, raw)
        discovered_at = datetime.now(timezone.utc)
        try:
            return [
                self._from_ai(exercise, term, discovered_at, context)
                for exercise in response.exercises[:max_exercises]
            ]
        except ValidationError as exc:
            raise MalformedResponseError(
                provider.name, f"exercise rejected by candidate schema ({exc.error_count()} errors)"
            ) from exc

    @staticmethod
    def _parse(provider_name: str, raw: str) -> AIDiscoveryResponse:
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise MalformedResponseError(provider_name, f"response is not valid JSON: {exc}") from exc
        try:
            response = AIDiscoveryResponse.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(
                provider_name, f"response failed schema validation ({exc.error_count()} errors)"
            ) from exc
        if not response.exercises:
            raise MalformedResponseError(provider_name, "response contained no exercises")
        return response

    def _from_ai(
        self,
        exercise: AIExercise,
        term: str,
        discovered_at: datetime,
        context: DiscoveryContext,
    ) -> CandidateExercise:
        candidate = CandidateExercise(
            **exercise.model_dump(),
            original_search_term=term,
            discovery_method=DiscoveryMethod.ai_discovery,
            search_id=f"ai_{uuid.uuid4().hex}",
            discovered_at=discovered_at,
        )
        family = self._taxonomy.match_family(candidate.name)
        candidate = rescore(candidate, context, context.scoring_mode)
        return self._annotate(candidate, context, family.key if family else None)

    def _annotate(
        self,
        candidate: CandidateExercise,
        context: DiscoveryContext,
        family_key: str | None,
        variation_kind: str | None = None,
    ) -> CandidateExercise:
        return candidate.model_copy(
            update={
                "relevant_sports": relevant_sports(candidate, context.sport_filter),
                "fitness_components": fitness_components(candidate),
                "taxonomy_family": family_key,
                "variation_type": variation_kind or variation_type(candidate),
                "exercise_purpose": exercise_purpose(candidate),
                "fingerprint": fingerprint(candidate),
            }
        )

    # fallback

    def fallback(
        self,
        term: str,
        max_exercises: int = 3,
        context: DiscoveryContext | None = None,
    ) -> list[CandidateExercise]:
        """Deterministic candidates for ``term`` built from the taxonomy."""
        context = context or DiscoveryContext()
        discovered_at = datetime.now(timezone.utc)
        family = self._taxonomy.match_family(term)
        if family is not None:
            return self._family_candidates(family, term, max_exercises, discovered_at, context)
        return [
            self._generic_candidate(term, index, discovered_at, context)
            for index in range(max(max_exercises, 1))
        ]

    def _family_candidates(
        self,
        family: ExerciseFamily,
        term: str,
        max_exercises: int,
        discovered_at: datetime,
        context: DiscoveryContext,
    ) -> list[CandidateExercise]:
        candidates = [
            self._annotate(
                self._family_candidate(family, None, term, discovered_at),
                context,
                family.key,
                "standard",
            )
        ]
        if max_exercises > 1:
            variation = next(
                (v for v in family.variations if v.display_name.lower() != family.base_exercise.lower()),
                None,
            )
            if variation is not None:
                candidates.append(
                    self._annotate(
                        self._family_candidate(family, variation, term, discovered_at),
                        context,
                        family.key,
                        variation.group or "variation",
                    )
                )
        return candidates

    def _family_candidate(
        self,
        family: ExerciseFamily,
        variation: Variation | None,
        term: str,
        discovered_at: datetime,
    ) -> CandidateExercise:
        name = variation.display_name if variation else family.base_exercise
        equipment = (variation.equipment if variation else None) or family.equipment
        difficulty = (variation.difficulty if variation else None) or family.difficulty
        description = family.description or f"{family.base_exercise} movement pattern"
        if variation is not None:
            description = f"{name}: a variation of the {family.base_exercise}. {description}."
        sports = sorted(
            (sport for sport, entry in family.sport_relevance.items() if entry.score >= RelevanceScore.USEFUL),
            key=lambda sport: (-family.sport_relevance[sport].score, sport),
        )
        return CandidateExercise(
            name=name,
            description=description,
            category=family.category,
            primary_muscle_group=family.primary_muscle_group,
            secondary_muscle_groups=list(family.secondary_muscle_groups),
            equipment=equipment,
            difficulty=difficulty,
            instructions=[
                f"Set up for the {name.lower()} with the {equipment.lower()} in position",
                "Brace the core and establish a neutral spine",
                "Perform the movement through the full controlled range of motion",
                "Return to the start position and reset before the next repetition",
            ],
            coaching_cues=["Control the eccentric", "Keep the core braced"],
            common_mistakes=["Losing positional tension", "Rushing the repetition"],
            benefits=[component.replace("_", " ").capitalize() for component in family.fitness_components[:3]],
            set_rep_guidelines="3-5 sets of 5-8 repetitions",
            progressions=[v.display_name for v in family.variations[:2]],
            sport_applications=sports,
            safety_notes="Warm up thoroughly and progress load gradually",
            quality_score=FALLBACK_BASELINE_SCORES[DiscoveryMethod.taxonomy_fallback],
            original_search_term=term,
            discovery_method=DiscoveryMethod.taxonomy_fallback,
            search_id=f"taxonomy_{uuid.uuid4().hex}",
            discovered_at=discovered_at,
        )

    def _generic_candidate(
        self,
        term: str,
        index: int,
        discovered_at: datetime,
        context: DiscoveryContext,
    ) -> CandidateExercise:
        suffix = "Foundation" if index == 0 else f"Variation {index}"
        candidate = CandidateExercise(
            name=f"{capitalize_words(term)} {suffix}",
            description=(
                f"Comprehensive {term} exercise designed for performance development and skill "
                "acquisition. It targets the key movement patterns and muscle groups of the search term."
            ),
            category=infer_category(term),
            primary_muscle_group=infer_muscle_group(term),
            equipment="Variable",
            difficulty=Difficulty.intermediate if index == 0 else Difficulty.advanced,
            instructions=[
                f"Prepare for the {term} exercise",
                "Establish proper positioning and posture",
                "Execute the movement with controlled technique",
                "Complete the full range of motion",
            ],
            coaching_cues=["Focus on form", "Control the movement", "Breathe consistently"],
            common_mistakes=["Rushing the movement", "Poor posture"],
            benefits=["Enhanced performance", "Improved movement quality"],
            set_rep_guidelines="3 sets of 8-12 repetitions",
            progressions=["Master the bodyweight version", "Add external resistance"],
            sport_applications=[context.sport_filter] if context.sport_filter else [],
            safety_notes="Start with lighter loads and focus on proper form",
            quality_score=FALLBACK_BASELINE_SCORES[DiscoveryMethod.fallback],
            original_search_term=term,
            discovery_method=DiscoveryMethod.fallback,
            search_id=f"fallback_{uuid.uuid4().hex}",
            discovered_at=discovered_at,
        )
        return self._annotate(candidate, context, None)
