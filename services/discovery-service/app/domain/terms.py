"""Deterministic expansion of the taxonomy into search terms."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable

from schemas import SessionConfig

from .taxonomy import ExerciseFamily, RelevanceScore, SportProfile, Taxonomy

logger = logging.getLogger(__name__)

FITNESS_COMPONENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "strength": ("strength", "heavy", "max", "barbell"),
    "max_strength": ("strength", "heavy", "max", "barbell"),
    "power": ("power", "explosive", "speed", "plyometric", "ballistic"),
    "hypertrophy": ("muscle", "hypertrophy", "bodybuilding", "volume", "isolation"),
    "endurance": ("endurance", "cardio", "conditioning", "aerobic", "circuit"),
    "aerobic_endurance": ("endurance", "cardio", "aerobic", "running"),
    "strength_endurance": ("endurance", "carry", "circuit", "volume"),
    "balance": ("balance", "stability", "proprioception", "single leg"),
    "stability": ("stability", "balance", "core", "anti-rotation"),
    "mobility": ("mobility", "flexibility", "stretch", "range"),
    "flexibility": ("flexibility", "stretch", "mobility"),
    "coordination": ("coordination", "agility", "footwork", "drill"),
}

PURPOSE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "competition_lift": ("competition", "powerlifting", "olympic", "snatch", "clean", "jerk"),
    "strength_building": ("strength", "heavy", "barbell", "max"),
    "muscle_building": ("muscle", "hypertrophy", "bodybuilding", "isolation"),
    "power_development": ("power", "explosive", "jump", "plyometric", "speed"),
    "conditioning": ("conditioning", "cardio", "endurance", "hiit", "circuit"),
    "mobility_work": ("mobility", "flexibility", "stretch", "warmup"),
    "prehabilitation": ("prehab", "injury", "stability", "balance"),
    "accessory_work": ("accessory", "assistance", "isolation"),
}

VARIATION_SUFFIXES: tuple[str, ...] = (
    "variations",
    "technique",
    "progression",
    "form",
    "for beginners",
    "advanced",
)
MAX_VARIATION_BASE_TERMS = 50

FUNDAMENTAL_MOVEMENTS: tuple[str, ...] = ("squat", "deadlift", "bench", "press", "pull", "push")


@dataclass(frozen=True, slots=True)
class TermOptions:
    """Filters applied by :func:`generate_search_terms`."""

    sport_filter: str | None = None
    fitness_component_filter: str | None = None
    purpose_filter: str | None = None
    max_terms: int | None = None
    include_variations: bool = False
    priority_only: bool = False

    @classmethod
    def from_config(cls, config: SessionConfig, max_terms: int | None = None) -> "TermOptions":
        return cls(
            sport_filter=config.sport_filter,
            fitness_component_filter=config.fitness_component_filter,
            purpose_filter=config.purpose_filter,
            max_terms=max_terms if max_terms is not None else config.max_terms,
            include_variations=config.include_variations,
            priority_only=config.priority_only,
        )


@dataclass(slots=True)
class TaxonomyStats:
    families: int
    search_terms: int
    supported_sports: list[str]
    estimated_variations: int


def _keywords_for(value: str, mapping: dict[str, tuple[str, ...]]) -> tuple[str, ...]:
    key = value.strip().lower()
    return mapping.get(key, (key.replace("_", " "),))


def _family_text(family: ExerciseFamily) -> str:
    parts: list[str] = [family.base_exercise, family.description, family.category.value]
    parts.extend(component.replace("_", " ") for component in family.fitness_components)
    parts.extend(variation.display_name for variation in family.variations)
    parts.extend(entry.purpose for entry in family.sport_relevance.values() if entry.purpose)
    return " ".join(parts).lower()


def _sport_text(profile: SportProfile) -> str:
    parts: list[str] = [profile.name]
    parts.extend(need.replace("_", " ") for need in profile.needs)
    parts.extend(profile.search_terms)
    return " ".join(parts).lower()


def _passes_filters(text: str, options: TermOptions) -> bool:
    if options.fitness_component_filter:
        keywords = _keywords_for(options.fitness_component_filter, FITNESS_COMPONENT_KEYWORDS)
        if not any(keyword in text for keyword in keywords):
            return False
    if options.purpose_filter:
        keywords = _keywords_for(options.purpose_filter, PURPOSE_KEYWORDS)
        if not any(keyword in text for keyword in keywords):
            return False
    return True


def _family_terms(family: ExerciseFamily) -> Iterable[str]:
    yield from family.search_terms
    for variation in family.variations:
        yield variation.display_name.lower()


def _profile_terms(profile: SportProfile) -> Iterable[str]:
    yield from profile.search_terms
    yield from profile.derived_terms()


def _ordered(terms: Iterable[str]) -> list[str]:
    unique = {term.strip() for term in terms if term and term.strip()}
    return sorted(unique, key=lambda term: (term.lower(), term))


def generate_search_terms(
    taxonomy: Taxonomy,
    options: TermOptions | None = None,
    *,
    relevant_threshold: int = RelevanceScore.USEFUL,
    priority_threshold: int = RelevanceScore.IMPORTANT,
) -> list[str]:
    """Expand ``taxonomy`` into a sorted, de-duplicated list of search terms.

    A sport filter keeps family terms whose relevance for that sport reaches
    ``relevant_threshold`` plus the sport's own profile terms; the result is
    therefore always a subset of the unfiltered list. ``priority_only`` keeps
    family terms whose relevance reaches ``priority_threshold`` (the family's
    best score when no sport is given). Variation suffixes are appended to at
    most the first ``MAX_VARIATION_BASE_TERMS`` base terms, after the base
    terms. Unknown sports and empty taxonomies yield ``[]``.
    """
    options = options or TermOptions()
    sport = options.sport_filter.strip().lower() if options.sport_filter else None
    if sport and sport not in taxonomy.supported_sports:
        logger.info("no taxonomy entries for sport %r", sport)
        return []

    collected: list[str] = []
    for family in taxonomy.families:
        if sport and family.relevance_for(sport) < relevant_threshold:
            continue
        if options.priority_only:
            score = family.relevance_for(sport) if sport else family.best_relevance
            if score < priority_threshold:
                continue
        if not _passes_filters(_family_text(family), options):
            continue
        collected.extend(_family_terms(family))

    if not options.priority_only:
        for profile in taxonomy.sports:
            if sport and profile.id != sport:
                continue
            if not _passes_filters(_sport_text(profile), options):
                continue
            collected.extend(_profile_terms(profile))

    terms = _ordered(collected)
    if options.include_variations:
        seen = set(terms)
        for base in terms[:MAX_VARIATION_BASE_TERMS]:
            for suffix in VARIATION_SUFFIXES:
                variation = f"{base} {suffix}"
                if variation not in seen:
                    seen.add(variation)
                    terms.append(variation)

    if options.max_terms is not None:
        terms = terms[: max(options.max_terms, 0)]
    return terms


def term_priority(term: str, sport_filter: str | None = None) -> int:
    """Processing priority of ``term`` inside a batch; higher runs first."""
    lowered = term.lower()
    priority = 1
    if sport_filter and sport_filter.lower() in lowered:
        priority += 2
    if any(movement in lowered for movement in FUNDAMENTAL_MOVEMENTS):
        priority += 1
    return priority


def taxonomy_stats(taxonomy: Taxonomy) -> TaxonomyStats:
    base_terms = generate_search_terms(taxonomy)
    variation_count = sum(len(family.variations) for family in taxonomy.families)
    return TaxonomyStats(
        families=len(taxonomy.families),
        search_terms=len(base_terms),
        supported_sports=taxonomy.supported_sports,
        estimated_variations=variation_count
        + min(len(base_terms), MAX_VARIATION_BASE_TERMS) * len(VARIATION_SUFFIXES),
    )
