"""Immutable exercise taxonomy loaded once at startup and injected into the pipeline."""

from __future__ import annotations

from enum import IntEnum
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from schemas import Difficulty, ExerciseCategory

logger = logging.getLogger(__name__)


class RelevanceScore(IntEnum):
    """Sport relevance scale used by the taxonomy."""

    ESSENTIAL = 10
    VERY_IMPORTANT = 9
    IMPORTANT = 8
    BENEFICIAL = 7
    USEFUL = 6
    SUPPLEMENTARY = 5
    MINIMAL = 4


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SportScore(_Frozen):
    score: int = Field(..., ge=1, le=10)
    purpose: str | None = None


class Variation(_Frozen):
    key: str
    name: str | None = None
    group: str | None = None
    equipment: str | None = None
    difficulty: Difficulty | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.key.replace("_", " ").title()


class ExerciseFamily(_Frozen):
    """A canonical movement with its variations, search terms and sport relevance."""

    key: str
    base_exercise: str
    description: str = ""
    category: ExerciseCategory = ExerciseCategory.strength
    primary_muscle_group: str = "Full Body"
    secondary_muscle_groups: tuple[str, ...] = ()
    equipment: str = "Variable"
    difficulty: Difficulty = Difficulty.intermediate
    sport_relevance: dict[str, SportScore] = Field(default_factory=dict)
    fitness_components: tuple[str, ...] = ()
    variations: tuple[Variation, ...] = ()
    search_terms: tuple[str, ...] = ()

    def relevance_for(self, sport: str) -> int:
        """Return the family's relevance score for ``sport`` or 0 when untagged."""
        entry = self.sport_relevance.get(sport.lower())
        return entry.score if entry else 0

    @property
    def best_relevance(self) -> int:
        return max((entry.score for entry in self.sport_relevance.values()), default=0)

    def matches_term(self, term: str) -> bool:
        """Substring match in either direction against the family's search terms."""
        lowered = term.strip().lower()
        if not lowered:
            return False
        for search_term in self.search_terms:
            candidate = search_term.lower()
            if lowered in candidate or candidate in lowered:
                return True
        return False


class SportProfile(_Frozen):
    """Training needs of one sport, expanded into additional search terms."""

    id: str
    name: str
    group: str | None = None
    primary_needs: tuple[str, ...] = ()
    strength_foci: tuple[str, ...] = ()
    endurance_needs: tuple[str, ...] = ()
    balance_needs: tuple[str, ...] = ()
    mobility_needs: tuple[str, ...] = ()
    search_terms: tuple[str, ...] = ()

    @property
    def needs(self) -> tuple[str, ...]:
        return (
            self.primary_needs
            + self.strength_foci
            + self.endurance_needs
            + self.balance_needs
            + self.mobility_needs
        )

    def derived_terms(self) -> list[str]:
        """Terms built from the profile's strength, mobility and balance needs."""
        terms: list[str] = []
        for focus in self.strength_foci:
            label = focus.replace("_", " ")
            terms.append(f"{label} exercises")
            terms.append(f"{label} training for {self.name.lower()}")
        for need in self.mobility_needs:
            terms.append(f"{need.replace('_', ' ')} stretches")
        for need in self.balance_needs:
            terms.append(f"{need.replace('_', ' ')} training")
        return terms


class Taxonomy(_Frozen):
    """Catalog of exercise families and sport profiles."""

    families: tuple[ExerciseFamily, ...] = ()
    sports: tuple[SportProfile, ...] = ()

    def family(self, key: str) -> ExerciseFamily | None:
        for family in self.families:
            if family.key == key:
                return family
        return None

    def sport(self, sport_id: str) -> SportProfile | None:
        lowered = sport_id.lower()
        for profile in self.sports:
            if profile.id == lowered:
                return profile
        return None

    def match_family(self, term: str) -> ExerciseFamily | None:
        """First family, in catalog order, whose search terms match ``term``."""
        for family in self.families:
            if family.matches_term(term):
                return family
        return None

    @property
    def supported_sports(self) -> list[str]:
        sports = {profile.id for profile in self.sports}
        for family in self.families:
            sports.update(family.sport_relevance)
        return sorted(sports)


def load_taxonomy(path: str | Path) -> Taxonomy:
    """Read and validate a taxonomy JSON document."""
    source = Path(path)
    taxonomy = Taxonomy.model_validate_json(source.read_text(encoding="utf-8"))
    logger.info(
        "loaded taxonomy from %s: %d families, %d sport profiles",
        source,
        len(taxonomy.families),
        len(taxonomy.sports),
    )
    return taxonomy
