"""Domain-level contracts shared by the enricher, scorer and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from schemas import Difficulty, ExerciseCategory, ScoringMode, SessionConfig


@dataclass(frozen=True, slots=True)
class DiscoveryContext:
    """Active filters for a run, forwarded to prompts and the scorer."""

    sport_filter: str | None = None
    fitness_component_filter: str | None = None
    purpose_filter: str | None = None
    scoring_mode: ScoringMode = ScoringMode.enhanced

    @classmethod
    def from_config(cls, config: SessionConfig) -> "DiscoveryContext":
        return cls(
            sport_filter=config.sport_filter,
            fitness_component_filter=config.fitness_component_filter,
            purpose_filter=config.purpose_filter,
            scoring_mode=config.scoring_mode,
        )


class AIExercise(BaseModel):
    """One exercise as the text-generation provider must return it.

    Unknown keys (including any provider-side ``qualityScore``) are dropped.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: ExerciseCategory
    primary_muscle_group: str = Field(..., min_length=1, alias="primaryMuscleGroup")
    secondary_muscle_groups: list[str] = Field(default_factory=list, alias="secondaryMuscleGroups")
    equipment: str
    difficulty: Difficulty
    instructions: list[str] = Field(..., min_length=1)
    coaching_cues: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("coachingCues", "coachingTips", "coaching_cues"),
    )
    common_mistakes: list[str] = Field(default_factory=list, alias="commonMistakes")
    benefits: list[str] = Field(default_factory=list)
    set_rep_guidelines: str = Field("", alias="setRepGuidelines")
    progressions: list[str] = Field(default_factory=list)
    sport_applications: list[str] = Field(default_factory=list, alias="sportApplications")
    safety_notes: str = Field("", alias="safetyNotes")


class AIDiscoveryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    exercises: list[AIExercise]
