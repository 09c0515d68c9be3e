"""Prompt text sent to the text-generation provider."""

from __future__ import annotations

from .contracts import DiscoveryContext

SYSTEM_PROMPT = (
    "You are a world-class exercise science researcher and sports performance expert "
    "specializing in comprehensive exercise discovery. Respond with a single JSON object."
)

RESPONSE_SCHEMA = """{
  "exercises": [
    {
      "name": "Specific Exercise Name",
      "description": "Detailed description (50+ words)",
      "category": "strength|power|endurance|balance|mobility|sport_specific",
      "primaryMuscleGroup": "specific muscle group",
      "secondaryMuscleGroups": ["secondary muscle 1", "secondary muscle 2"],
      "equipment": "exact equipment needed",
      "difficulty": "beginner|intermediate|advanced|elite",
      "instructions": ["step 1", "step 2", "step 3", "step 4"],
      "coachingCues": ["cue 1", "cue 2", "cue 3"],
      "commonMistakes": ["mistake 1", "mistake 2"],
      "benefits": ["benefit 1", "benefit 2"],
      "setRepGuidelines": "detailed sets/reps/tempo",
      "progressions": ["easier variation", "harder variation"],
      "sportApplications": ["sport 1", "sport 2"],
      "safetyNotes": "safety considerations"
    }
  ]
}"""

REQUIREMENTS = (
    "Each exercise must be unique and specific",
    "Include detailed execution steps (minimum 4 steps)",
    "Specify exact equipment needed",
    "Include coaching cues and common mistakes",
    "Provide progression/regression options",
    "Identify target muscle groups precisely",
    "Include sport-specific applications if relevant",
)


def build_discovery_prompt(term: str, max_exercises: int, context: DiscoveryContext | None = None) -> str:
    """Render the user prompt for one search term."""
    lines = [
        f'You are discovering exercises for the search term: "{term}"',
        "",
        f"Find {max_exercises} SPECIFIC, HIGH-QUALITY exercises.",
    ]
    if context is not None:
        constraints = []
        if context.sport_filter:
            constraints.append(f"Sport Focus: {context.sport_filter}")
        if context.fitness_component_filter:
            constraints.append(f"Fitness Component: {context.fitness_component_filter}")
        if context.purpose_filter:
            constraints.append(f"Training Purpose: {context.purpose_filter}")
        if constraints:
            lines.append("")
            lines.extend(constraints)

    lines.append("")
    lines.append("REQUIREMENTS:")
    lines.extend(f"- {requirement}" for requirement in REQUIREMENTS)
    lines.append("")
    lines.append("Return JSON format:")
    lines.append(RESPONSE_SCHEMA)
    lines.append("")
    lines.append(f"Return ONLY valid JSON with {max_exercises} exercises.")
    return "\n".join(lines)
