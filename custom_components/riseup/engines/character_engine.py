"""Character Engine - Pure logic for avatar progression.

A day's completion ratio moves the character's experience, health, and mood;
filling the experience bar levels the character up.

ARCHITECTURE: This is a pure logic engine with NO Home Assistant dependencies.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .. import const

if TYPE_CHECKING:
    from ..type_defs import CharacterState


class CharacterEngine:
    """Pure logic engine for character progression.

    All methods are static - no instance state.
    """

    @staticmethod
    def default_character() -> CharacterState:
        """Return a fresh level 1 character."""
        return dict(const.DEFAULT_CHARACTER_STATE)  # type: ignore[return-value]

    @staticmethod
    def normalize_character(character: Mapping[str, Any] | None) -> CharacterState:
        """Return a character with every field present."""
        result = CharacterEngine.default_character()
        if character:
            for key in result:
                if character.get(key) is not None:
                    result[key] = character[key]  # type: ignore[literal-required]
        return result

    @staticmethod
    def apply_daily_progress(
        character: Mapping[str, Any] | None, completed: int, total: int
    ) -> CharacterState:
        """Apply one day's habit results to the character.

        Experience moves by EXPERIENCE_PER_HABIT per completed habit and
        -EXPERIENCE_PENALTY_PER_MISSED per missed one, clamped to the bar.
        A ratio >= STRONG_COMPLETION_RATIO heals and makes the character strong,
        >= NORMAL_COMPLETION_RATIO keeps it normal, anything lower hurts it
        (never below MIN_HEALTH) and makes it weak. A full bar levels up.

        A day with no habits leaves the character unchanged.
        """
        result = CharacterEngine.normalize_character(character)
        if total <= 0:
            return result

        completed = max(0, min(completed, total))
        ratio = completed / total

        exp_change = (
            completed * const.EXPERIENCE_PER_HABIT
            - (total - completed) * const.EXPERIENCE_PENALTY_PER_MISSED
        )
        result[const.FIELD_EXPERIENCE] = max(
            0,
            min(
                result[const.FIELD_MAX_EXPERIENCE],
                result[const.FIELD_EXPERIENCE] + exp_change,
            ),
        )

        if ratio >= const.STRONG_COMPLETION_RATIO:
            result[const.FIELD_HEALTH] = min(
                result[const.FIELD_MAX_HEALTH],
                result[const.FIELD_HEALTH] + const.HEALTH_GAIN_STRONG,
            )
            result[const.FIELD_STATE] = const.CHARACTER_STATE_STRONG
        elif ratio >= const.NORMAL_COMPLETION_RATIO:
            result[const.FIELD_STATE] = const.CHARACTER_STATE_NORMAL
        else:
            result[const.FIELD_HEALTH] = max(
                const.MIN_HEALTH, result[const.FIELD_HEALTH] - const.HEALTH_LOSS_WEAK
            )
            result[const.FIELD_STATE] = const.CHARACTER_STATE_WEAK

        if result[const.FIELD_EXPERIENCE] >= result[const.FIELD_MAX_EXPERIENCE]:
            const.LOGGER.debug(
                "DEBUG: Character leveled up to %s", result[const.FIELD_LEVEL] + 1
            )
            result[const.FIELD_LEVEL] += 1
            result[const.FIELD_EXPERIENCE] = 0
            result[const.FIELD_MAX_EXPERIENCE] += const.LEVEL_UP_MAX_EXPERIENCE_STEP
            result[const.FIELD_MAX_HEALTH] += const.LEVEL_UP_MAX_HEALTH_STEP
            result[const.FIELD_HEALTH] = result[const.FIELD_MAX_HEALTH]

        return result
