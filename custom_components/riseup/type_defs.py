"""Type definitions for RiseUp data structures.

Entities keep the camelCase wire names they carry in the remote document store,
so the same dictionaries travel unchanged between the remote store, the local
store, and the export envelope.

TypedDict is used for structures whose keys are fixed. Documents read back from
the remote store may carry extra bookkeeping fields (userId, updatedAt, version),
which is why engine code reads them with .get() rather than trusting these shapes.

IMPORTANT: Only import from typing here. Engines import this module.
"""

from typing import Any, Literal, NotRequired, TypedDict

# =============================================================================
# Type Aliases (for readability)
# =============================================================================

UserId = str
HabitId = str
ISODatetime = str  # ISO 8601 datetime string "2026-01-18T12:30:00+00:00"
ISODate = str  # ISO 8601 date string (no time) "2026-01-18"

CharacterMood = Literal["strong", "normal", "weak"]
Frequency = Literal["daily", "weekly", "monthly"]
Trend = Literal["improving", "stable", "declining"]


# =============================================================================
# Entities
# =============================================================================


class CharacterState(TypedDict):
    """Gamified avatar, one per user."""

    level: int
    health: int
    maxHealth: int
    experience: int
    maxExperience: int
    state: CharacterMood


class Habit(TypedDict):
    """Built-in habit record."""

    id: HabitId
    name: str
    icon: NotRequired[str]
    completed: bool
    streak: int
    lastCompleted: NotRequired[ISODatetime]


class CustomHabit(TypedDict):
    """User-defined habit with its own frequency and targets."""

    id: HabitId
    name: str
    description: NotRequired[str]
    icon: str
    color: str
    frequency: Frequency
    targetCount: int
    currentCount: int
    streak: int
    bestStreak: int
    totalCompletions: int
    completed: bool
    lastCompleted: NotRequired[ISODatetime]
    createdAt: ISODatetime
    updatedAt: ISODatetime
    priority: Literal["low", "medium", "high"]
    category: NotRequired[str]


class Achievement(TypedDict):
    """Unlockable badge."""

    id: str
    name: NotRequired[str]
    unlocked: bool
    unlockedAt: NotRequired[ISODatetime]
    requirement: int
    progress: int


class Bonus(TypedDict):
    """Claimable reward definition."""

    id: str
    name: NotRequired[str]
    type: Literal["daily", "weekly", "streak", "achievement"]
    requirement: int
    reward: dict[str, Any]
    claimed: NotRequired[bool]


class DailyBonus(TypedDict):
    """Daily login bonus tracker."""

    date: ISODate
    available: bool
    claimed: bool
    streak: int
    multiplier: float


class BonusSet(TypedDict):
    """Bonuses plus the daily bonus sub-record."""

    bonuses: list[Bonus]
    dailyBonus: DailyBonus | None


class Purchase(TypedDict):
    """Shop item that can be bought with coins."""

    id: str
    name: str
    cost: int
    type: NotRequired[str]
    purchased: bool


class CoinLedger(TypedDict):
    """Virtual currency balance with purchase history."""

    coins: int
    totalEarned: int
    purchases: list[Purchase]


class DailyRecord(TypedDict):
    """One day's completion snapshot, one per user per date."""

    date: ISODate
    completedHabitIds: list[HabitId]
    totalHabits: int
    experienceGained: int
    perfectDay: bool


class UserProfile(TypedDict):
    """User profile document."""

    id: UserId
    name: NotRequired[str]
    email: NotRequired[str]
    avatar: NotRequired[str]
    createdAt: NotRequired[ISODatetime]


# =============================================================================
# Export envelope
# =============================================================================


class ExportData(TypedDict):
    """Entity set carried by a backup."""

    habits: list[Habit]
    customHabits: list[CustomHabit]
    character: CharacterState | None
    achievements: list[Achievement]
    bonuses: BonusSet | None
    dailyRecords: list[DailyRecord]
    coins: NotRequired[CoinLedger | None]


class ExportPayload(TypedDict):
    """Flat JSON envelope written by export and read by import."""

    userId: UserId
    exportDate: ISODatetime
    version: str
    data: ExportData


# =============================================================================
# Statistics
# =============================================================================


class OverallStats(TypedDict):
    """Aggregates over the stored daily records."""

    totalDays: int
    totalHabitsCompleted: int
    perfectDays: int
    currentStreak: int
    bestStreak: int
    totalExperience: int
    averageCompletion: float
    firstDate: ISODate | None


class Insights(TypedDict):
    """Summary of recent daily records with recommendation codes."""

    totalDays: int
    averageCompletion: int
    perfectDays: int
    currentStreak: int
    bestStreak: int
    totalExperience: int
    mostActiveDay: str | None
    improvementTrend: Trend
    recommendations: list[str]


class SyncStatus(TypedDict):
    """Snapshot published through the sync state cell."""

    online: bool
    pending_operations: int
    last_sync: ISODatetime | None
    last_error: str | None
