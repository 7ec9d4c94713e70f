"""Statistics Engine - DailyRecord derivation and history aggregates.

This engine provides stateless functions for:
- Building a DailyRecord from a day's completions (perfectDay is always derived)
- Normalizing records read from storage or a backup
- Merging a record into a date-keyed history
- Overall statistics and the completion trend
- Insights: most active weekday and recommendation codes

ARCHITECTURE: This is a pure logic engine with NO Home Assistant dependencies.
All functions are static methods that operate on passed-in data.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from .. import const
from ..utils.dt_utils import dt_parse_date

if TYPE_CHECKING:
    from ..type_defs import DailyRecord, Insights, OverallStats, Trend


class StatisticsEngine:
    """Pure logic engine for daily records and derived statistics.

    All methods are static - no instance state.
    """

    # =========================================================================
    # Daily records
    # =========================================================================

    @staticmethod
    def is_perfect_day(completed_count: int, total_habits: int) -> bool:
        """Return True when every habit of the day was completed."""
        return total_habits > 0 and completed_count == total_habits

    @staticmethod
    def build_daily_record(
        record_date: str,
        completed_habit_ids: Iterable[str],
        total_habits: int,
        experience_gained: int | None = None,
    ) -> DailyRecord:
        """Create a DailyRecord.

        Duplicate habit ids are collapsed (first occurrence kept). Experience
        defaults to EXPERIENCE_PER_HABIT per completed habit.
        """
        completed = list(dict.fromkeys(str(habit_id) for habit_id in completed_habit_ids))
        total = max(int(total_habits), 0)
        if experience_gained is None:
            experience_gained = len(completed) * const.EXPERIENCE_PER_HABIT
        return {
            const.FIELD_DATE: record_date,
            const.FIELD_COMPLETED_HABIT_IDS: completed,
            const.FIELD_TOTAL_HABITS: total,
            const.FIELD_EXPERIENCE_GAINED: int(experience_gained),
            const.FIELD_PERFECT_DAY: StatisticsEngine.is_perfect_day(
                len(completed), total
            ),
        }

    @staticmethod
    def normalize_daily_record(record: Mapping[str, Any]) -> DailyRecord:
        """Return a clean DailyRecord from stored or imported data.

        Accepts the legacy `completedHabits` list name. Any stored perfectDay
        value is ignored and re-derived.

        Raises:
            ValueError: The record has no date.
        """
        record_date = record.get(const.FIELD_DATE)
        if not record_date or not isinstance(record_date, str):
            raise ValueError(f"Daily record without a date: {record!r}")

        completed = record.get(const.FIELD_COMPLETED_HABIT_IDS)
        if completed is None:
            completed = record.get("completedHabits", [])
        if not isinstance(completed, list):
            completed = []

        return StatisticsEngine.build_daily_record(
            record_date,
            completed,
            int(record.get(const.FIELD_TOTAL_HABITS) or 0),
            record.get(const.FIELD_EXPERIENCE_GAINED),
        )

    @staticmethod
    def merge_daily_record(
        records: Sequence[Mapping[str, Any]], record: DailyRecord
    ) -> list[DailyRecord]:
        """Insert or replace the record for its date; newest first."""
        merged = {
            str(existing[const.FIELD_DATE]): StatisticsEngine.normalize_daily_record(
                existing
            )
            for existing in records
            if existing.get(const.FIELD_DATE)
        }
        merged[record[const.FIELD_DATE]] = record
        return StatisticsEngine.sort_newest_first(merged.values())

    @staticmethod
    def sort_newest_first(records: Iterable[DailyRecord]) -> list[DailyRecord]:
        """Sort records by date descending."""
        return sorted(records, key=lambda rec: rec[const.FIELD_DATE], reverse=True)

    @staticmethod
    def completion_rate(record: Mapping[str, Any]) -> float:
        """Return the day's completion percentage (0-100)."""
        total = int(record.get(const.FIELD_TOTAL_HABITS) or 0)
        if total <= 0:
            return 0.0
        completed = len(record.get(const.FIELD_COMPLETED_HABIT_IDS) or [])
        return min(completed / total, 1.0) * 100

    # =========================================================================
    # History
    # =========================================================================

    @staticmethod
    def calculate_overall_stats(records: Sequence[DailyRecord]) -> OverallStats:
        """Aggregate statistics over a record history.

        Streaks count consecutive records (by date order) that have at least
        one completed habit. The current streak starts at the newest record.
        """
        newest_first = StatisticsEngine.sort_newest_first(records)
        total_days = len(newest_first)
        total_completed = sum(
            len(rec[const.FIELD_COMPLETED_HABIT_IDS]) for rec in newest_first
        )

        current_streak = 0
        for rec in newest_first:
            if not rec[const.FIELD_COMPLETED_HABIT_IDS]:
                break
            current_streak += 1

        best_streak = 0
        running = 0
        for rec in reversed(newest_first):
            if rec[const.FIELD_COMPLETED_HABIT_IDS]:
                running += 1
                best_streak = max(best_streak, running)
            else:
                running = 0

        return {
            "totalDays": total_days,
            "totalHabitsCompleted": total_completed,
            "perfectDays": sum(
                1 for rec in newest_first if rec[const.FIELD_PERFECT_DAY]
            ),
            "currentStreak": current_streak,
            "bestStreak": best_streak,
            "totalExperience": sum(
                int(rec[const.FIELD_EXPERIENCE_GAINED]) for rec in newest_first
            ),
            "averageCompletion": (total_completed / total_days) if total_days else 0.0,
            "firstDate": newest_first[-1][const.FIELD_DATE] if newest_first else None,
        }

    @staticmethod
    def calculate_trend(records: Sequence[DailyRecord]) -> Trend:
        """Compare the newest week of completion rates with the week before.

        Both windows are averaged over TREND_WINDOW_DAYS, so a short older
        window counts missing days as zero.
        """
        window = const.TREND_WINDOW_DAYS
        newest_first = StatisticsEngine.sort_newest_first(records)
        if len(newest_first) < window:
            return const.TREND_STABLE

        rates = [StatisticsEngine.completion_rate(rec) for rec in newest_first]
        recent = sum(rates[:window]) / window
        older = sum(rates[window : window * 2]) / window

        if recent > older + const.TREND_THRESHOLD:
            return const.TREND_IMPROVING
        if recent < older - const.TREND_THRESHOLD:
            return const.TREND_DECLINING
        return const.TREND_STABLE

    # =========================================================================
    # Insights
    # =========================================================================

    @staticmethod
    def running_streaks(records: Sequence[DailyRecord]) -> list[int]:
        """Return the streak reached on each record's day, newest first."""
        streaks: list[int] = []
        running = 0
        for rec in reversed(StatisticsEngine.sort_newest_first(records)):
            running = running + 1 if rec[const.FIELD_COMPLETED_HABIT_IDS] else 0
            streaks.append(running)
        streaks.reverse()
        return streaks

    @staticmethod
    def most_active_weekday(records: Sequence[DailyRecord]) -> str | None:
        """Return the weekday with the most completed habits.

        Ties go to the earlier weekday (Monday first). None when nothing was
        completed.
        """
        totals = [0] * len(const.WEEKDAYS)
        for rec in records:
            day = dt_parse_date(rec[const.FIELD_DATE])
            if day is not None:
                totals[day.weekday()] += len(rec[const.FIELD_COMPLETED_HABIT_IDS])
        best = max(totals)
        if best == 0:
            return None
        return const.WEEKDAYS[totals.index(best)]

    @staticmethod
    def recommendations(records: Sequence[DailyRecord]) -> list[str]:
        """Return recommendation codes for the newest week of records."""
        window = const.TREND_WINDOW_DAYS
        recent = StatisticsEngine.sort_newest_first(records)[:window]
        if not recent:
            return []

        codes: list[str] = []
        average = sum(StatisticsEngine.completion_rate(rec) for rec in recent) / len(
            recent
        )
        if average < const.INSIGHTS_LOW_COMPLETION:
            codes += [const.RECOMMEND_START_SMALLER, const.RECOMMEND_SET_REMINDERS]
        elif average > const.INSIGHTS_HIGH_COMPLETION:
            codes += [const.RECOMMEND_ADD_HABITS, const.RECOMMEND_SHARE_SUCCESS]

        short_streak_days = sum(
            1
            for streak in StatisticsEngine.running_streaks(records)[:window]
            if streak < const.INSIGHTS_SHORT_STREAK
        )
        if short_streak_days > const.INSIGHTS_SHORT_STREAK_DAYS:
            codes.append(const.RECOMMEND_FOCUS_CONSISTENCY)
        return codes

    @staticmethod
    def generate_insights(records: Sequence[DailyRecord]) -> Insights | None:
        """Summarize a record history; None when there are no records."""
        if not records:
            return None
        stats = StatisticsEngine.calculate_overall_stats(records)
        rates = [StatisticsEngine.completion_rate(rec) for rec in records]
        return {
            "totalDays": stats["totalDays"],
            "averageCompletion": round(sum(rates) / len(rates)),
            "perfectDays": stats["perfectDays"],
            "currentStreak": stats["currentStreak"],
            "bestStreak": stats["bestStreak"],
            "totalExperience": stats["totalExperience"],
            "mostActiveDay": StatisticsEngine.most_active_weekday(records),
            "improvementTrend": StatisticsEngine.calculate_trend(records),
            "recommendations": StatisticsEngine.recommendations(records),
        }
