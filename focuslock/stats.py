"""
Owner statistics.

Counts and the weekly breakdown are exact. The streak figures are the
completion-ratio heuristic the mobile clients were built against, not
consecutive-day tracking; responses carry streakIsEstimate so clients can
label them.
"""

import math
from datetime import datetime, timedelta

from focuslock.models import Task, TaskStatus, utcnow

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# current streak = floor(completed / total * STREAK_SCALE)
STREAK_SCALE = 10

# (minimum completion ratio, minimum completed, per-task factor, cap), best tier first
LONGEST_STREAK_TIERS = (
    (0.8, 5, 0.4, 14),
    (0.5, 3, 0.3, 10),
)

STREAK_ACHIEVEMENT_DAYS = 7
HIGH_ACHIEVER_TASKS = 10


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def week_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 to Sunday 23:59:59.999999 of the week containing *now* (UTC)."""
    day_start, _ = day_bounds(now)
    start = day_start - timedelta(days=day_start.weekday())
    return start, start + timedelta(days=7) - timedelta(microseconds=1)


def current_streak(completed: int, total: int) -> int:
    if completed <= 0:
        return 0
    return math.floor(completed / max(total, 1) * STREAK_SCALE)


def longest_streak(completed: int, total: int, current: int) -> int:
    """
    Never below *current*. A high completion ratio over enough tasks raises
    it in proportion to the completed count, up to the tier's cap.
    """
    if total == 0:
        return 0
    ratio = completed / total
    for min_ratio, min_completed, factor, cap in LONGEST_STREAK_TIERS:
        if ratio >= min_ratio and completed >= min_completed:
            return max(current, min(cap, math.floor(completed * factor)))
    return current


def estimate_streaks(completed: int, total: int) -> tuple[int, int]:
    """(current, longest) streak estimate."""
    current = current_streak(completed, total)
    return current, longest_streak(completed, total, current)


def user_stats(tasks: list[Task]) -> dict:
    total = len(tasks)
    by_status = {status: 0 for status in TaskStatus}
    for task in tasks:
        by_status[task.status] += 1
    completed = by_status[TaskStatus.COMPLETED]
    return {
        "totalTasks": total,
        "completedTasks": completed,
        "pendingTasks": by_status[TaskStatus.PENDING],
        "activeTasks": by_status[TaskStatus.ACTIVE],
        "failedTasks": by_status[TaskStatus.FAILED],
        "completionRate": round(completed * 100 / total) if total else 0,
        "streak": current_streak(completed, total),
        "streakIsEstimate": True,
    }


def weekly_breakdown(tasks: list[Task], now: datetime) -> list[dict]:
    """Per-weekday completed/total for tasks starting in the current week."""
    start, end = week_bounds(now)
    days = [{"day": name, "completed": 0, "total": 0} for name in WEEKDAYS]
    for task in tasks:
        if not start <= task.start_at <= end:
            continue
        slot = days[task.start_at.weekday()]
        slot["total"] += 1
        if task.status == TaskStatus.COMPLETED:
            slot["completed"] += 1
    return days


def _achievement(id_: str, title: str, description: str, icon: str, earned: str) -> dict:
    return {
        "id": id_,
        "title": title,
        "description": description,
        "dateEarned": earned,
        "icon": icon,
    }


def achievements(stats: dict, weekly: list[dict]) -> list[dict]:
    earned = []
    if stats["completedTasks"] >= 1:
        earned.append(
            _achievement(
                "first-task",
                "First Task",
                "Completed your first enforced task",
                "target",
                "Recently",
            )
        )
    if stats["streak"] >= STREAK_ACHIEVEMENT_DAYS:
        earned.append(
            _achievement(
                "7-day-streak",
                "7-Day Streak",
                "Completed tasks for 7 consecutive days",
                "fire",
                "Recently",
            )
        )
    week_total = sum(day["total"] for day in weekly)
    if week_total and sum(day["completed"] for day in weekly) == week_total:
        earned.append(
            _achievement(
                "perfect-week",
                "Perfect Week",
                "100% completion rate for a full week",
                "trophy",
                "This week",
            )
        )
    if stats["completedTasks"] >= HIGH_ACHIEVER_TASKS:
        earned.append(
            _achievement(
                "high-achiever", "High Achiever", "Completed 10 or more tasks", "trophy", "Recently"
            )
        )
    return earned


def progress_stats(tasks: list[Task], now: datetime | None = None) -> dict:
    now = now or utcnow()
    stats = user_stats(tasks)
    current, longest = estimate_streaks(stats["completedTasks"], stats["totalTasks"])
    weekly = weekly_breakdown(tasks, now)
    return {
        **stats,
        "currentStreak": current,
        "longestStreak": longest,
        "weeklyData": weekly,
        "achievements": achievements(stats, weekly),
    }
