"""Derivation engine.

Pure functions that turn the latest Firestore snapshots into the states the
dashboards depend on: urgent tasks, status buckets, per-user completion,
attendance status, tracker roll-ups, milestones and presence.

Nothing here performs I/O or keeps state between calls. Every snapshot is
taken as authoritative for the instant it was delivered.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum

from teamtrack_shared import (
    AttendanceRecord,
    AttendanceStatus,
    LoginHistoryEntry,
    MinuteTracker,
    Task,
    TaskAction,
    TaskStatus,
    TrackerTask,
    UserProfile,
)

URGENT_LIMIT = 3
DUE_SOON_DAYS = 7
LATE_HOUR = 9
WEEKLY_MILESTONE = 5
ONLINE_WINDOW = timedelta(minutes=5)
INACTIVE_AFTER = timedelta(days=5)
TREND_DAYS = 7


class StatsScope(StrEnum):
    """Which completion criterion a stats view uses."""

    GLOBAL = "global"  # store-level status, all tasks
    PERSONAL = "personal"  # acting user in completed_by, visible tasks only


@dataclass(frozen=True)
class TaskStats:
    overdue: int
    due_soon: int
    completed: int
    total: int

    @property
    def other(self) -> int:
        """Pending tasks that are neither overdue nor due soon."""
        return self.total - self.overdue - self.due_soon - self.completed


@dataclass(frozen=True)
class CompletionResult:
    """Fields to write back after a completion toggle."""

    completed_by: list[str]
    status: TaskStatus
    action: TaskAction


@dataclass(frozen=True)
class TrackerStats:
    total_minutes: int
    completed_tasks: int
    pending_tasks: int
    trackers_logged: int


def local_day(value: datetime) -> date:
    """Local calendar day of a timestamp."""
    if value.tzinfo is not None:
        return value.astimezone().date()
    return value.date()


# Tasks


def is_visible(task: Task, user_id: str, email: str | None = None) -> bool:
    """A task is visible to a user when it is unassigned or assigned to them.

    Older tasks were assigned by email address rather than uid, so the
    user's email also counts as an assignment when given.
    """
    if not task.assigned_to or user_id in task.assigned_to:
        return True
    return email is not None and email in task.assigned_to


def visible_tasks(
    tasks: Iterable[Task],
    user_id: str,
    email: str | None = None,
) -> list[Task]:
    return [task for task in tasks if is_visible(task, user_id, email)]


def urgent_tasks(
    tasks: Iterable[Task],
    user_id: str,
    limit: int = URGENT_LIMIT,
    email: str | None = None,
) -> list[Task]:
    """Pending visible tasks, earliest due first, at most ``limit`` of them.

    The sort is stable, so tasks due at the same instant keep fetch order.
    """
    pending = [
        task
        for task in tasks
        if task.status == TaskStatus.PENDING and is_visible(task, user_id, email)
    ]
    pending.sort(key=lambda task: task.due_date)
    return pending[:limit]


def task_stats(
    tasks: Iterable[Task],
    user_id: str,
    now: datetime,
    scope: StatsScope = StatsScope.PERSONAL,
    due_soon_days: int = DUE_SOON_DAYS,
    email: str | None = None,
) -> TaskStats:
    """Count tasks by status bucket.

    The global view counts every task and uses the store-level ``status``.
    The personal view counts only visible tasks and treats a task as done
    when the user appears in ``completed_by``.

    A task due exactly at ``now`` is due soon, not overdue. A task due
    exactly at ``now + due_soon_days`` is in neither bucket.
    """
    if scope == StatsScope.GLOBAL:
        visible = list(tasks)

        def is_done(task: Task) -> bool:
            return task.status == TaskStatus.COMPLETED

    else:
        visible = visible_tasks(tasks, user_id, email)

        def is_done(task: Task) -> bool:
            return user_id in task.completed_by

    horizon = now + timedelta(days=due_soon_days)
    overdue = due_soon = completed = 0
    for task in visible:
        if is_done(task):
            completed += 1
        elif task.due_date < now:
            overdue += 1
        elif task.due_date < horizon:
            due_soon += 1

    return TaskStats(
        overdue=overdue,
        due_soon=due_soon,
        completed=completed,
        total=len(visible),
    )


def status_for(completed_by: Sequence[str]) -> TaskStatus:
    return TaskStatus.COMPLETED if completed_by else TaskStatus.PENDING


def complete_task(task: Task, user_id: str, completing: bool) -> CompletionResult:
    """Toggle one user's completion of a task.

    Membership is idempotent but the action is not: repeating the same
    toggle still yields an action for the audit trail. The input task is
    left untouched.
    """
    completed_by = list(task.completed_by)
    if completing:
        if user_id not in completed_by:
            completed_by.append(user_id)
        action = TaskAction.COMPLETED
    else:
        completed_by = [uid for uid in completed_by if uid != user_id]
        action = TaskAction.UNCOMPLETED

    return CompletionResult(
        completed_by=completed_by,
        status=status_for(completed_by),
        action=action,
    )


# Attendance


def derive_attendance_status(
    instant: datetime,
    late_hour: int = LATE_HOUR,
) -> AttendanceStatus:
    """Late from ``late_hour`` o'clock on, in the instant's own timezone."""
    if instant.hour >= late_hour:
        return AttendanceStatus.LATE
    return AttendanceStatus.PRESENT


def attendance_day(instant: datetime) -> str:
    return instant.strftime("%Y-%m-%d")


def todays_record(
    records: Iterable[AttendanceRecord],
    day: str,
) -> AttendanceRecord | None:
    """First record for ``day`` in snapshot order."""
    return next((record for record in records if record.date == day), None)


def is_clocked_in(records: Iterable[AttendanceRecord], day: str) -> bool:
    """Clocked in means today's record exists and has no time out."""
    record = todays_record(records, day)
    return record is not None and record.time_out is None


# Minute trackers


def tasks_for_tracker(
    tracker_tasks: Iterable[TrackerTask],
    tracker_id: str,
) -> list[TrackerTask]:
    return [task for task in tracker_tasks if task.tracker_id == tracker_id]


def all_completed(tracker_tasks: Sequence[TrackerTask]) -> bool:
    """True when there is at least one task and every task is completed."""
    return bool(tracker_tasks) and all(task.completed for task in tracker_tasks)


def completed_tracker_ids(tracker_tasks: Iterable[TrackerTask]) -> set[str]:
    """Ids of trackers whose tasks in this snapshot are all completed."""
    by_tracker: dict[str, list[TrackerTask]] = {}
    for task in tracker_tasks:
        by_tracker.setdefault(task.tracker_id, []).append(task)
    return {
        tracker_id
        for tracker_id, children in by_tracker.items()
        if all_completed(children)
    }


def tracker_stats(
    trackers: Sequence[MinuteTracker],
    tracker_tasks: Iterable[TrackerTask],
) -> TrackerStats:
    tracker_ids = {tracker.id for tracker in trackers}
    children = [task for task in tracker_tasks if task.tracker_id in tracker_ids]
    completed = sum(1 for task in children if task.completed)
    return TrackerStats(
        total_minutes=sum(tracker.total_minutes for tracker in trackers),
        completed_tasks=completed,
        pending_tasks=len(children) - completed,
        trackers_logged=len(trackers),
    )


def member_minutes(
    tracker: MinuteTracker,
    tracker_tasks: Iterable[TrackerTask],
) -> dict[str, int]:
    """Minutes assigned to each tracker member through the tracker's tasks.

    Tasks assigned to someone outside ``tracker.members`` are not counted.
    """
    totals = {member_id: 0 for member_id in tracker.members}
    for task in tasks_for_tracker(tracker_tasks, tracker.id):
        if task.member_id in totals:
            totals[task.member_id] += task.minutes
    return totals


def tracker_minutes_history(
    trackers: Iterable[MinuteTracker],
    today: date,
    days: int = TREND_DAYS,
) -> list[tuple[str, int]]:
    """Declared tracker minutes per day for the last ``days`` days, oldest first."""
    trackers = list(trackers)
    history = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        minutes = sum(t.total_minutes for t in trackers if local_day(t.date) == day)
        history.append((day.strftime("%b %d"), minutes))
    return history


def task_completion_trend(
    tasks: Iterable[Task],
    today: date,
    days: int = TREND_DAYS,
) -> list[tuple[str, int]]:
    """Tasks due on each of the last ``days`` days that someone completed."""
    tasks = list(tasks)
    trend = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        completed = sum(
            1 for task in tasks if local_day(task.due_date) == day and task.completed_by
        )
        trend.append((day.strftime("%m/%d"), completed))
    return trend


# Milestones


def todays_milestone(
    tasks: Iterable[Task],
    user_id: str,
    today: date,
    email: str | None = None,
) -> bool:
    """Every visible task due today has been completed by the user."""
    due_today = [
        task for task in visible_tasks(tasks, user_id, email) if local_day(task.due_date) == today
    ]
    return bool(due_today) and all(user_id in task.completed_by for task in due_today)


def weekly_completions(
    tasks: Iterable[Task],
    user_id: str,
    now: datetime,
    email: str | None = None,
) -> int:
    """Visible tasks due within the past week that the user completed."""
    week_ago = now - timedelta(days=7)
    return sum(
        1
        for task in visible_tasks(tasks, user_id, email)
        if task.due_date > week_ago and user_id in task.completed_by
    )


# Presence


def is_online(last_active: datetime | None, now: datetime) -> bool:
    if last_active is None:
        return False
    return now - last_active < ONLINE_WINDOW


def is_inactive(last_active: datetime | None, now: datetime) -> bool:
    """No heartbeat for at least five days. A missing heartbeat counts as never."""
    if last_active is None:
        return True
    return now - last_active >= INACTIVE_AFTER


def inactive_members(
    profiles: Iterable[UserProfile],
    now: datetime,
) -> list[UserProfile]:
    return [profile for profile in profiles if is_inactive(profile.last_active, now)]


def login_duration_minutes(entry: LoginHistoryEntry) -> int | None:
    """Whole minutes between login and logout, or None while still active."""
    if entry.logout_time is None:
        return None
    seconds = (entry.logout_time - entry.login_time).total_seconds()
    return math.floor(seconds / 60 + 0.5)
