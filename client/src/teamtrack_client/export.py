"""Spreadsheet export of users, tasks, history and trackers."""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from teamtrack_shared import (
    LoginHistoryEntry,
    MinuteTracker,
    Task,
    TaskHistoryEntry,
    TrackerTask,
    UserProfile,
)

from .derive import login_duration_minutes, member_minutes, tasks_for_tracker

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_SHEET_NAME = 31


def _local(value: datetime) -> datetime:
    return value.astimezone() if value.tzinfo is not None else value


def _fmt(value: datetime, fmt: str = TIMESTAMP_FORMAT) -> str:
    return _local(value).strftime(fmt)


def dated_file_name(prefix: str, day: date) -> str:
    return f"{prefix}_{day:%Y-%m-%d}.xlsx"


def export_rows(
    rows: Sequence[Mapping[str, Any]] | Sequence[Sequence[Any]],
    sheet_name: str,
    file_name: str,
    export_dir: Path,
    header: bool = True,
) -> Path:
    """Write rows to a single-sheet xlsx file and return its path.

    Rows are either flat records, whose keys become the header, or plain
    cell grids written as-is with ``header=False``.
    """
    export_dir.mkdir(parents=True, exist_ok=True)
    path = export_dir / file_name
    df = pd.DataFrame(list(rows))
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        df.to_excel(
            writer,
            index=False,
            header=header,
            sheet_name=sheet_name[:MAX_SHEET_NAME],
        )
    logger.info("Exported %d rows to %s", len(df), path)
    return path


def user_rows(profiles: Iterable[UserProfile]) -> list[dict[str, Any]]:
    return [
        {
            "Name": profile.name,
            "Email": profile.email,
            "Role": profile.role.value,
            "Position": profile.position,
            "Created At": _fmt(profile.created_at),
        }
        for profile in profiles
    ]


def task_rows(tasks: Iterable[Task]) -> list[dict[str, Any]]:
    return [
        {
            "Title": task.title,
            "Description": task.description,
            "Due Date": _fmt(task.due_date),
            "Priority": task.priority.value,
            "Status": task.status.value,
            "Assigned To": ", ".join(task.assigned_to),
            "Completed Count": len(task.completed_by),
        }
        for task in tasks
    ]


def history_rows(entries: Iterable[TaskHistoryEntry]) -> list[dict[str, Any]]:
    return [
        {
            "Task Title": entry.task_title,
            "User Name": entry.user_name,
            "Action": entry.action.value,
            "Timestamp": _fmt(entry.timestamp),
        }
        for entry in entries
    ]


def login_history_rows(entries: Iterable[LoginHistoryEntry]) -> list[dict[str, Any]]:
    rows = []
    for entry in entries:
        duration = login_duration_minutes(entry)
        rows.append(
            {
                "User Name": entry.user_name,
                "Email": entry.email,
                "Login Time": _fmt(entry.login_time),
                "Logout Time": (
                    _fmt(entry.logout_time) if entry.logout_time else "Still active"
                ),
                "Duration": f"{duration} min" if duration is not None else "Active",
                "IP Address": entry.ip_address or "N/A",
                "Device Info": entry.device_info or "N/A",
            }
        )
    return rows


def my_task_rows(tasks: Iterable[Task], user_id: str) -> list[dict[str, Any]]:
    """Rows for a member's own task list; status is personal completion."""
    return [
        {
            "Title": task.title,
            "Description": task.description,
            "Due Date": _fmt(task.due_date, "%m/%d/%Y"),
            "Status": "Completed by me" if user_id in task.completed_by else "Pending",
            "Priority": task.priority.value,
        }
        for task in tasks
    ]


def tracker_detail_grid(
    tracker: MinuteTracker,
    tracker_tasks: Iterable[TrackerTask],
    profiles: Iterable[UserProfile],
) -> list[list[Any]]:
    """Cell grid describing one tracker, its members and its tasks."""
    by_uid = {profile.uid: profile for profile in profiles}
    tracker_tasks = tasks_for_tracker(tracker_tasks, tracker.id)
    creator = by_uid.get(tracker.created_by)

    grid: list[list[Any]] = [
        ["Time Tracker Details", ""],
        ["Date", _fmt(tracker.date, "%m/%d/%Y")],
        ["Total Minutes", tracker.total_minutes],
        ["Priority", tracker.priority.value],
        ["Description", tracker.description],
        ["Created By", creator.name if creator else tracker.created_by],
        ["Created At", _fmt(tracker.created_at, "%m/%d/%Y %I:%M %p")],
        ["Task Template", tracker.task_template or "N/A"],
        [""],
        ["Assigned Members Summary", ""],
        ["Name", "Position", "Total Assigned Minutes"],
    ]

    for member_id, minutes in member_minutes(tracker, tracker_tasks).items():
        member = by_uid.get(member_id)
        if member is not None:
            grid.append([member.name, member.position, minutes])

    grid.append(["", "", ""])
    grid.append(["Detailed Tasks", "", ""])
    grid.append(["Description", "Member", "Minutes", "Status"])
    for task in tracker_tasks:
        member = by_uid.get(task.member_id)
        grid.append(
            [
                task.description,
                member.name if member else task.member_id,
                task.minutes,
                "Completed" if task.completed else "Pending",
            ]
        )
    return grid
