from .models import (
    AttendanceRecord,
    AttendanceStatus,
    LoginHistoryEntry,
    MinuteTracker,
    MinuteTrackerHistoryEntry,
    Position,
    Priority,
    Role,
    StaffDetails,
    StudentDetails,
    Task,
    TaskAction,
    TaskHistoryEntry,
    TaskStatus,
    TrackerAction,
    TrackerTask,
    UserProfile,
    position_badge,
)

__all__ = [
    "AttendanceRecord",
    "AttendanceStatus",
    "LoginHistoryEntry",
    "MinuteTracker",
    "MinuteTrackerHistoryEntry",
    "Position",
    "Priority",
    "Role",
    "StaffDetails",
    "StudentDetails",
    "Task",
    "TaskAction",
    "TaskHistoryEntry",
    "TaskStatus",
    "TrackerAction",
    "TrackerTask",
    "UserProfile",
    "position_badge",
]
