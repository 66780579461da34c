"""Firestore data models for TeamTrack.

These models define the schema for all Firestore collections.
Every field is stored camelCase in Firestore; see ``firestore.py``.
"""

from datetime import datetime
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class Role(StrEnum):
    ADMIN = "admin"
    STAFF = "staff"
    STUDENT = "student"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class TaskAction(StrEnum):
    CREATED = "created"
    COMPLETED = "completed"
    UNCOMPLETED = "uncompleted"
    DELETED = "deleted"


class TrackerAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"


class AttendanceStatus(StrEnum):
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"


class Position(StrEnum):
    """Positions with a known badge. Profiles may carry any other string."""

    LEADER = "Leader"
    CO_LEADER = "Co-Leader"
    MEMBER = "Member"
    STAFF = "Staff"
    ADMIN = "Admin"
    STUDENT = "Student"


POSITION_BADGES: dict[Position, str] = {
    Position.LEADER: "crown",
    Position.CO_LEADER: "star",
    Position.MEMBER: "user",
    Position.STAFF: "briefcase",
    Position.ADMIN: "shield",
    Position.STUDENT: "graduation-cap",
}
DEFAULT_BADGE = "user"


def position_badge(position: str | None) -> str:
    """Map a free-text position to its badge, falling back to the default."""
    if not position:
        return DEFAULT_BADGE
    try:
        return POSITION_BADGES[Position(position.strip())]
    except ValueError:
        return DEFAULT_BADGE


class _Document(BaseModel):
    """Base for documents read back from Firestore with their id."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""


class Task(_Document):
    """Firestore: tasks/{taskId}

    ``status`` is a cache of ``bool(completed_by)`` and is rewritten
    together with ``completed_by``.
    """

    title: str
    description: str = ""
    due_date: datetime
    assigned_to: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    created_at: datetime
    created_by: str
    completed_by: list[str] = Field(default_factory=list)


class TaskHistoryEntry(_Document):
    """Firestore: taskHistory/{entryId}"""

    task_id: str
    user_id: str
    user_name: str
    action: TaskAction
    timestamp: datetime
    task_title: str


class LoginHistoryEntry(_Document):
    """Firestore: loginHistory/{entryId}"""

    user_id: str
    user_name: str
    email: str
    login_time: datetime
    logout_time: datetime | None = None
    ip_address: str | None = None
    device_info: str | None = None


class MinuteTracker(_Document):
    """Firestore: minuteTrackers/{trackerId}

    ``total_minutes`` is a declared budget. It is not the sum of the
    tracker's task minutes.
    """

    date: datetime
    total_minutes: Annotated[int, Field(gt=0)]
    priority: Priority = Priority.MEDIUM
    description: str
    created_by: str
    created_at: datetime
    members: list[str] = Field(default_factory=list)
    task_template: str | None = None


class TrackerTask(_Document):
    """Firestore: minuteTrackerTasks/{taskId}"""

    description: str
    minutes: Annotated[int, Field(ge=0)]
    completed: bool = False
    member_id: str
    tracker_id: str
    created_at: datetime


class MinuteTrackerHistoryEntry(_Document):
    """Firestore: minuteTrackerHistory/{entryId}"""

    tracker_id: str
    user_id: str
    user_name: str
    action: TrackerAction
    minutes: int
    description: str
    timestamp: datetime


class AttendanceRecord(_Document):
    """Firestore: attendance/{recordId}

    One record per user per day; ``date`` is the local day as YYYY-MM-DD.
    """

    user_id: str
    user_name: str | None = None
    date: str
    time_in: datetime
    time_out: datetime | None = None
    status: AttendanceStatus


class StudentDetails(BaseModel):
    course: str = ""
    year: int = 0
    student_id: str = ""


class StaffDetails(BaseModel):
    department: str = ""
    designation: str = ""
    access_level: Annotated[int, Field(ge=1, le=2)] = 1


class UserProfile(_Document):
    """Firestore: users/{uid}"""

    uid: str
    name: str
    email: str
    role: Role = Role.STUDENT
    position: str = Position.MEMBER.value
    created_at: datetime
    last_active: datetime | None = None
    student_details: StudentDetails | None = None
    staff_details: StaffDetails | None = None
    task_delete_permission: bool = False

    @property
    def access_level(self) -> int:
        if self.staff_details is None:
            return 1
        return self.staff_details.access_level

    @property
    def badge(self) -> str:
        return position_badge(self.position)
