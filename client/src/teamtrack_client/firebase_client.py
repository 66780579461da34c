"""Firebase/Firestore client for TeamTrack."""

import logging
import queue
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

from firebase_admin.exceptions import FirebaseError  # type: ignore[import-untyped]
from google.api_core.exceptions import GoogleAPICallError
from google.cloud.firestore import Client  # type: ignore[import-untyped]
from pydantic import BaseModel, ValidationError

from teamtrack_shared import (
    AttendanceRecord,
    AttendanceStatus,
    LoginHistoryEntry,
    MinuteTracker,
    MinuteTrackerHistoryEntry,
    Priority,
    Role,
    Task,
    TaskAction,
    TaskHistoryEntry,
    TrackerAction,
    TrackerTask,
    UserProfile,
)
from teamtrack_shared.firestore import (
    document_to_model,
    model_to_firestore,
)

from .derive import (
    LATE_HOUR,
    CompletionResult,
    attendance_day,
    complete_task,
    derive_attendance_status,
    todays_record,
)
from .errors import StaleOrMissingReference, StoreOperationFailed, ValidationFailed
from .permissions import require_admin, require_task_manager

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

USERS = "users"
TASKS = "tasks"
TASK_HISTORY = "taskHistory"
LOGIN_HISTORY = "loginHistory"
TRACKERS = "minuteTrackers"
TRACKER_TASKS = "minuteTrackerTasks"
TRACKER_HISTORY = "minuteTrackerHistory"
ATTENDANCE = "attendance"


class Direction(StrEnum):
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


@dataclass(frozen=True)
class Snapshot:
    """Full contents of one subscribed query at the moment it changed."""

    collection: str
    records: list[Any]


class SnapshotChannel:
    """Hands snapshots from Firestore watch threads to a single consumer.

    Each snapshot fully replaces the previous one for its collection.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[Snapshot] = queue.Queue()

    def push(self, snapshot: Snapshot) -> None:
        self._queue.put(snapshot)

    def get(self, timeout: float | None = None) -> Snapshot | None:
        """Next snapshot, or None if nothing arrived within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


@contextmanager
def _store_call(action: str) -> Iterator[None]:
    try:
        yield
    except (GoogleAPICallError, FirebaseError) as e:
        logger.warning("Failed to %s: %s", action, e)
        raise StoreOperationFailed(f"Failed to {action}") from e


def _now() -> datetime:
    return datetime.now(UTC)


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationFailed(f"{field} is required")
    return value.strip()


def _require_positive(value: int, field: str) -> int:
    if value <= 0:
        raise ValidationFailed(f"{field} must be greater than 0")
    return value


class FirestoreClient:
    """Handles all Firestore operations for TeamTrack."""

    def __init__(self, db: Client):
        self._db = db

    # Reading

    def subscribe(
        self,
        collection: str,
        model: type[M],
        channel: SnapshotChannel,
        order_by: str | None = None,
        direction: Direction = Direction.ASCENDING,
        where: tuple[str, str, Any] | None = None,
        limit: int | None = None,
    ) -> Any:
        """Push every change of a query onto ``channel`` as a full snapshot.

        Returns the Firestore watch; call ``unsubscribe()`` on it to stop.
        """
        query = self._query(collection, order_by, direction, where, limit)

        def on_snapshot(docs: Sequence[Any], changes: Any, read_time: Any) -> None:
            channel.push(Snapshot(collection, self._parse_all(collection, docs, model)))

        logger.debug("Subscribing to %s (order_by=%s)", collection, order_by)
        return query.on_snapshot(on_snapshot)

    def fetch(
        self,
        collection: str,
        model: type[M],
        order_by: str | None = None,
        direction: Direction = Direction.ASCENDING,
        where: tuple[str, str, Any] | None = None,
        limit: int | None = None,
    ) -> list[M]:
        """One-shot read of a query."""
        query = self._query(collection, order_by, direction, where, limit)
        with _store_call(f"read {collection}"):
            docs = list(query.stream())
        return self._parse_all(collection, docs, model)

    def _query(
        self,
        collection: str,
        order_by: str | None,
        direction: Direction,
        where: tuple[str, str, Any] | None,
        limit: int | None,
    ) -> Any:
        query = self._db.collection(collection)
        if where is not None:
            query = query.where(*where)
        if order_by is not None:
            query = query.order_by(order_by, direction=direction.value)
        if limit is not None:
            query = query.limit(limit)
        return query

    def _parse_all(self, collection: str, docs: Sequence[Any], model: type[M]) -> list[M]:
        records: list[M] = []
        for doc in docs:
            try:
                records.append(document_to_model(doc.id, doc.to_dict(), model))
            except ValidationError:
                logger.warning("Skipping malformed %s document %s", collection, doc.id)
        return records

    def get_profile(self, uid: str) -> UserProfile | None:
        """Get a user profile document, or None if it does not exist."""
        with _store_call("read user profile"):
            doc = self._db.collection(USERS).document(uid).get()
        if not doc.exists:
            return None
        try:
            return document_to_model(doc.id, doc.to_dict(), UserProfile)
        except ValidationError as e:
            logger.warning("Malformed user profile %s: %s", uid, e)
            raise ValidationFailed(f"User profile {uid} is malformed") from e

    def fetch_attendance(self, uid: str, limit: int = 30) -> list[AttendanceRecord]:
        """The user's most recent attendance records, newest day first."""
        return self.fetch(
            ATTENDANCE,
            AttendanceRecord,
            order_by="date",
            direction=Direction.DESCENDING,
            where=("userId", "==", uid),
            limit=limit,
        )

    # Tasks

    def create_task(
        self,
        actor: UserProfile,
        title: str,
        due_date: datetime,
        description: str = "",
        priority: Priority = Priority.MEDIUM,
        assigned_to: list[str] | None = None,
    ) -> str:
        """Create a task and log it. Returns the task id."""
        require_task_manager(actor, "create tasks")
        task = Task(
            title=_require_text(title, "Title"),
            description=description,
            due_date=due_date,
            priority=priority,
            assigned_to=assigned_to or [],
            created_at=_now(),
            created_by=actor.uid,
        )
        with _store_call("create task"):
            _, doc_ref = self._db.collection(TASKS).add(model_to_firestore(task))
        self.add_task_history(actor, doc_ref.id, TaskAction.CREATED, task.title)
        logger.info("Created task %s (%s)", doc_ref.id, task.title)
        return doc_ref.id

    def delete_task(self, actor: UserProfile, task: Task) -> None:
        """Delete a task and log it."""
        require_task_manager(actor, "delete tasks")
        with _store_call("delete task"):
            self._db.collection(TASKS).document(task.id).delete()
        self.add_task_history(actor, task.id, TaskAction.DELETED, task.title)
        logger.info("Deleted task %s", task.id)

    def set_task_completion(
        self,
        actor: UserProfile,
        tasks: Sequence[Task],
        task_id: str,
        completing: bool,
    ) -> CompletionResult:
        """Toggle the actor's completion of a task from the latest snapshot.

        Always logs one history entry, even when membership did not change.
        """
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            raise StaleOrMissingReference(f"Task {task_id} is no longer available")

        result = complete_task(task, actor.uid, completing)
        self.add_task_history(actor, task.id, result.action, task.title)
        with _store_call("update task"):
            self._db.collection(TASKS).document(task.id).update(
                {
                    "completedBy": result.completed_by,
                    "status": result.status.value,
                }
            )
        return result

    def add_task_history(
        self,
        actor: UserProfile,
        task_id: str,
        action: TaskAction,
        task_title: str,
    ) -> None:
        """Append to the task audit trail."""
        entry = TaskHistoryEntry(
            task_id=task_id,
            user_id=actor.uid,
            user_name=actor.name,
            action=action,
            timestamp=_now(),
            task_title=task_title,
        )
        with _store_call("record task history"):
            self._db.collection(TASK_HISTORY).add(model_to_firestore(entry))

    def delete_task_history(self, actor: UserProfile, entry_id: str) -> None:
        require_admin(actor, "delete history")
        with _store_call("delete history entry"):
            self._db.collection(TASK_HISTORY).document(entry_id).delete()

    # Login history

    def record_login(
        self,
        profile: UserProfile,
        ip_address: str | None = None,
        device_info: str | None = None,
    ) -> str:
        """Record a successful sign-in. Returns the entry id."""
        entry = LoginHistoryEntry(
            user_id=profile.uid,
            user_name=profile.name,
            email=profile.email,
            login_time=_now(),
            ip_address=ip_address,
            device_info=device_info,
        )
        with _store_call("record login"):
            _, doc_ref = self._db.collection(LOGIN_HISTORY).add(model_to_firestore(entry))
        return doc_ref.id

    def record_logout(self, entry_id: str) -> None:
        with _store_call("record logout"):
            self._db.collection(LOGIN_HISTORY).document(entry_id).update(
                {"logoutTime": _now()}
            )

    def delete_login_history(self, actor: UserProfile, entry_id: str) -> None:
        require_admin(actor, "delete login history")
        with _store_call("delete login history"):
            self._db.collection(LOGIN_HISTORY).document(entry_id).delete()

    def clear_login_history(self, actor: UserProfile) -> int:
        """Delete every login history entry. Returns how many were deleted."""
        require_admin(actor, "delete login history")
        count = 0
        with _store_call("delete login history"):
            for doc in self._db.collection(LOGIN_HISTORY).stream():
                doc.reference.delete()
                count += 1
        logger.info("Deleted %d login history entries", count)
        return count

    # Users

    def touch_last_active(self, uid: str, now: datetime | None = None) -> None:
        """Heartbeat: refresh the user's lastActive timestamp."""
        self._db.collection(USERS).document(uid).update({"lastActive": now or _now()})

    def create_profile(self, profile: UserProfile) -> None:
        with _store_call("create user profile"):
            self._db.collection(USERS).document(profile.uid).set(
                model_to_firestore(profile)
            )

    def update_member(
        self,
        actor: UserProfile,
        member_id: str,
        name: str,
        position: str,
        role: Role,
        access_level: int | None = None,
    ) -> None:
        require_admin(actor, "update members")
        fields: dict[str, Any] = {
            "name": _require_text(name, "Name"),
            "position": _require_text(position, "Position"),
            "role": role.value,
            "lastActive": _now(),
            "taskDeletePermission": role == Role.STAFF and access_level == 2,
        }
        if role == Role.STAFF and access_level is not None:
            if access_level not in (1, 2):
                raise ValidationFailed("Access level must be 1 or 2")
            fields["staffDetails.accessLevel"] = access_level
        with _store_call("update member"):
            self._db.collection(USERS).document(member_id).update(fields)

    def set_profile_email(self, uid: str, email: str) -> None:
        with _store_call("update email"):
            self._db.collection(USERS).document(uid).update(
                {"email": email, "lastActive": _now()}
            )

    def delete_user(self, actor: UserProfile, uid: str) -> None:
        """Delete the profile document. The Auth account is handled by Identity."""
        require_admin(actor, "delete users")
        with _store_call("delete user"):
            self._db.collection(USERS).document(uid).delete()
        logger.info("Deleted user profile %s", uid)

    # Minute trackers

    def save_tracker(
        self,
        actor: UserProfile,
        date: datetime,
        total_minutes: int,
        description: str,
        priority: Priority = Priority.MEDIUM,
        members: list[str] | None = None,
        task_template: str | None = None,
        tracker_id: str | None = None,
    ) -> str:
        """Create a tracker, or update it when ``tracker_id`` is given."""
        require_task_manager(actor, "manage trackers")
        tracker = MinuteTracker(
            date=date,
            total_minutes=_require_positive(total_minutes, "Minutes"),
            priority=priority,
            description=_require_text(description, "Description"),
            created_by=actor.uid,
            created_at=_now(),
            members=members or [],
            task_template=task_template or "",
        )
        data = model_to_firestore(tracker)

        if tracker_id is not None:
            with _store_call("update tracker"):
                self._db.collection(TRACKERS).document(tracker_id).update(data)
            logger.info("Updated tracker %s", tracker_id)
            return tracker_id

        with _store_call("create tracker"):
            _, doc_ref = self._db.collection(TRACKERS).add(data)
            entry = MinuteTrackerHistoryEntry(
                tracker_id=doc_ref.id,
                user_id=actor.uid,
                user_name=actor.name,
                action=TrackerAction.CREATED,
                minutes=tracker.total_minutes,
                description=tracker.description,
                timestamp=_now(),
            )
            self._db.collection(TRACKER_HISTORY).add(model_to_firestore(entry))
        logger.info("Created tracker %s", doc_ref.id)
        return doc_ref.id

    def delete_tracker(self, actor: UserProfile, tracker_id: str) -> None:
        """Delete a tracker along with its history and tasks."""
        require_task_manager(actor, "manage trackers")
        with _store_call("delete tracker"):
            self._db.collection(TRACKERS).document(tracker_id).delete()
            for collection in (TRACKER_HISTORY, TRACKER_TASKS):
                query = self._db.collection(collection).where("trackerId", "==", tracker_id)
                for doc in query.stream():
                    doc.reference.delete()
        logger.info("Deleted tracker %s", tracker_id)

    def save_tracker_task(
        self,
        tracker_id: str,
        description: str,
        minutes: int,
        member_id: str,
        completed: bool = False,
        task_id: str | None = None,
    ) -> str:
        """Create a tracker task, or update it when ``task_id`` is given."""
        fields = {
            "description": _require_text(description, "Description"),
            "minutes": _require_positive(minutes, "Minutes"),
            "memberId": _require_text(member_id, "Member"),
        }

        if task_id is not None:
            with _store_call("update tracker task"):
                self._db.collection(TRACKER_TASKS).document(task_id).update(
                    {**fields, "completed": completed}
                )
            return task_id

        task = TrackerTask(
            description=fields["description"],
            minutes=fields["minutes"],
            member_id=fields["memberId"],
            tracker_id=tracker_id,
            completed=False,
            created_at=_now(),
        )
        with _store_call("create tracker task"):
            _, doc_ref = self._db.collection(TRACKER_TASKS).add(model_to_firestore(task))
        return doc_ref.id

    def delete_tracker_task(self, task_id: str) -> None:
        with _store_call("delete tracker task"):
            self._db.collection(TRACKER_TASKS).document(task_id).delete()

    def set_tracker_task_completion(self, task_id: str, completed: bool) -> None:
        with _store_call("update tracker task"):
            self._db.collection(TRACKER_TASKS).document(task_id).update(
                {"completed": completed}
            )

    # Attendance

    def clock_in(
        self,
        profile: UserProfile,
        records: Sequence[AttendanceRecord],
        now: datetime | None = None,
        late_hour: int = LATE_HOUR,
    ) -> str:
        """Open today's attendance record. Returns the record id."""
        local_now = (now or _now()).astimezone()
        day = attendance_day(local_now)
        existing = todays_record(records, day)
        if existing is not None:
            if existing.time_out is None:
                raise ValidationFailed("Already clocked in today")
            raise ValidationFailed("Already clocked out for today")

        record = AttendanceRecord(
            user_id=profile.uid,
            user_name=profile.name,
            date=day,
            time_in=local_now,
            status=derive_attendance_status(local_now, late_hour),
        )
        with _store_call("clock in"):
            _, doc_ref = self._db.collection(ATTENDANCE).add(
                model_to_firestore(record, exclude={"time_out"})
            )
        logger.info("Clocked in at %s (%s)", local_now.strftime("%H:%M"), record.status)
        return doc_ref.id

    def clock_out(
        self,
        records: Sequence[AttendanceRecord],
        now: datetime | None = None,
        late_hour: int = LATE_HOUR,
    ) -> AttendanceStatus:
        """Close today's open record, re-deriving status from the clock-out time."""
        local_now = (now or _now()).astimezone()
        record = todays_record(records, attendance_day(local_now))
        if record is None or record.time_out is not None:
            raise StaleOrMissingReference("Not clocked in today")

        status = derive_attendance_status(local_now, late_hour)
        with _store_call("clock out"):
            self._db.collection(ATTENDANCE).document(record.id).update(
                {"timeOut": local_now, "status": status.value}
            )
        logger.info("Clocked out at %s (%s)", local_now.strftime("%H:%M"), status)
        return status

