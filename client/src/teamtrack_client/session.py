"""Realtime session loop: consume snapshots, re-derive, notify, heartbeat."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from teamtrack_shared import (
    AttendanceRecord,
    MinuteTracker,
    Task,
    TrackerTask,
    UserProfile,
)

from .derive import URGENT_LIMIT, attendance_day, is_clocked_in, local_day, urgent_tasks
from .firebase_client import (
    ATTENDANCE,
    TASKS,
    TRACKER_TASKS,
    TRACKERS,
    USERS,
    Direction,
    FirestoreClient,
    Snapshot,
    SnapshotChannel,
)
from .notify import (
    Notification,
    NotificationState,
    milestone_notifications,
    should_announce_urgent,
    show_notification,
    tracker_notification,
    trackers_to_celebrate,
)
from .permissions import is_admin

logger = logging.getLogger(__name__)

POLL_SECONDS = 1.0

Notifier = Callable[[Notification], bool]


@dataclass
class SessionState:
    """Latest snapshots and derived state for the signed-in user."""

    profile: UserProfile
    tasks: list[Task] = field(default_factory=list)
    trackers: list[MinuteTracker] = field(default_factory=list)
    tracker_tasks: list[TrackerTask] = field(default_factory=list)
    attendance: list[AttendanceRecord] = field(default_factory=list)
    users: list[UserProfile] = field(default_factory=list)
    clocked_in: bool = False
    last_heartbeat: datetime | None = None
    notifications: NotificationState = field(default_factory=NotificationState)


def run_session(
    client: FirestoreClient,
    profile: UserProfile,
    heartbeat_interval_seconds: int = 60,
    urgent_limit: int = URGENT_LIMIT,
    notifier: Notifier = show_notification,
    should_stop: Callable[[], bool] | None = None,
    channel: SnapshotChannel | None = None,
) -> SessionState:
    """Run until interrupted or ``should_stop`` returns True."""
    state = SessionState(profile=profile)
    channel = channel or SnapshotChannel()
    watches = subscribe_all(client, profile, channel)

    logger.info(
        "Starting session for %s (role=%s, heartbeat=%ds)",
        profile.name,
        profile.role,
        heartbeat_interval_seconds,
    )

    try:
        while not (should_stop and should_stop()):
            try:
                send_heartbeat(client, state, datetime.now(UTC), heartbeat_interval_seconds)
                snapshot = channel.get(timeout=POLL_SECONDS)
                if snapshot is not None:
                    apply_snapshot(
                        state,
                        snapshot,
                        datetime.now(UTC),
                        notifier=notifier,
                        urgent_limit=urgent_limit,
                    )
            except KeyboardInterrupt:
                logger.info("Session interrupted")
                break
            except Exception:
                logger.exception("Error handling snapshot")
    finally:
        for watch in watches:
            watch.unsubscribe()

    return state


def subscribe_all(
    client: FirestoreClient,
    profile: UserProfile,
    channel: SnapshotChannel,
) -> list[Any]:
    """Open the realtime queries a dashboard needs."""
    if is_admin(profile):
        users = client.subscribe(
            USERS, UserProfile, channel, order_by="createdAt", direction=Direction.DESCENDING
        )
    else:
        users = client.subscribe(
            USERS, UserProfile, channel, where=("uid", "==", profile.uid)
        )

    return [
        users,
        client.subscribe(TASKS, Task, channel, order_by="dueDate"),
        client.subscribe(
            TRACKERS, MinuteTracker, channel, order_by="date", direction=Direction.DESCENDING
        ),
        client.subscribe(TRACKER_TASKS, TrackerTask, channel, order_by="createdAt"),
        client.subscribe(
            ATTENDANCE,
            AttendanceRecord,
            channel,
            order_by="date",
            direction=Direction.DESCENDING,
            where=("userId", "==", profile.uid),
            limit=30,
        ),
    ]


def apply_snapshot(
    state: SessionState,
    snapshot: Snapshot,
    now: datetime,
    notifier: Notifier = show_notification,
    urgent_limit: int = URGENT_LIMIT,
) -> None:
    """Replace one collection's records and re-derive what depends on them."""
    if snapshot.collection == TASKS:
        state.tasks = snapshot.records
        _check_urgent(state, notifier, urgent_limit)
        _check_milestones(state, now, notifier)
    elif snapshot.collection == TRACKER_TASKS:
        state.tracker_tasks = snapshot.records
        _check_trackers(state, notifier)
    elif snapshot.collection == TRACKERS:
        state.trackers = snapshot.records
    elif snapshot.collection == ATTENDANCE:
        state.attendance = snapshot.records
        state.clocked_in = is_clocked_in(state.attendance, attendance_day(now.astimezone()))
    elif snapshot.collection == USERS:
        state.users = snapshot.records
        if _refresh_profile(state):
            _check_urgent(state, notifier, urgent_limit)
            _check_milestones(state, now, notifier)
    else:
        logger.debug("Ignoring snapshot for %s", snapshot.collection)
        return

    logger.debug("Applied %s snapshot (%d records)", snapshot.collection, len(snapshot.records))


def send_heartbeat(
    client: FirestoreClient,
    state: SessionState,
    now: datetime,
    interval_seconds: int,
) -> None:
    """Refresh lastActive at most once per interval. Failures are ignored."""
    if state.last_heartbeat is not None:
        elapsed = (now - state.last_heartbeat).total_seconds()
        if elapsed < interval_seconds:
            return

    state.last_heartbeat = now
    try:
        client.touch_last_active(state.profile.uid, now)
    except Exception:
        logger.debug("Failed to send heartbeat")


def _check_urgent(state: SessionState, notifier: Notifier, urgent_limit: int) -> None:
    urgent = urgent_tasks(
        state.tasks, state.profile.uid, urgent_limit, email=state.profile.email
    )
    notification = should_announce_urgent(urgent, state.notifications)
    if notification is not None:
        notifier(notification)
    state.notifications.track_urgent(urgent)


def _check_milestones(state: SessionState, now: datetime, notifier: Notifier) -> None:
    state.notifications.reset_if_new_day(local_day(now).isoformat())
    for notification in milestone_notifications(
        state.tasks, state.profile.uid, now, state.notifications, state.profile.email
    ):
        if notifier(notification):
            state.notifications.shown_milestones.add(notification.kind)


def _check_trackers(state: SessionState, notifier: Notifier) -> None:
    if not state.notifications.trackers_primed:
        state.notifications.prime_trackers(state.tracker_tasks)
        return

    descriptions = {tracker.id: tracker.description for tracker in state.trackers}
    for tracker_id in trackers_to_celebrate(state.tracker_tasks, state.notifications):
        notification = tracker_notification(descriptions.get(tracker_id, tracker_id))
        if notifier(notification):
            state.notifications.celebrated_trackers.add(tracker_id)


def _refresh_profile(state: SessionState) -> bool:
    """Pick up changes made to the signed-in user.

    Returns True if the profile changed, so task derivations must be redone.
    """
    for profile in state.users:
        if profile.uid == state.profile.uid:
            if profile.role != state.profile.role:
                logger.info("Role changed from %s to %s", state.profile.role, profile.role)
            changed = profile != state.profile
            state.profile = profile
            return changed
    return False
