"""Tests for the realtime session loop."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from teamtrack_shared import (
    AttendanceRecord,
    AttendanceStatus,
    MinuteTracker,
    Role,
    Task,
    TaskStatus,
    TrackerTask,
    UserProfile,
)
from teamtrack_client.firebase_client import (
    ATTENDANCE,
    TASKS,
    TRACKER_TASKS,
    TRACKERS,
    USERS,
    Snapshot,
    SnapshotChannel,
)
from teamtrack_client.notify import Notification, NotificationKind
from teamtrack_client.session import (
    SessionState,
    apply_snapshot,
    run_session,
    send_heartbeat,
)

NOW = datetime(2024, 1, 15, 12, 0)


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(uid="u1", name="Ada", email="ada@example.com", created_at=NOW)


@pytest.fixture
def state(profile: UserProfile) -> SessionState:
    return SessionState(profile=profile)


class Recorder:
    """Notifier that remembers what it was asked to show."""

    def __init__(self) -> None:
        self.shown: list[Notification] = []

    def __call__(self, notification: Notification) -> bool:
        self.shown.append(notification)
        return True

    def kinds(self) -> list[NotificationKind]:
        return [n.kind for n in self.shown]


def make_task(task_id: str, due: datetime, completed_by: list[str] | None = None) -> Task:
    completed_by = completed_by or []
    return Task(
        id=task_id,
        title=f"Task {task_id}",
        due_date=due,
        status=TaskStatus.COMPLETED if completed_by else TaskStatus.PENDING,
        created_at=NOW - timedelta(days=30),
        created_by="admin",
        completed_by=completed_by,
    )


def make_tracker_task(task_id: str, completed: bool, tracker_id: str = "T") -> TrackerTask:
    return TrackerTask(
        id=task_id,
        description="Work",
        minutes=10,
        completed=completed,
        member_id="u1",
        tracker_id=tracker_id,
        created_at=NOW,
    )


class TestUrgentAnnouncements:
    def test_announced_once_per_leader(self, state: SessionState) -> None:
        notifier = Recorder()
        tasks = [make_task("a", NOW + timedelta(days=1)), make_task("b", NOW + timedelta(days=2))]

        apply_snapshot(state, Snapshot(TASKS, tasks), NOW, notifier)
        apply_snapshot(state, Snapshot(TASKS, tasks), NOW, notifier)

        assert notifier.kinds() == [NotificationKind.URGENT]
        assert notifier.shown[0].message == 'You have 2 urgent task(s)! First: "Task a"'

    def test_new_leader_announced(self, state: SessionState) -> None:
        notifier = Recorder()
        later = make_task("a", NOW + timedelta(days=2))
        sooner = make_task("b", NOW + timedelta(days=1))

        apply_snapshot(state, Snapshot(TASKS, [later]), NOW, notifier)
        apply_snapshot(state, Snapshot(TASKS, [later, sooner]), NOW, notifier)

        assert notifier.kinds() == [NotificationKind.URGENT, NotificationKind.URGENT]

    def test_empty_snapshot_rearms(self, state: SessionState) -> None:
        notifier = Recorder()
        tasks = [make_task("a", NOW + timedelta(days=1))]

        apply_snapshot(state, Snapshot(TASKS, tasks), NOW, notifier)
        apply_snapshot(state, Snapshot(TASKS, []), NOW, notifier)
        apply_snapshot(state, Snapshot(TASKS, tasks), NOW, notifier)

        assert notifier.kinds().count(NotificationKind.URGENT) == 2

    def test_snapshot_replaces_tasks(self, state: SessionState) -> None:
        apply_snapshot(state, Snapshot(TASKS, [make_task("a", NOW)]), NOW, Recorder())
        apply_snapshot(state, Snapshot(TASKS, [make_task("b", NOW)]), NOW, Recorder())
        assert [t.id for t in state.tasks] == ["b"]


class TestMilestones:
    def test_daily_goal_once_per_day(self, state: SessionState) -> None:
        notifier = Recorder()
        tasks = [make_task("a", NOW, completed_by=["u1"])]

        apply_snapshot(state, Snapshot(TASKS, tasks), NOW, notifier)
        apply_snapshot(state, Snapshot(TASKS, tasks), NOW + timedelta(hours=1), notifier)
        assert notifier.kinds() == [NotificationKind.DAILY_GOAL]

        tomorrow = [make_task("b", NOW + timedelta(days=1), completed_by=["u1"])]
        apply_snapshot(state, Snapshot(TASKS, tomorrow), NOW + timedelta(days=1), notifier)
        assert notifier.kinds() == [NotificationKind.DAILY_GOAL, NotificationKind.DAILY_GOAL]


class TestTrackerCelebration:
    def test_first_snapshot_only_primes(self, state: SessionState) -> None:
        notifier = Recorder()
        tasks = [make_tracker_task("a", True), make_tracker_task("b", True)]

        apply_snapshot(state, Snapshot(TRACKER_TASKS, tasks), NOW, notifier)

        assert notifier.shown == []
        assert state.notifications.trackers_primed

    def test_completion_celebrated_once(self, state: SessionState) -> None:
        notifier = Recorder()
        state.trackers = [
            MinuteTracker(id="T", date=NOW, total_minutes=30, description="Sprint review",
                          created_by="admin", created_at=NOW),
        ]
        partial = [
            make_tracker_task("a", True),
            make_tracker_task("b", True),
            make_tracker_task("c", False),
        ]
        done = [make_tracker_task("a", True), make_tracker_task("b", True),
                make_tracker_task("c", True)]

        apply_snapshot(state, Snapshot(TRACKER_TASKS, partial), NOW, notifier)
        apply_snapshot(state, Snapshot(TRACKER_TASKS, done), NOW, notifier)
        apply_snapshot(state, Snapshot(TRACKER_TASKS, done), NOW, notifier)

        assert notifier.kinds() == [NotificationKind.TRACKER_DONE]
        assert notifier.shown[0].message == 'All tasks completed for "Sprint review"! Great job!'

    def test_uncomplete_and_recomplete_not_repeated(self, state: SessionState) -> None:
        notifier = Recorder()
        apply_snapshot(state, Snapshot(TRACKER_TASKS, [make_tracker_task("a", False)]), NOW, notifier)
        apply_snapshot(state, Snapshot(TRACKER_TASKS, [make_tracker_task("a", True)]), NOW, notifier)
        apply_snapshot(state, Snapshot(TRACKER_TASKS, [make_tracker_task("a", False)]), NOW, notifier)
        apply_snapshot(state, Snapshot(TRACKER_TASKS, [make_tracker_task("a", True)]), NOW, notifier)

        assert notifier.kinds() == [NotificationKind.TRACKER_DONE]


class TestOtherCollections:
    def test_attendance_sets_clocked_in(self, state: SessionState) -> None:
        today = NOW.astimezone().strftime("%Y-%m-%d")
        records = [
            AttendanceRecord(id="r1", user_id="u1", date=today, time_in=NOW,
                             status=AttendanceStatus.LATE),
        ]
        apply_snapshot(state, Snapshot(ATTENDANCE, records), NOW, Recorder())
        assert state.clocked_in

    def test_trackers_replaced(self, state: SessionState) -> None:
        tracker = MinuteTracker(id="T", date=NOW, total_minutes=30, description="Sprint",
                                created_by="admin", created_at=NOW)
        apply_snapshot(state, Snapshot(TRACKERS, [tracker]), NOW, Recorder())
        assert state.trackers == [tracker]

    def test_profile_refreshed_from_users(self, state: SessionState) -> None:
        promoted = state.profile.model_copy(update={"role": Role.ADMIN})
        apply_snapshot(state, Snapshot(USERS, [promoted]), NOW, Recorder())
        assert state.profile.role == Role.ADMIN

    def test_profile_change_rederives_urgency(self, state: SessionState) -> None:
        notifier = Recorder()
        legacy = make_task("legacy", NOW + timedelta(days=1))
        legacy = legacy.model_copy(update={"assigned_to": ["ada.new@example.com"]})
        apply_snapshot(state, Snapshot(TASKS, [legacy]), NOW, notifier)
        assert notifier.shown == []

        renamed = state.profile.model_copy(update={"email": "ada.new@example.com"})
        apply_snapshot(state, Snapshot(USERS, [renamed]), NOW, notifier)

        assert notifier.kinds() == [NotificationKind.URGENT]

    def test_unchanged_profile_stays_quiet(self, state: SessionState) -> None:
        notifier = Recorder()
        apply_snapshot(state, Snapshot(TASKS, [make_task("a", NOW + timedelta(days=1))]), NOW, notifier)
        apply_snapshot(state, Snapshot(USERS, [state.profile]), NOW, notifier)

        assert notifier.kinds() == [NotificationKind.URGENT]


class TestHeartbeat:
    def test_sent_once_per_interval(self, state: SessionState) -> None:
        client = MagicMock()
        send_heartbeat(client, state, NOW, 60)
        send_heartbeat(client, state, NOW + timedelta(seconds=30), 60)
        send_heartbeat(client, state, NOW + timedelta(seconds=60), 60)

        assert client.touch_last_active.call_count == 2

    def test_failure_is_ignored(self, state: SessionState) -> None:
        client = MagicMock()
        client.touch_last_active.side_effect = RuntimeError("offline")

        send_heartbeat(client, state, NOW, 60)

        assert state.last_heartbeat == NOW


class TestRunSession:
    def test_consumes_channel_and_unsubscribes(self, profile: UserProfile) -> None:
        client = MagicMock()
        channel = SnapshotChannel()
        channel.push(Snapshot(TASKS, [make_task("a", datetime.now(UTC) + timedelta(days=1))]))
        notifier = Recorder()
        stops = iter([False, True])

        state = run_session(
            client,
            profile,
            notifier=notifier,
            should_stop=lambda: next(stops),
            channel=channel,
        )

        assert [t.id for t in state.tasks] == ["a"]
        assert notifier.kinds() == [NotificationKind.URGENT]
        client.touch_last_active.assert_called_once()
        assert client.subscribe.call_count == 5
        assert client.subscribe.return_value.unsubscribe.call_count == 5

    def test_errors_do_not_stop_loop(self, profile: UserProfile) -> None:
        client = MagicMock()
        channel = SnapshotChannel()
        channel.push(Snapshot(TASKS, [make_task("a", datetime.now(UTC))]))
        channel.push(Snapshot(TASKS, [make_task("b", datetime.now(UTC))]))
        stops = iter([False, False, True])

        def failing(notification: Notification) -> bool:
            raise RuntimeError("display failed")

        state = run_session(
            client,
            profile,
            notifier=failing,
            should_stop=lambda: next(stops),
            channel=channel,
        )

        assert [t.id for t in state.tasks] == ["b"]
