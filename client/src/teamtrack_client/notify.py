"""Session notifications for urgent tasks, milestones and finished trackers."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from teamtrack_shared import Task, TrackerTask

from .derive import (
    WEEKLY_MILESTONE,
    completed_tracker_ids,
    local_day,
    todays_milestone,
    weekly_completions,
)

logger = logging.getLogger(__name__)


class NotificationKind(StrEnum):
    URGENT = "urgent"
    DAILY_GOAL = "daily_goal"
    WEEKLY_GOAL = "weekly_goal"
    TRACKER_DONE = "tracker_done"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    message: str


@dataclass
class NotificationState:
    """Tracks what has already been announced in this session."""

    urgent_leader: str | None = None
    celebrated_trackers: set[str] = field(default_factory=set)
    trackers_primed: bool = False
    shown_milestones: set[NotificationKind] = field(default_factory=set)
    last_reset_date: str = ""

    def reset_if_new_day(self, today: str) -> None:
        """Milestones may be announced again on a new day."""
        if self.last_reset_date != today:
            self.shown_milestones.clear()
            self.last_reset_date = today

    def track_urgent(self, urgent: Sequence[Task]) -> None:
        """Remember the leading urgent task. An empty result re-arms the warning."""
        self.urgent_leader = urgent[0].id if urgent else None

    def prime_trackers(self, tracker_tasks: Iterable[TrackerTask]) -> None:
        """Mark trackers complete in the first snapshot as already celebrated."""
        self.celebrated_trackers.update(completed_tracker_ids(tracker_tasks))
        self.trackers_primed = True


def urgent_message(urgent: Sequence[Task]) -> str:
    return f'You have {len(urgent)} urgent task(s)! First: "{urgent[0].title}"'


def should_announce_urgent(
    urgent: Sequence[Task],
    state: NotificationState,
) -> Notification | None:
    """Announce once per leading task; recomputations with the same leader stay quiet."""
    if not urgent:
        return None
    if urgent[0].id == state.urgent_leader:
        return None
    return Notification(NotificationKind.URGENT, urgent_message(urgent))


def trackers_to_celebrate(
    tracker_tasks: Iterable[TrackerTask],
    state: NotificationState,
) -> list[str]:
    """Tracker ids that are now fully complete and not yet celebrated.

    Returns nothing until the state has been primed with a first snapshot.
    """
    if not state.trackers_primed:
        return []
    done = completed_tracker_ids(tracker_tasks) - state.celebrated_trackers
    return sorted(done)


def milestone_notifications(
    tasks: Sequence[Task],
    user_id: str,
    now: datetime,
    state: NotificationState,
    email: str | None = None,
) -> list[Notification]:
    """Milestones reached and not yet shown today."""
    found: list[Notification] = []

    if NotificationKind.DAILY_GOAL not in state.shown_milestones:
        if todays_milestone(tasks, user_id, local_day(now), email):
            found.append(
                Notification(
                    NotificationKind.DAILY_GOAL,
                    "All of today's tasks are done!",
                )
            )

    if NotificationKind.WEEKLY_GOAL not in state.shown_milestones:
        completed = weekly_completions(tasks, user_id, now, email)
        if completed >= WEEKLY_MILESTONE:
            found.append(
                Notification(
                    NotificationKind.WEEKLY_GOAL,
                    f"Amazing! You've completed {completed} tasks this week!",
                )
            )

    return found


def tracker_notification(description: str) -> Notification:
    return Notification(
        NotificationKind.TRACKER_DONE,
        f'All tasks completed for "{description}"! Great job!',
    )


def show_notification(notification: Notification) -> bool:
    """Surface a notification to the user.

    Returns True if the notification was shown.
    """
    if notification.kind == NotificationKind.URGENT:
        logger.warning("%s", notification.message)
    else:
        logger.info("%s", notification.message)
    return True
