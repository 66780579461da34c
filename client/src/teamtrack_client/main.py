"""Entry point for the TeamTrack command line client."""

import argparse
import getpass
import logging
import platform
import sys
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import firebase_admin  # type: ignore[import-untyped]
from firebase_admin import credentials, firestore  # type: ignore[import-untyped]

from teamtrack_shared import (
    LoginHistoryEntry,
    MinuteTracker,
    Position,
    Priority,
    Role,
    StaffDetails,
    StudentDetails,
    Task,
    TaskHistoryEntry,
    TrackerTask,
    UserProfile,
)

from .config import Config, load_config
from .derive import (
    StatsScope,
    attendance_day,
    inactive_members,
    is_clocked_in,
    is_online,
    local_day,
    task_stats,
    todays_milestone,
    tracker_stats,
    urgent_tasks,
    visible_tasks,
)
from .errors import StaleOrMissingReference, TeamTrackError
from .export import (
    dated_file_name,
    export_rows,
    history_rows,
    login_history_rows,
    my_task_rows,
    task_rows,
    tracker_detail_grid,
    user_rows,
)
from .firebase_client import (
    LOGIN_HISTORY,
    TASK_HISTORY,
    TASKS,
    TRACKER_TASKS,
    TRACKERS,
    USERS,
    Direction,
    FirestoreClient,
)
from .identity import Identity
from .permissions import require_admin
from .session import run_session

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


def init_firebase(config: Config) -> firestore.Client:
    """Initialize Firebase Admin SDK and return Firestore client."""
    cred = credentials.Certificate(str(config.firebase_credentials_path))
    firebase_admin.initialize_app(cred)
    return firestore.client()


def _connect(args: argparse.Namespace) -> tuple[Config, FirestoreClient, UserProfile]:
    setup_logging(args.verbose, args.log_file)

    config_path: Path = args.config
    if not config_path.exists():
        logger.error("Configuration file not found: %s", config_path)
        sys.exit(1)

    config = load_config(config_path)
    client = FirestoreClient(init_firebase(config))
    logger.debug("Firebase initialized")

    profile = client.get_profile(config.user_id)
    if profile is None:
        logger.error("No profile found for user %s", config.user_id)
        sys.exit(1)
    return config, client, profile


def cmd_run(args: argparse.Namespace) -> None:
    """Watch tasks, trackers and attendance until interrupted."""
    config, client, profile = _connect(args)

    login_id = client.record_login(profile, device_info=platform.platform())
    logger.info("Signed in as %s (%s)", profile.name, profile.role)
    try:
        run_session(
            client,
            profile,
            heartbeat_interval_seconds=config.heartbeat_interval_seconds,
            urgent_limit=config.urgent_limit,
        )
    finally:
        client.record_logout(login_id)


def cmd_stats(args: argparse.Namespace) -> None:
    """Print task counts by status bucket."""
    config, client, profile = _connect(args)
    tasks = client.fetch(TASKS, Task, order_by="dueDate")
    scope = StatsScope.GLOBAL if args.all_tasks else StatsScope.PERSONAL
    now = datetime.now(UTC)
    stats = task_stats(
        tasks, profile.uid, now, scope, config.due_soon_days, email=profile.email
    )

    print(f"Overdue:   {stats.overdue}")
    print(f"Due soon:  {stats.due_soon}")
    print(f"Completed: {stats.completed}")
    print(f"Total:     {stats.total}")
    if scope == StatsScope.PERSONAL and todays_milestone(
        tasks, profile.uid, local_day(now), profile.email
    ):
        print("All of today's tasks are done!")

    if scope == StatsScope.GLOBAL:
        trackers = client.fetch(TRACKERS, MinuteTracker)
        tracker_tasks = client.fetch(TRACKER_TASKS, TrackerTask)
        totals = tracker_stats(trackers, tracker_tasks)
        print(f"Tracked minutes: {totals.total_minutes} across {totals.trackers_logged} trackers")
        print(f"Tracker tasks:   {totals.completed_tasks} done, {totals.pending_tasks} pending")

        profiles = client.fetch(USERS, UserProfile, order_by="name")
        online = sum(1 for p in profiles if is_online(p.last_active, now))
        print(f"Online now:      {online}")
        for member in inactive_members(profiles, now):
            print(f"Inactive:        {member.name}")


def cmd_urgent(args: argparse.Namespace) -> None:
    """Print the most urgent pending tasks."""
    config, client, profile = _connect(args)
    tasks = client.fetch(TASKS, Task, order_by="dueDate")
    urgent = urgent_tasks(tasks, profile.uid, config.urgent_limit, email=profile.email)
    if not urgent:
        print("No urgent tasks")
        return
    for task in urgent:
        due = task.due_date.astimezone().strftime("%Y-%m-%d %H:%M")
        print(f"{due}  [{task.priority.value}]  {task.title}")


def cmd_clock_in(args: argparse.Namespace) -> None:
    config, client, profile = _connect(args)
    records = client.fetch_attendance(profile.uid)
    client.clock_in(profile, records, late_hour=config.late_hour)


def cmd_clock_out(args: argparse.Namespace) -> None:
    config, client, profile = _connect(args)
    records = client.fetch_attendance(profile.uid)
    today = attendance_day(datetime.now().astimezone())
    if not is_clocked_in(records, today):
        logger.warning("Not clocked in today")
        return
    client.clock_out(records, late_hour=config.late_hour)


def cmd_complete(args: argparse.Namespace) -> None:
    """Mark a task done, or not done, for the signed-in user."""
    _, client, profile = _connect(args)
    tasks = client.fetch(TASKS, Task, order_by="dueDate")
    result = client.set_task_completion(profile, tasks, args.task_id, args.completing)
    print(f"Task {args.task_id}: {result.action.value} ({len(result.completed_by)} done)")


def cmd_task_add(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    task_id = client.create_task(
        profile,
        args.title,
        args.due,
        description=args.description,
        priority=args.priority,
        assigned_to=args.assigned_to,
    )
    print(task_id)


def cmd_task_delete(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    tasks = client.fetch(TASKS, Task, order_by="dueDate")
    task = next((t for t in tasks if t.id == args.task_id), None)
    if task is None:
        raise StaleOrMissingReference(f"Task {args.task_id} is no longer available")
    client.delete_task(profile, task)


def cmd_tracker_save(args: argparse.Namespace) -> None:
    """Create a tracker, or update one when a tracker id is given."""
    _, client, profile = _connect(args)
    tracker_id = client.save_tracker(
        profile,
        args.date or datetime.now(UTC),
        args.minutes,
        args.description,
        priority=args.priority,
        members=args.members,
        task_template=args.template,
        tracker_id=getattr(args, "tracker_id", None),
    )
    print(tracker_id)


def cmd_tracker_delete(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    client.delete_tracker(profile, args.tracker_id)


def cmd_tracker_task_add(args: argparse.Namespace) -> None:
    _, client, _ = _connect(args)
    print(client.save_tracker_task(args.tracker_id, args.description, args.minutes, args.member))


def cmd_tracker_task_done(args: argparse.Namespace) -> None:
    _, client, _ = _connect(args)
    client.set_tracker_task_completion(args.task_id, not args.undo)


def cmd_tracker_task_delete(args: argparse.Namespace) -> None:
    _, client, _ = _connect(args)
    client.delete_tracker_task(args.task_id)


def _staff_details(args: argparse.Namespace) -> StaffDetails | None:
    if args.role != Role.STAFF:
        return None
    return StaffDetails(access_level=args.access_level or 1)


def cmd_member_add(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    password = args.password or getpass.getpass("Password for new member: ")
    member = Identity(client).create_member(
        profile,
        args.email,
        password,
        args.name,
        args.role,
        args.position,
        student_details=StudentDetails() if args.role == Role.STUDENT else None,
        staff_details=_staff_details(args),
    )
    print(member.uid)


def cmd_member_update(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    client.update_member(
        profile,
        args.uid,
        args.name,
        args.position,
        args.role,
        access_level=args.access_level,
    )


def cmd_member_email(args: argparse.Namespace) -> None:
    """Change a member's email in the profile and in Authentication."""
    _, client, profile = _connect(args)
    member = client.get_profile(args.uid)
    if member is None:
        raise StaleOrMissingReference(f"No profile found for user {args.uid}")

    identity = Identity(client)
    current = identity.current_user(profile.uid)
    identity.change_email(
        profile,
        member,
        args.email,
        actor_email_verified=current is not None and current.email_verified,
    )


def cmd_member_delete(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    Identity(client).delete_account(profile, args.uid)


def cmd_history_delete(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    client.delete_task_history(profile, args.entry_id)


def cmd_login_history_delete(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    client.delete_login_history(profile, args.entry_id)


def cmd_login_history_clear(args: argparse.Namespace) -> None:
    _, client, profile = _connect(args)
    count = client.clear_login_history(profile)
    print(f"Deleted {count} entries")


def _local_datetime(value: str) -> datetime:
    """Parse an ISO date or datetime; naive values are local time."""
    return datetime.fromisoformat(value).astimezone()


def cmd_export(args: argparse.Namespace) -> None:
    """Export a collection to an xlsx file."""
    config, client, profile = _connect(args)
    today = date.today()
    export_dir: Path = args.output or config.export_dir

    if args.kind == "users":
        require_admin(profile, "export data")
        profiles = client.fetch(USERS, UserProfile, "createdAt", Direction.DESCENDING)
        export_rows(user_rows(profiles), "Users", dated_file_name("Users", today), export_dir)
    elif args.kind == "tasks":
        require_admin(profile, "export data")
        tasks = client.fetch(TASKS, Task, order_by="dueDate")
        export_rows(task_rows(tasks), "Tasks", dated_file_name("Tasks", today), export_dir)
    elif args.kind == "history":
        require_admin(profile, "export data")
        entries = client.fetch(
            TASK_HISTORY, TaskHistoryEntry, "timestamp", Direction.DESCENDING
        )
        export_rows(
            history_rows(entries),
            "Task_History",
            dated_file_name("Task_History", today),
            export_dir,
        )
    elif args.kind == "login-history":
        require_admin(profile, "export data")
        entries = client.fetch(
            LOGIN_HISTORY, LoginHistoryEntry, "loginTime", Direction.DESCENDING
        )
        export_rows(
            login_history_rows(entries),
            "Login_History",
            dated_file_name("Login_History", today),
            export_dir,
        )
    elif args.kind == "my-tasks":
        tasks = client.fetch(TASKS, Task, order_by="dueDate")
        todays = [
            task
            for task in visible_tasks(tasks, profile.uid, profile.email)
            if local_day(task.due_date) == today
        ]
        export_rows(
            my_task_rows(todays, profile.uid),
            "My Today Tasks",
            dated_file_name("My_Tasks", today),
            export_dir,
        )
    elif args.kind == "tracker":
        if not args.tracker_id:
            logger.error("--tracker-id is required for tracker export")
            sys.exit(1)
        trackers = client.fetch(TRACKERS, MinuteTracker)
        tracker = next((t for t in trackers if t.id == args.tracker_id), None)
        if tracker is None:
            raise StaleOrMissingReference(f"Tracker {args.tracker_id} not found")
        grid = tracker_detail_grid(
            tracker,
            client.fetch(TRACKER_TASKS, TrackerTask, order_by="createdAt"),
            client.fetch(USERS, UserProfile, order_by="name"),
        )
        export_rows(
            grid,
            "TimeTrackerDetails",
            dated_file_name("TimeTracker", local_day(tracker.date)),
            export_dir,
            header=False,
        )


def _common_args(suppress: bool) -> argparse.ArgumentParser:
    """Flags accepted both before and after the subcommand.

    The copies on subcommands use SUPPRESS defaults, so a flag given before
    the subcommand is not overwritten by the subcommand's default.
    """
    def default(value: object) -> object:
        return argparse.SUPPRESS if suppress else value

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config", "-c",
        type=Path,
        default=default(Path("config.json")),
        help="Path to configuration file",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=default(False),
        help="Enable verbose logging",
    )
    common.add_argument(
        "--log-file",
        type=Path,
        default=default(None),
        help="Also write logs to this file",
    )
    return common


def _add_tracker_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--minutes", type=int, required=True, help="Declared minutes")
    parser.add_argument("--description", required=True)
    parser.add_argument("--date", type=_local_datetime, default=None, help="Defaults to now")
    parser.add_argument(
        "--priority", type=Priority, choices=list(Priority), default=Priority.MEDIUM
    )
    parser.add_argument(
        "--member", dest="members", action="append", default=[], help="Repeat per member"
    )
    parser.add_argument("--template", default=None, help="Task template")


def _add_member_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--position", default=Position.MEMBER.value)
    parser.add_argument("--role", type=Role, choices=list(Role), default=Role.STUDENT)
    parser.add_argument(
        "--access-level", type=int, choices=[1, 2], default=None, help="Staff only"
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="TeamTrack task and time tracking client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[_common_args(suppress=False)],
        epilog="""
Examples:
  teamtrack                           Watch tasks and trackers, with heartbeat
  teamtrack stats --all               Task counts across the whole team
  teamtrack urgent                    Your three most urgent tasks
  teamtrack complete abc123           Mark a task done for yourself
  teamtrack task add --title Report --due 2024-05-01T17:00
  teamtrack tracker add --minutes 90 --description "Sprint review" --member uid1
  teamtrack member email uid1 new@example.com
  teamtrack clock-in                  Start today's attendance record
  teamtrack export tasks -o out/      Export all tasks to out/Tasks_<date>.xlsx
  teamtrack export tracker --tracker-id abc123
""",
    )
    common = _common_args(suppress=True)

    subparsers = parser.add_subparsers(dest="command")

    def add_command(
        group: Any,
        name: str,
        help_text: str,
    ) -> argparse.ArgumentParser:
        return group.add_parser(name, help=help_text, parents=[common])

    run_parser = add_command(subparsers, "run", "Watch for changes (default)")
    run_parser.set_defaults(func=cmd_run)

    stats_parser = add_command(subparsers, "stats", "Show task counts")
    stats_parser.add_argument(
        "--all",
        dest="all_tasks",
        action="store_true",
        help="Count every task using the stored status",
    )
    stats_parser.set_defaults(func=cmd_stats)

    urgent_parser = add_command(subparsers, "urgent", "Show urgent tasks")
    urgent_parser.set_defaults(func=cmd_urgent)

    complete_parser = add_command(subparsers, "complete", "Mark a task done")
    complete_parser.add_argument("task_id")
    complete_parser.set_defaults(func=cmd_complete, completing=True)

    uncomplete_parser = add_command(subparsers, "uncomplete", "Mark a task not done")
    uncomplete_parser.add_argument("task_id")
    uncomplete_parser.set_defaults(func=cmd_complete, completing=False)

    # Tasks
    task_parser = add_command(subparsers, "task", "Create or delete tasks")
    task_commands = task_parser.add_subparsers(dest="task_command", required=True)

    task_add = add_command(task_commands, "add", "Create a task")
    task_add.add_argument("--title", required=True)
    task_add.add_argument("--due", type=_local_datetime, required=True, help="ISO date/time")
    task_add.add_argument("--description", default="")
    task_add.add_argument(
        "--priority", type=Priority, choices=list(Priority), default=Priority.MEDIUM
    )
    task_add.add_argument(
        "--assign", dest="assigned_to", action="append", default=[],
        help="Repeat per assignee; none means everyone",
    )
    task_add.set_defaults(func=cmd_task_add)

    task_delete = add_command(task_commands, "delete", "Delete a task")
    task_delete.add_argument("task_id")
    task_delete.set_defaults(func=cmd_task_delete)

    # Minute trackers
    tracker_parser = add_command(subparsers, "tracker", "Manage minute trackers")
    tracker_commands = tracker_parser.add_subparsers(dest="tracker_command", required=True)

    tracker_add = add_command(tracker_commands, "add", "Create a tracker")
    _add_tracker_args(tracker_add)
    tracker_add.set_defaults(func=cmd_tracker_save)

    tracker_update = add_command(tracker_commands, "update", "Update a tracker")
    tracker_update.add_argument("tracker_id")
    _add_tracker_args(tracker_update)
    tracker_update.set_defaults(func=cmd_tracker_save)

    tracker_delete = add_command(tracker_commands, "delete", "Delete a tracker and its tasks")
    tracker_delete.add_argument("tracker_id")
    tracker_delete.set_defaults(func=cmd_tracker_delete)

    tracker_task_add = add_command(tracker_commands, "task-add", "Add a task to a tracker")
    tracker_task_add.add_argument("tracker_id")
    tracker_task_add.add_argument("--description", required=True)
    tracker_task_add.add_argument("--minutes", type=int, required=True)
    tracker_task_add.add_argument("--member", required=True)
    tracker_task_add.set_defaults(func=cmd_tracker_task_add)

    tracker_task_done = add_command(tracker_commands, "task-done", "Complete a tracker task")
    tracker_task_done.add_argument("task_id")
    tracker_task_done.add_argument("--undo", action="store_true", help="Mark as pending")
    tracker_task_done.set_defaults(func=cmd_tracker_task_done)

    tracker_task_delete = add_command(tracker_commands, "task-delete", "Delete a tracker task")
    tracker_task_delete.add_argument("task_id")
    tracker_task_delete.set_defaults(func=cmd_tracker_task_delete)

    # Members
    member_parser = add_command(subparsers, "member", "Manage members")
    member_commands = member_parser.add_subparsers(dest="member_command", required=True)

    member_add = add_command(member_commands, "add", "Create an account and profile")
    member_add.add_argument("--email", required=True)
    member_add.add_argument("--password", default=None, help="Prompted for if omitted")
    _add_member_args(member_add)
    member_add.set_defaults(func=cmd_member_add)

    member_update = add_command(member_commands, "update", "Update a member's profile")
    member_update.add_argument("uid")
    _add_member_args(member_update)
    member_update.set_defaults(func=cmd_member_update)

    member_email = add_command(member_commands, "email", "Change a member's email")
    member_email.add_argument("uid")
    member_email.add_argument("email")
    member_email.set_defaults(func=cmd_member_email)

    member_delete = add_command(member_commands, "delete", "Delete a member's account")
    member_delete.add_argument("uid")
    member_delete.set_defaults(func=cmd_member_delete)

    # History
    history_parser = add_command(subparsers, "history", "Manage the task history")
    history_commands = history_parser.add_subparsers(dest="history_command", required=True)
    history_delete = add_command(history_commands, "delete", "Delete a history entry")
    history_delete.add_argument("entry_id")
    history_delete.set_defaults(func=cmd_history_delete)

    logins_parser = add_command(subparsers, "login-history", "Manage the login history")
    logins_commands = logins_parser.add_subparsers(dest="login_command", required=True)
    logins_delete = add_command(logins_commands, "delete", "Delete a login entry")
    logins_delete.add_argument("entry_id")
    logins_delete.set_defaults(func=cmd_login_history_delete)
    logins_clear = add_command(logins_commands, "clear", "Delete every login entry")
    logins_clear.set_defaults(func=cmd_login_history_clear)

    clock_in_parser = add_command(subparsers, "clock-in", "Clock in for today")
    clock_in_parser.set_defaults(func=cmd_clock_in)

    clock_out_parser = add_command(subparsers, "clock-out", "Clock out for today")
    clock_out_parser.set_defaults(func=cmd_clock_out)

    export_parser = add_command(subparsers, "export", "Export data to xlsx")
    export_parser.add_argument(
        "kind",
        choices=["users", "tasks", "history", "login-history", "my-tasks", "tracker"],
    )
    export_parser.add_argument("--tracker-id", help="Tracker to export")
    export_parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Directory for the exported file",
    )
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args(argv)

    try:
        # Default to run if no subcommand
        if args.command is None:
            cmd_run(args)
        else:
            args.func(args)
    except TeamTrackError as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
