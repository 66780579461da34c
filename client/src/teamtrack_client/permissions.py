"""Role policy checks.

Checks run before any store call; a denied action is never attempted.
"""

from teamtrack_shared import Role, UserProfile

from .errors import AuthorizationDenied


def is_admin(profile: UserProfile | None) -> bool:
    return profile is not None and profile.role == Role.ADMIN


def can_manage_tasks(profile: UserProfile | None) -> bool:
    """Admins, and staff with access level 2, may create and delete tasks."""
    if profile is None:
        return False
    if profile.role == Role.ADMIN:
        return True
    return profile.role == Role.STAFF and profile.access_level == 2


def require_admin(profile: UserProfile | None, action: str) -> None:
    if not is_admin(profile):
        raise AuthorizationDenied(f"Only admins can {action}")


def require_task_manager(profile: UserProfile | None, action: str) -> None:
    if not can_manage_tasks(profile):
        raise AuthorizationDenied(f"Only admins or level 2 staff can {action}")
