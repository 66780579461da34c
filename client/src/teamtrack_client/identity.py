"""Firebase Authentication adapter."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from firebase_admin import auth  # type: ignore[import-untyped]
from firebase_admin.exceptions import FirebaseError  # type: ignore[import-untyped]

from teamtrack_shared import Role, StaffDetails, StudentDetails, UserProfile

from .errors import AuthorizationDenied, StoreOperationFailed, ValidationFailed
from .firebase_client import FirestoreClient
from .permissions import is_admin, require_admin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    display_name: str
    email_verified: bool
    role: Role


class Identity:
    """Looks up users and changes accounts in Firebase Authentication.

    Account changes that span Auth and the users collection are undone in
    whichever system succeeded first when the second one fails.
    """

    def __init__(self, client: FirestoreClient, app: Any = None):
        self._client = client
        self._app = app

    def current_user(self, uid: str) -> CurrentUser | None:
        """The signed-in user, or None if the account does not exist."""
        try:
            record = auth.get_user(uid, app=self._app)
        except auth.UserNotFoundError:
            return None

        profile = self._client.get_profile(uid)
        claims = record.custom_claims or {}
        role = claims.get("role") or (profile.role if profile else Role.STUDENT)
        display_name = record.display_name or (profile.name if profile else "New User")
        return CurrentUser(
            id=record.uid,
            display_name=display_name,
            email_verified=bool(record.email_verified),
            role=Role(role),
        )

    def create_member(
        self,
        actor: UserProfile,
        email: str,
        password: str,
        name: str,
        role: Role,
        position: str,
        student_details: StudentDetails | None = None,
        staff_details: StaffDetails | None = None,
    ) -> UserProfile:
        """Create the Auth account and its profile document."""
        require_admin(actor, "create users")
        if not email.strip() or not password or not name.strip():
            raise ValidationFailed("Please fill all required fields")

        try:
            record = auth.create_user(
                email=email.strip(),
                password=password,
                display_name=name.strip(),
                app=self._app,
            )
        except FirebaseError as e:
            raise StoreOperationFailed(f"Failed to create account for {email}") from e

        now = datetime.now(UTC)
        staff = staff_details if role == Role.STAFF else None
        profile = UserProfile(
            uid=record.uid,
            name=name.strip(),
            email=email.strip(),
            role=role,
            position=position,
            created_at=now,
            last_active=now,
            student_details=student_details if role == Role.STUDENT else None,
            staff_details=staff,
            task_delete_permission=staff is not None and staff.access_level == 2,
        )
        try:
            self._client.create_profile(profile)
        except StoreOperationFailed:
            logger.warning("Removing account %s after profile write failed", record.uid)
            auth.delete_user(record.uid, app=self._app)
            raise

        logger.info("Created member %s (%s)", profile.uid, profile.role)
        return profile

    def change_email(
        self,
        actor: UserProfile,
        member: UserProfile,
        new_email: str,
        actor_email_verified: bool = True,
    ) -> None:
        """Change a member's email in the profile and then in Auth.

        If Auth rejects the change, the profile email is put back.
        """
        new_email = new_email.strip()
        if not new_email:
            raise ValidationFailed("Please enter a valid email")
        if not is_admin(actor):
            if actor.uid != member.uid:
                raise AuthorizationDenied("Only admins can change another member's email")
            if not actor_email_verified:
                raise AuthorizationDenied(
                    "Please verify your current email before changing it"
                )

        self._client.set_profile_email(member.uid, new_email)
        try:
            auth.update_user(
                member.uid,
                email=new_email,
                email_verified=False,
                app=self._app,
            )
        except FirebaseError as e:
            logger.warning("Auth rejected email change for %s, reverting", member.uid)
            self._client.set_profile_email(member.uid, member.email)
            raise StoreOperationFailed("Failed to update email") from e

        logger.info("Changed email for %s", member.uid)

    def delete_account(self, actor: UserProfile, uid: str) -> None:
        """Delete both the profile document and the Auth account."""
        self._client.delete_user(actor, uid)
        try:
            auth.delete_user(uid, app=self._app)
        except auth.UserNotFoundError:
            logger.debug("Auth account %s was already gone", uid)
        except FirebaseError as e:
            raise StoreOperationFailed(f"Failed to delete account {uid}") from e
