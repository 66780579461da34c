"""Tests for the Firebase Authentication adapter."""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
from firebase_admin import auth
from firebase_admin.exceptions import InvalidArgumentError

from teamtrack_shared import Role, StaffDetails, UserProfile
from teamtrack_client.errors import AuthorizationDenied, StoreOperationFailed
from teamtrack_client.identity import Identity

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


def make_profile(uid: str, role: Role = Role.STUDENT) -> UserProfile:
    return UserProfile(uid=uid, name=uid.title(), email=f"{uid}@example.com", role=role,
                       created_at=NOW)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def identity(client: MagicMock) -> Identity:
    return Identity(client)


class TestCurrentUser:
    def test_role_from_claims(self, identity: Identity, client: MagicMock) -> None:
        record = MagicMock(uid="u1", display_name="Ada", email_verified=True,
                           custom_claims={"role": "admin"})
        client.get_profile.return_value = make_profile("u1")
        with patch("teamtrack_client.identity.auth.get_user", return_value=record):
            user = identity.current_user("u1")

        assert user is not None
        assert user.role == Role.ADMIN
        assert user.email_verified

    def test_role_from_profile(self, identity: Identity, client: MagicMock) -> None:
        record = MagicMock(uid="u1", display_name=None, email_verified=False, custom_claims=None)
        client.get_profile.return_value = make_profile("u1", Role.STAFF)
        with patch("teamtrack_client.identity.auth.get_user", return_value=record):
            user = identity.current_user("u1")

        assert user is not None
        assert user.role == Role.STAFF
        assert user.display_name == "U1"

    def test_unknown_user(self, identity: Identity) -> None:
        error = auth.UserNotFoundError("No user record found")
        with patch("teamtrack_client.identity.auth.get_user", side_effect=error):
            assert identity.current_user("ghost") is None


class TestChangeEmail:
    def test_member_changes_own_email(self, identity: Identity, client: MagicMock) -> None:
        member = make_profile("u1")
        with patch("teamtrack_client.identity.auth.update_user") as update_user:
            identity.change_email(member, member, " new@example.com ")

        client.set_profile_email.assert_called_once_with("u1", "new@example.com")
        update_user.assert_called_once_with(
            "u1", email="new@example.com", email_verified=False, app=None
        )

    def test_member_cannot_change_others(self, identity: Identity, client: MagicMock) -> None:
        with pytest.raises(AuthorizationDenied):
            identity.change_email(make_profile("u1"), make_profile("u2"), "x@example.com")
        client.set_profile_email.assert_not_called()

    def test_unverified_member_rejected(self, identity: Identity, client: MagicMock) -> None:
        member = make_profile("u1")
        with pytest.raises(AuthorizationDenied):
            identity.change_email(member, member, "x@example.com", actor_email_verified=False)
        client.set_profile_email.assert_not_called()

    def test_admin_changes_any_email(self, identity: Identity, client: MagicMock) -> None:
        with patch("teamtrack_client.identity.auth.update_user"):
            identity.change_email(make_profile("boss", Role.ADMIN), make_profile("u2"),
                                  "x@example.com")
        client.set_profile_email.assert_called_once_with("u2", "x@example.com")

    def test_profile_reverted_when_auth_fails(self, identity: Identity,
                                              client: MagicMock) -> None:
        member = make_profile("u1")
        error = InvalidArgumentError("email rejected")
        with patch("teamtrack_client.identity.auth.update_user", side_effect=error):
            with pytest.raises(StoreOperationFailed):
                identity.change_email(member, member, "new@example.com")

        assert [c.args for c in client.set_profile_email.call_args_list] == [
            ("u1", "new@example.com"),
            ("u1", "u1@example.com"),
        ]


class TestCreateMember:
    def test_creates_account_then_profile(self, identity: Identity, client: MagicMock) -> None:
        with patch("teamtrack_client.identity.auth.create_user",
                   return_value=MagicMock(uid="new")):
            profile = identity.create_member(
                make_profile("boss", Role.ADMIN),
                "staff@example.com",
                "secret123",
                "Grace",
                Role.STAFF,
                "Staff",
                staff_details=StaffDetails(access_level=2),
            )

        assert profile.uid == "new"
        assert profile.task_delete_permission
        assert profile.student_details is None
        client.create_profile.assert_called_once_with(profile)

    def test_requires_admin(self, identity: Identity) -> None:
        with patch("teamtrack_client.identity.auth.create_user") as create_user:
            with pytest.raises(AuthorizationDenied):
                identity.create_member(make_profile("u1"), "a@example.com", "pw", "A",
                                       Role.STUDENT, "Member")
        create_user.assert_not_called()

    def test_account_removed_when_profile_fails(self, identity: Identity,
                                                client: MagicMock) -> None:
        client.create_profile.side_effect = StoreOperationFailed("write failed")
        with (
            patch("teamtrack_client.identity.auth.create_user",
                  return_value=MagicMock(uid="new")),
            patch("teamtrack_client.identity.auth.delete_user") as delete_user,
        ):
            with pytest.raises(StoreOperationFailed):
                identity.create_member(make_profile("boss", Role.ADMIN), "a@example.com",
                                       "pw", "A", Role.STUDENT, "Member")

        delete_user.assert_called_once_with("new", app=None)
