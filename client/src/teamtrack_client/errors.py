"""Errors raised by TeamTrack operations.

Every error is recovered at the user action that triggered it; none of
them ends the running session.
"""


class TeamTrackError(Exception):
    """Base exception for TeamTrack operations."""


class AuthorizationDenied(TeamTrackError):
    """The acting user's role does not allow the operation."""


class ValidationFailed(TeamTrackError):
    """Input is missing or malformed. Nothing was written."""


class StoreOperationFailed(TeamTrackError):
    """Firestore or Firebase Auth rejected a write."""


class StaleOrMissingReference(TeamTrackError):
    """The target document is no longer present."""
