"""Exception types raised by the personalization core and profile store."""

from __future__ import annotations


class PersonalizationError(Exception):
    """Base class for all personalization errors."""


class InvalidParameter(PersonalizationError, ValueError):
    """Malformed input: rejected before any update is applied."""


class ProfileNotFound(PersonalizationError, KeyError):
    """No stored profile exists for the requested user."""

    def __init__(self, user_id: str) -> None:
        super().__init__(user_id)
        self.user_id = user_id

    def __str__(self) -> str:
        return f"No profile stored for user {self.user_id!r}"


class VersionConflict(PersonalizationError):
    """A conditional write lost the race against a concurrent writer.

    Attributes:
        user_id: The profile owner.
        expected: The version the writer read.
        actual: The version currently stored.
    """

    def __init__(self, user_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Profile {user_id!r} is at version {actual}, expected {expected}"
        )
        self.user_id = user_id
        self.expected = expected
        self.actual = actual
