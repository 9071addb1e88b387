"""Profile persistence port, an in-memory adapter, and the versioned update loop."""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from personalization.errors import InvalidParameter, ProfileNotFound, VersionConflict
from personalization.models import InterestProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VersionedProfile:
    """A stored profile together with the version it was read at."""

    profile: InterestProfile
    version: int


class ProfileRepository(ABC):
    """Abstract base class for durable profile storage.

    Implementations must make :meth:`save` conditional: a write only
    succeeds if the stored version still equals *expected_version*, and it
    bumps the version by one. ``expected_version == 0`` means "create".
    """

    @abstractmethod
    def load(self, user_id: str) -> VersionedProfile:
        """Return the stored profile for *user_id*.

        Raises:
            ProfileNotFound: If nothing is stored for *user_id*.
        """

    @abstractmethod
    def save(self, profile: InterestProfile, expected_version: int) -> int:
        """Store *profile* if its stored version is *expected_version*.

        Returns:
            The new version.

        Raises:
            VersionConflict: If another writer got there first.
        """

    @abstractmethod
    def delete(self, user_id: str) -> None:
        """Remove every trace of *user_id*'s profile.

        Raises:
            ProfileNotFound: If nothing is stored for *user_id*.
        """


class InMemoryProfileRepository(ProfileRepository):
    """Thread-safe dict-backed repository.

    Profiles are deep-copied on the way in and out so callers can never
    mutate stored state except through :meth:`save`.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._profiles: dict[str, VersionedProfile] = {}

    def load(self, user_id: str) -> VersionedProfile:
        with self._lock:
            stored = self._profiles.get(user_id)
            if stored is None:
                raise ProfileNotFound(user_id)
            return VersionedProfile(copy.deepcopy(stored.profile), stored.version)

    def save(self, profile: InterestProfile, expected_version: int) -> int:
        with self._lock:
            stored = self._profiles.get(profile.user_id)
            actual = stored.version if stored is not None else 0
            if actual != expected_version:
                raise VersionConflict(profile.user_id, expected_version, actual)
            new_version = actual + 1
            self._profiles[profile.user_id] = VersionedProfile(
                copy.deepcopy(profile), new_version
            )
            return new_version

    def delete(self, user_id: str) -> None:
        with self._lock:
            if self._profiles.pop(user_id, None) is None:
                raise ProfileNotFound(user_id)


class ProfileStore:
    """Read-modify-write access to profiles with optimistic concurrency.

    Two feedback events for the same user must not both apply to the same
    stale read, since renormalisation makes the updates order-dependent.
    :meth:`update` re-reads and re-applies on a version conflict, up to
    *max_retries* extra attempts.

    Args:
        repository: Where profiles are kept.
        factory: Builds the profile for a user seen for the first time.
        max_retries: Extra attempts after a version conflict.
    """

    def __init__(
        self,
        repository: ProfileRepository,
        factory: Callable[[str], InterestProfile],
        max_retries: int = 3,
    ) -> None:
        if max_retries < 0:
            raise InvalidParameter(f"max_retries must be non-negative, got {max_retries!r}")
        self._repository = repository
        self._factory = factory
        self._max_retries = max_retries

    def get(self, user_id: str) -> InterestProfile:
        """Return the stored profile for *user_id*.

        Raises:
            ProfileNotFound: If the user has no profile yet.
        """
        return self._repository.load(user_id).profile

    def get_or_create(self, user_id: str) -> InterestProfile:
        """Return the stored profile, or an unsaved new one for a new user."""
        try:
            return self.get(user_id)
        except ProfileNotFound:
            return self._factory(user_id)

    def update(
        self, user_id: str, mutate: Callable[[InterestProfile], InterestProfile]
    ) -> InterestProfile:
        """Apply *mutate* to the user's profile and store the result.

        *mutate* receives a private copy and must return the new profile. It
        may be called more than once if a concurrent writer intervenes, and
        any exception it raises propagates without anything being stored.

        Returns:
            The profile as stored.

        Raises:
            VersionConflict: If every attempt lost the race.
        """
        if not user_id:
            raise InvalidParameter("user_id must be non-empty")
        attempt = 0
        while True:
            try:
                current = self._repository.load(user_id)
            except ProfileNotFound:
                current = VersionedProfile(self._factory(user_id), 0)
            updated = mutate(current.profile)
            try:
                self._repository.save(updated, current.version)
                return updated
            except VersionConflict:
                if attempt >= self._max_retries:
                    logger.warning(
                        "Giving up on profile update for user %r after %d attempts",
                        user_id,
                        attempt + 1,
                    )
                    raise
                attempt += 1
                logger.debug(
                    "Version conflict updating user %r; retrying (%d/%d)",
                    user_id,
                    attempt,
                    self._max_retries,
                )

    def erase(self, user_id: str) -> None:
        """Delete the user's profile on account erasure.

        Raises:
            ProfileNotFound: If the user has no profile.
        """
        self._repository.delete(user_id)
        logger.info("Erased personalization profile for user %r", user_id)
