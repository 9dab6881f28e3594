"""Resolution of caller identities to user profiles."""

from abc import ABC, abstractmethod

from ..models.opportunities import UserProfile
from .database import OpportunityDatabase


class ProfileDirectory(ABC):
    """Looks up the profile of an authenticated caller."""

    @abstractmethod
    async def get(self, user_id: str) -> UserProfile | None:
        """Return the profile, or None for unknown users."""


class DatabaseProfileDirectory(ProfileDirectory):
    """Profiles stored in the ``user_profiles`` table."""

    def __init__(self, db: OpportunityDatabase):
        self._db = db

    async def get(self, user_id: str) -> UserProfile | None:
        return await self._db.get_profile(user_id)


class StaticProfileDirectory(ProfileDirectory):
    """Fixed in-memory profiles (CLI sessions and tests)."""

    def __init__(self, profiles: list[UserProfile] | None = None):
        self._profiles = {p.user_id: p for p in profiles or []}

    def add(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def get(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)
