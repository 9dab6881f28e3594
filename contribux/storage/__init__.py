from .database import OpportunityDatabase
from .profiles import DatabaseProfileDirectory, ProfileDirectory, StaticProfileDirectory

__all__ = [
    "OpportunityDatabase",
    "ProfileDirectory",
    "DatabaseProfileDirectory",
    "StaticProfileDirectory",
]
