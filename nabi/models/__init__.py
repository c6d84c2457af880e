"""SQLAlchemy models package."""

from nabi.models.user import User
from nabi.models.creation import Creation

__all__ = [
    "User",
    "Creation",
]
