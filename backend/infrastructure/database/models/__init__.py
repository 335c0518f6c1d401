"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .focus import FocusSession
from .user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "FocusSession",
]
