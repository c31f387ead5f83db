# gym_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .member import Member
from .package import Package
from .role import Role
from .staff import Staff

__all__ = [
    "db",
    "BaseModel",
    "Member",
    "Package",
    "Role",
    "Staff",
]
