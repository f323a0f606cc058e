"""
Database models package.
"""
from khm.models.base import Base, Database
from khm.models.keys import KeyRecord, FlowAssociation

__all__ = [
    # Base
    "Base",
    "Database",
    # Keys
    "KeyRecord",
    "FlowAssociation",
]
