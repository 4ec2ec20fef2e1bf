"""
Database Infrastructure Package for ContractEar

Exports the database manager; models and repositories live in their own
subpackages.
"""

from app.infrastructure.db.database import DatabaseManager


__all__ = ["DatabaseManager"]
