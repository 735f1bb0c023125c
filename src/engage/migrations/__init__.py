"""
Engage Migration System

Handles SQLite schema changes between Engage versions.

Key Features:
- Schema version tracking via PRAGMA user_version
- Migration history in _migrations table
- Automatic application on Database.open()
- Rollback of a failed migration
"""

from .migration_base import MigrationBase
from .registry import MigrationRegistry
from .manager import MigrationManager, MigrationRecord, MigrationError

__all__ = ["MigrationBase", "MigrationRegistry", "MigrationManager", "MigrationRecord", "MigrationError"]
