"""
Lookup of the migrations shipped with Engage.

Every non-underscore module in engage.migrations.versions is imported and the
MigrationBase subclasses it defines are instantiated once. Versions must
form the sequence 1..N.
"""

import importlib
import inspect
import pkgutil
from typing import Dict, List, Optional

from .migration_base import MigrationBase


class MigrationRegistry:
    """
    Version-indexed set of migrations.

    Discovery is lazy: the first query imports the versions package.
    Tests can register() extra migrations after discover().
    """

    def __init__(self, versions_package: str = "engage.migrations.versions"):
        self.versions_package = versions_package
        self._migrations: Dict[int, MigrationBase] = {}
        self._discovered = False

    def _migration_classes(self):
        package = importlib.import_module(self.versions_package)
        names = sorted(info.name for info in pkgutil.iter_modules(package.__path__))
        for name in names:
            if name.startswith("_"):
                continue
            module_name = f"{self.versions_package}.{name}"
            module = importlib.import_module(module_name)
            for _, cls in inspect.getmembers(module, inspect.isclass):
                if (issubclass(cls, MigrationBase) and cls is not MigrationBase
                        and cls.__module__ == module_name):
                    yield cls

    def discover(self) -> None:
        """
        Import the versions package and register what it defines.

        Raises:
            ValueError: If a migration class is incomplete or the versions
                        are not consecutive from 1
        """
        if self._discovered:
            return

        for cls in self._migration_classes():
            try:
                migration = cls()
            except (TypeError, ValueError) as e:
                raise ValueError(f"Cannot load migration {cls.__module__}.{cls.__name__}: {e}") from e
            self.register(migration)

        self._validate_sequence()
        self._discovered = True

    def register(self, migration: MigrationBase) -> None:
        """
        Raises:
            ValueError: If the version is taken
        """
        existing = self._migrations.get(migration.version)
        if existing is not None:
            raise ValueError(f"Duplicate migration version {migration.version}: {migration} and {existing}")
        self._migrations[migration.version] = migration

    def _validate_sequence(self) -> None:
        for expected, version in enumerate(sorted(self._migrations), start=1):
            if version != expected:
                raise ValueError(f"Migration version gap: expected v{expected}, found v{version}")

    def get_migration(self, version: int) -> Optional[MigrationBase]:
        self.discover()
        return self._migrations.get(version)

    def get_all_migrations(self) -> List[MigrationBase]:
        self.discover()
        return [self._migrations[version] for version in sorted(self._migrations)]

    def get_pending_migrations(self, current_version: int) -> List[MigrationBase]:
        """Migrations above current_version, oldest first."""
        return [m for m in self.get_all_migrations() if m.version > current_version]

    def get_latest_version(self) -> int:
        """Highest known version; 0 when nothing is registered."""
        self.discover()
        return max(self._migrations, default=0)

    def __repr__(self) -> str:
        return f"<MigrationRegistry {self.versions_package}: {len(self._migrations)} migrations>"
