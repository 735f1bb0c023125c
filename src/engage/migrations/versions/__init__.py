"""
Migration versions package.

Each module holds one MigrationBase subclass.

Naming convention: vXXX_description.py (e.g., v001_ledger_tombstones.py)
"""
