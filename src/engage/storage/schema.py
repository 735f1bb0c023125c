"""
Database schema management for the Engage local store.

This module handles:
- Domain table creation (people, groups, people_groups, notes, action_items, devices)
- The sync_status ledger table
- The sync_state key/value table (pull cursors, last successful sync)
- Index creation
- WAL mode configuration

Later schema changes live in engage.migrations.versions.
"""

import sqlite3


def init_database(conn: sqlite3.Connection, enable_wal: bool = True) -> None:
    """
    Create every table and index if missing.

    Args:
        conn: SQLite connection object
        enable_wal: Enable WAL mode for concurrent readers (default: True)
    """
    if enable_wal:
        conn.execute("PRAGMA journal_mode=WAL")

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS people (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            first_name TEXT,
            last_name TEXT,
            job_description TEXT,
            avatar_url TEXT,
            phone TEXT,
            email TEXT,
            github_username TEXT,
            tags TEXT,  -- JSON array
            group_id TEXT,
            created_at TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS groups (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            name TEXT,
            description TEXT,
            tags TEXT,  -- JSON array
            color TEXT,
            member_count INTEGER DEFAULT 0,
            created_at TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS people_groups (
            id TEXT PRIMARY KEY,
            person_id TEXT,
            group_id TEXT,
            created_at TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS notes (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            title TEXT,
            content TEXT,
            type TEXT,
            person_id TEXT,
            group_id TEXT,
            tags TEXT,  -- JSON array
            encrypted INTEGER DEFAULT 0,
            encrypted_content TEXT,
            content_iv TEXT,
            device_keys TEXT,  -- JSON, opaque
            created_at TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS action_items (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            title TEXT,
            description TEXT,
            status TEXT,
            priority TEXT,
            assignee_id TEXT,
            assignee_name TEXT,
            due_date TEXT,
            person_id TEXT,
            group_id TEXT,
            note_id TEXT,
            encrypted_content TEXT,
            encrypted_keys TEXT,  -- JSON, opaque
            iv TEXT,
            completed_at TEXT,
            created_at TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS devices (
            id TEXT PRIMARY KEY,
            user_id TEXT,
            device_name TEXT,
            device_type TEXT,
            platform TEXT,
            version TEXT,
            trusted INTEGER DEFAULT 0,
            last_used TEXT,
            created_at TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS sync_status (
            id TEXT PRIMARY KEY,
            table_name TEXT NOT NULL,
            record_id TEXT NOT NULL,
            last_synced TEXT,
            local_updated TEXT NOT NULL,
            sync_status TEXT NOT NULL CHECK(sync_status IN ('pending','synced','conflict')),
            hash TEXT,
            UNIQUE(table_name, record_id)
        );

        CREATE TABLE IF NOT EXISTS sync_state (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_sync_status_table ON sync_status(table_name);
        CREATE INDEX IF NOT EXISTS idx_people_updated_at ON people(updated_at);
        CREATE INDEX IF NOT EXISTS idx_groups_updated_at ON groups(updated_at);
        CREATE INDEX IF NOT EXISTS idx_notes_updated_at ON notes(updated_at);
        CREATE INDEX IF NOT EXISTS idx_notes_person ON notes(person_id);
        CREATE INDEX IF NOT EXISTS idx_action_items_updated_at ON action_items(updated_at);
        CREATE INDEX IF NOT EXISTS idx_people_groups_person ON people_groups(person_id);
        CREATE INDEX IF NOT EXISTS idx_people_groups_group ON people_groups(group_id);
    """)
