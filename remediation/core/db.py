"""
SQLite storage for flags, resolution records and their children.
Every write-bearing action runs inside transaction().
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional
from .config import get_db_path, ensure_db_directory, DB_BUSY_TIMEOUT_SEC

REQUIRED_TABLES = ['flags', 'resolution_records', 'action_items', 'evidence_links', 'verifications', 'audit_events']
SEQUENCED_TABLES = ['evidence_links', 'verifications', 'audit_events']


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _connect() -> sqlite3.Connection:
    ensure_db_directory()
    # isolation_level=None: transactions are opened explicitly below
    conn = sqlite3.connect(get_db_path(), timeout=DB_BUSY_TIMEOUT_SEC, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection for reads."""
    conn = _connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction() -> Generator[sqlite3.Connection, None, None]:
    """Run reads and writes as one atomic unit.

    BEGIN IMMEDIATE takes the write lock before the first read, so two
    actions against the same flag serialize and the later one sees the
    committed state of the earlier. Any exception rolls everything back.
    """
    conn = _connect()
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS flags (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                meeting_id TEXT NOT NULL,
                type TEXT NOT NULL,
                severity TEXT NOT NULL CHECK (severity IN ('WARN', 'CRITICAL')),
                status TEXT NOT NULL DEFAULT 'OPEN',
                originating_evidence TEXT,   -- JSON pointer to the triggering claim
                resolution_type TEXT,
                resolution_note TEXT,
                resolved_at TEXT,
                resolved_by_user_id TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        # UNIQUE(flag_id): a second concurrent start fails instead of duplicating
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS resolution_records (
                id TEXT PRIMARY KEY,
                flag_id TEXT NOT NULL UNIQUE REFERENCES flags(id),
                resolution_type TEXT NOT NULL,
                rationale TEXT NOT NULL,
                metadata TEXT,
                created_by_user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                submitted_for_verification_at TEXT,
                closed_at TEXT,
                closed_by_user_id TEXT,
                override_reason TEXT,
                override_category TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS action_items (
                id TEXT PRIMARY KEY,
                resolution_id TEXT NOT NULL REFERENCES resolution_records(id),
                title TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                due_date TEXT NOT NULL,
                required BOOLEAN NOT NULL DEFAULT TRUE,
                status TEXT NOT NULL DEFAULT 'PENDING',
                completion_note TEXT,
                completed_at TEXT,
                position INTEGER NOT NULL DEFAULT 0
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS evidence_links (
                id TEXT PRIMARY KEY,
                resolution_id TEXT NOT NULL REFERENCES resolution_records(id),
                type TEXT NOT NULL,
                label TEXT,
                url TEXT,
                metadata TEXT,
                created_by_user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                seq INTEGER NOT NULL DEFAULT 0
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS verifications (
                id TEXT PRIMARY KEY,
                resolution_id TEXT NOT NULL REFERENCES resolution_records(id),
                reviewer_id TEXT NOT NULL,
                decision TEXT NOT NULL CHECK (decision IN ('APPROVED', 'REJECTED')),
                note TEXT,
                decided_at TEXT NOT NULL,
                seq INTEGER NOT NULL DEFAULT 0
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_events (
                id TEXT PRIMARY KEY,
                seq INTEGER NOT NULL DEFAULT 0,
                workspace_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                action TEXT NOT NULL,
                resource_type TEXT NOT NULL,
                resource_id TEXT NOT NULL,
                meeting_id TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        # Indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_flags_workspace_meeting ON flags(workspace_id, meeting_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_action_items_resolution ON action_items(resolution_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_evidence_resolution ON evidence_links(resolution_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_verifications_resolution ON verifications(resolution_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_workspace_resource ON audit_events(workspace_id, resource_id, seq DESC)')
        # next_seq reads MAX(seq) on every append
        for table in SEQUENCED_TABLES:
            cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_{table}_seq ON {table}(seq)')


def next_seq(conn: sqlite3.Connection, table: str, column: str = 'seq') -> int:
    """Monotonic insertion counter; timestamps alone can tie within a transaction."""
    row = conn.execute(f"SELECT COALESCE(MAX({column}), 0) + 1 FROM {table}").fetchone()
    return row[0]


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
