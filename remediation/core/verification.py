"""
Verification gate - reviewer approve/reject decisions.
Every decision is kept; only the latest one reflects the flag's current state.
"""

import sqlite3
import uuid
from typing import List, Optional

from .config import get_reviewer_role
from .db import utcnow, to_db_time, from_db_time, next_seq
from .errors import Forbidden
from .schema import Actor, Decision, Verification


def is_reviewer(actor: Actor) -> bool:
    return actor.role == get_reviewer_role()


def require_reviewer(actor: Actor, message: str = "Only CCO can perform this action") -> None:
    """Raise Forbidden unless the actor holds the reviewer role."""
    if not is_reviewer(actor):
        raise Forbidden(message)


def record_decision(conn: sqlite3.Connection, resolution_id: str, reviewer_id: str, decision: str,
                    note: Optional[str] = None) -> Verification:
    """Append a decision row inside the caller's transaction."""
    if decision not in (Decision.APPROVED, Decision.REJECTED):
        raise ValueError(f"Invalid decision: {decision}")

    verification = Verification(
        id=str(uuid.uuid4()),
        resolution_id=resolution_id,
        reviewer_id=reviewer_id,
        decision=decision,
        note=note.strip() if note and note.strip() else None,
        decided_at=utcnow()
    )
    conn.execute(
        "INSERT INTO verifications (id, resolution_id, reviewer_id, decision, note, decided_at, seq) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (verification.id, verification.resolution_id, verification.reviewer_id, verification.decision,
         verification.note, to_db_time(verification.decided_at), next_seq(conn, 'verifications'))
    )
    return verification


def list_verifications(conn: sqlite3.Connection, resolution_id: str) -> List[Verification]:
    rows = conn.execute(
        "SELECT * FROM verifications WHERE resolution_id = ? ORDER BY seq",
        (resolution_id,)
    ).fetchall()
    return [_row_to_verification(row) for row in rows]


def latest_decision(conn: sqlite3.Connection, resolution_id: str) -> Optional[Verification]:
    row = conn.execute(
        "SELECT * FROM verifications WHERE resolution_id = ? ORDER BY seq DESC LIMIT 1",
        (resolution_id,)
    ).fetchone()
    return _row_to_verification(row) if row else None


def _row_to_verification(row: sqlite3.Row) -> Verification:
    return Verification(
        id=row['id'],
        resolution_id=row['resolution_id'],
        reviewer_id=row['reviewer_id'],
        decision=row['decision'],
        note=row['note'],
        decided_at=from_db_time(row['decided_at'])
    )
