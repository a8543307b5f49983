"""
Evidence ledger - append-only supporting material for a remediation effort.
No update or delete is exposed; corrections are new entries.
"""

import json
import sqlite3
import uuid
from typing import Any, Dict, List, Optional, Set

from .db import utcnow, to_db_time, from_db_time, next_seq
from .schema import EvidenceLink, EvidenceType


def append_evidence(conn: sqlite3.Connection, resolution_id: str, evidence_type: str, created_by_user_id: str,
                    label: Optional[str] = None, url: Optional[str] = None,
                    metadata: Optional[Dict[str, Any]] = None) -> EvidenceLink:
    """Append one evidence entry inside the caller's transaction."""
    if evidence_type not in EvidenceType.ALL:
        raise ValueError(f"Invalid evidence type: {evidence_type}")

    label = label.strip() if label and label.strip() else None
    link = EvidenceLink(
        id=str(uuid.uuid4()),
        resolution_id=resolution_id,
        type=evidence_type,
        label=label,
        url=url,
        metadata=metadata,
        created_by_user_id=created_by_user_id,
        created_at=utcnow()
    )
    conn.execute(
        "INSERT INTO evidence_links (id, resolution_id, type, label, url, metadata, created_by_user_id, created_at, seq) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (link.id, link.resolution_id, link.type, link.label, link.url,
         json.dumps(metadata) if metadata is not None else None,
         link.created_by_user_id, to_db_time(link.created_at), next_seq(conn, 'evidence_links'))
    )
    return link


def list_evidence(conn: sqlite3.Connection, resolution_id: str) -> List[EvidenceLink]:
    """All evidence for a resolution record in insertion order."""
    rows = conn.execute(
        "SELECT * FROM evidence_links WHERE resolution_id = ? ORDER BY seq",
        (resolution_id,)
    ).fetchall()
    return [_row_to_evidence(row) for row in rows]


def evidence_types(conn: sqlite3.Connection, resolution_id: str) -> Set[str]:
    """Set of evidence types accumulated so far."""
    rows = conn.execute(
        "SELECT DISTINCT type FROM evidence_links WHERE resolution_id = ?",
        (resolution_id,)
    ).fetchall()
    return {row['type'] for row in rows}


def has_evidence_of_type(conn: sqlite3.Connection, resolution_id: str, evidence_type: str) -> bool:
    return evidence_type in evidence_types(conn, resolution_id)


def _row_to_evidence(row: sqlite3.Row) -> EvidenceLink:
    return EvidenceLink(
        id=row['id'],
        resolution_id=row['resolution_id'],
        type=row['type'],
        label=row['label'],
        url=row['url'],
        metadata=json.loads(row['metadata']) if row['metadata'] else None,
        created_by_user_id=row['created_by_user_id'],
        created_at=from_db_time(row['created_at'])
    )
