"""
Persistence for flags and resolution records.
Flags arrive from the detection pipeline through register_flag and are
afterwards written only by the workflow state machine.
"""

import json
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db import get_db, transaction, utcnow, to_db_time, from_db_time
from .errors import InvalidState
from .evidence import list_evidence
from .schema import (
    Flag,
    FlagDetail,
    FlagStatus,
    ResolutionMetadata,
    ResolutionRecord,
    Severity,
    metadata_for,
)
from .tasks import list_tasks
from .verification import list_verifications
from ..util.logging import logger

# Columns the state machine may set alongside a status change
_FLAG_UPDATABLE = ('resolution_type', 'resolution_note', 'resolved_at', 'resolved_by_user_id')
_RESOLUTION_UPDATABLE = ('submitted_for_verification_at', 'closed_at', 'closed_by_user_id',
                         'override_reason', 'override_category')


def register_flag(workspace_id: str, meeting_id: str, flag_type: str, severity: str,
                  originating_evidence: Optional[Dict[str, Any]] = None, flag_id: Optional[str] = None) -> Flag:
    """Create an OPEN flag on behalf of the detection pipeline."""
    if not workspace_id or not workspace_id.strip() or not meeting_id or not meeting_id.strip():
        raise ValueError("workspace_id and meeting_id are required")
    if severity not in Severity.ALL:
        raise ValueError(f"Invalid severity: {severity}")

    flag = Flag(
        id=flag_id or str(uuid.uuid4()),
        workspace_id=workspace_id.strip(),
        meeting_id=meeting_id.strip(),
        type=flag_type,
        severity=severity,
        status=FlagStatus.OPEN,
        originating_evidence=originating_evidence or {},
        created_at=utcnow()
    )
    try:
        with transaction() as conn:
            conn.execute(
                "INSERT INTO flags (id, workspace_id, meeting_id, type, severity, status, originating_evidence, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (flag.id, flag.workspace_id, flag.meeting_id, flag.type, flag.severity, flag.status,
                 json.dumps(flag.originating_evidence), to_db_time(flag.created_at))
            )
    except sqlite3.IntegrityError as e:
        logger.warning(f"Duplicate flag id refused: {flag.id}: {e}")
        raise InvalidState("Flag already exists") from e
    logger.log_flag_registered(flag.id, flag.meeting_id, flag.severity)
    return flag


def get_flag(conn: sqlite3.Connection, workspace_id: str, flag_id: str) -> Optional[Flag]:
    """Workspace-scoped flag lookup; flags of other workspaces are invisible."""
    row = conn.execute(
        "SELECT * FROM flags WHERE id = ? AND workspace_id = ?",
        (flag_id, workspace_id)
    ).fetchone()
    return _row_to_flag(row) if row else None


def list_flags(workspace_id: str, meeting_id: Optional[str] = None, status: Optional[str] = None) -> List[Flag]:
    query = "SELECT * FROM flags WHERE workspace_id = ?"
    params: List[Any] = [workspace_id]
    if meeting_id:
        query += " AND meeting_id = ?"
        params.append(meeting_id)
    if status:
        query += " AND status = ?"
        params.append(status)
    query += " ORDER BY created_at"

    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
    return [_row_to_flag(row) for row in rows]


def get_flag_detail(workspace_id: str, flag_id: str) -> Optional[FlagDetail]:
    """Flag plus its resolution record, tasks, evidence and verifications."""
    with get_db() as conn:
        flag = get_flag(conn, workspace_id, flag_id)
        if not flag:
            return None
        return load_detail(conn, flag)


def load_detail(conn: sqlite3.Connection, flag: Flag) -> FlagDetail:
    resolution = get_resolution_for_flag(conn, flag.id)
    if not resolution:
        return FlagDetail(flag=flag)
    return FlagDetail(
        flag=flag,
        resolution=resolution,
        tasks=list_tasks(conn, resolution.id),
        evidence=list_evidence(conn, resolution.id),
        verifications=list_verifications(conn, resolution.id)
    )


def transition_flag(conn: sqlite3.Connection, flag: Flag, to_status: str, **fields: Any) -> Flag:
    """Compare-and-swap the flag status from the status it was read with."""
    unknown = set(fields) - set(_FLAG_UPDATABLE)
    if unknown:
        raise ValueError(f"Cannot update flag columns: {sorted(unknown)}")

    assignments = ["status = ?"]
    params: List[Any] = [to_status]
    for column, value in fields.items():
        assignments.append(f"{column} = ?")
        params.append(to_db_time(value) if isinstance(value, datetime) else value)
    params.extend([flag.id, flag.status])

    cursor = conn.execute(
        f"UPDATE flags SET {', '.join(assignments)} WHERE id = ? AND status = ?",
        params
    )
    if cursor.rowcount != 1:
        raise InvalidState("Flag status changed concurrently; reload and retry")

    flag.status = to_status
    for column, value in fields.items():
        setattr(flag, column, value)
    return flag


def get_resolution_for_flag(conn: sqlite3.Connection, flag_id: str) -> Optional[ResolutionRecord]:
    row = conn.execute(
        "SELECT * FROM resolution_records WHERE flag_id = ?",
        (flag_id,)
    ).fetchone()
    return _row_to_resolution(row) if row else None


def insert_resolution_record(conn: sqlite3.Connection, flag_id: str, resolution_type: str, rationale: str,
                             metadata: ResolutionMetadata, created_by_user_id: str) -> ResolutionRecord:
    """Create the single resolution record of a flag."""
    record = ResolutionRecord(
        id=str(uuid.uuid4()),
        flag_id=flag_id,
        resolution_type=resolution_type,
        rationale=rationale,
        metadata=metadata,
        created_by_user_id=created_by_user_id,
        created_at=utcnow()
    )
    try:
        conn.execute(
            "INSERT INTO resolution_records (id, flag_id, resolution_type, rationale, metadata, "
            "created_by_user_id, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (record.id, record.flag_id, record.resolution_type, record.rationale,
             json.dumps(metadata.to_dict()), record.created_by_user_id, to_db_time(record.created_at))
        )
    except sqlite3.IntegrityError as e:
        logger.warning(f"Duplicate resolution record refused for flag {flag_id}: {e}")
        raise InvalidState("Remediation already started for this flag") from e
    return record


def update_resolution(conn: sqlite3.Connection, record: ResolutionRecord, **fields: Any) -> ResolutionRecord:
    unknown = set(fields) - set(_RESOLUTION_UPDATABLE)
    if unknown:
        raise ValueError(f"Cannot update resolution columns: {sorted(unknown)}")
    if not fields:
        return record

    assignments = []
    params: List[Any] = []
    for column, value in fields.items():
        assignments.append(f"{column} = ?")
        params.append(to_db_time(value) if isinstance(value, datetime) else value)
    params.append(record.id)
    conn.execute(f"UPDATE resolution_records SET {', '.join(assignments)} WHERE id = ?", params)

    for column, value in fields.items():
        setattr(record, column, value)
    return record


def _row_to_flag(row: sqlite3.Row) -> Flag:
    return Flag(
        id=row['id'],
        workspace_id=row['workspace_id'],
        meeting_id=row['meeting_id'],
        type=row['type'],
        severity=row['severity'],
        status=row['status'],
        originating_evidence=json.loads(row['originating_evidence']) if row['originating_evidence'] else {},
        resolution_type=row['resolution_type'],
        resolution_note=row['resolution_note'],
        resolved_at=from_db_time(row['resolved_at']),
        resolved_by_user_id=row['resolved_by_user_id'],
        created_at=from_db_time(row['created_at'])
    )


def _row_to_resolution(row: sqlite3.Row) -> ResolutionRecord:
    raw_metadata = json.loads(row['metadata']) if row['metadata'] else {}
    return ResolutionRecord(
        id=row['id'],
        flag_id=row['flag_id'],
        resolution_type=row['resolution_type'],
        rationale=row['rationale'],
        metadata=metadata_for(row['resolution_type'], raw_metadata),
        created_by_user_id=row['created_by_user_id'],
        created_at=from_db_time(row['created_at']),
        submitted_for_verification_at=from_db_time(row['submitted_for_verification_at']),
        closed_at=from_db_time(row['closed_at']),
        closed_by_user_id=row['closed_by_user_id'],
        override_reason=row['override_reason'],
        override_category=row['override_category']
    )
