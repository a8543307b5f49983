"""
Audit emitter - one structured event per accepted transition.
Events are written on the action's own connection so they commit or roll
back together with the state change they describe.
"""

import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .db import get_db, utcnow, to_db_time, from_db_time, next_seq
from .schema import AuditEvent
from ..util.logging import logger

RESOURCE_TYPE_FLAG = "flag"


class AuditEmitter(ABC):
    """Contract the workflow uses to record audit events."""

    @abstractmethod
    def record_audit_event(self, conn: sqlite3.Connection, workspace_id: str, user_id: str, action_kind: str,
                           resource_id: str, meeting_id: str, metadata: Dict[str, Any]) -> AuditEvent:
        pass


class SqliteAuditEmitter(AuditEmitter):
    """Writes audit events to the audit_events table."""

    def record_audit_event(self, conn: sqlite3.Connection, workspace_id: str, user_id: str, action_kind: str,
                           resource_id: str, meeting_id: str, metadata: Dict[str, Any]) -> AuditEvent:
        event = AuditEvent(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            user_id=user_id,
            action=action_kind,
            resource_type=RESOURCE_TYPE_FLAG,
            resource_id=resource_id,
            meeting_id=meeting_id,
            metadata=metadata or {},
            created_at=utcnow()
        )
        conn.execute(
            "INSERT INTO audit_events (id, seq, workspace_id, user_id, action, resource_type, resource_id, "
            "meeting_id, metadata, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (event.id, next_seq(conn, 'audit_events'), event.workspace_id, event.user_id, event.action,
             event.resource_type, event.resource_id, event.meeting_id,
             json.dumps(event.metadata, default=str), to_db_time(event.created_at))
        )
        logger.log_audit_event(action_kind, resource_id, workspace_id, event.metadata)
        return event


def list_audit_events(workspace_id: str, resource_id: Optional[str] = None, limit: int = 100) -> List[AuditEvent]:
    """Audit trail for a workspace, optionally narrowed to one flag, newest first."""
    if limit <= 0 or not workspace_id or not workspace_id.strip():
        return []

    with get_db() as conn:
        if resource_id:
            rows = conn.execute(
                "SELECT * FROM audit_events WHERE workspace_id = ? AND resource_id = ? ORDER BY seq DESC LIMIT ?",
                (workspace_id, resource_id, limit)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM audit_events WHERE workspace_id = ? ORDER BY seq DESC LIMIT ?",
                (workspace_id, limit)
            ).fetchall()

    return [
        AuditEvent(
            id=row['id'],
            workspace_id=row['workspace_id'],
            user_id=row['user_id'],
            action=row['action'],
            resource_type=row['resource_type'],
            resource_id=row['resource_id'],
            meeting_id=row['meeting_id'],
            metadata=json.loads(row['metadata']) if row['metadata'] else {},
            created_at=from_db_time(row['created_at'])
        )
        for row in rows
    ]
