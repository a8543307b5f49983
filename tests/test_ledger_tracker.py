"""
Evidence ledger, task tracker and verification gate tests.
"""

from datetime import datetime, timezone

import pytest

from remediation.core import db
from remediation.core.dao import insert_resolution_record, register_flag
from remediation.core.errors import Forbidden, InvalidState, NotFound
from remediation.core.evidence import append_evidence, evidence_types, has_evidence_of_type, list_evidence
from remediation.core.schema import Actor, AddContextMetadata
from remediation.core.tasks import TaskSpec, all_required_complete, complete_task, create_task_batch, list_tasks
from remediation.core.verification import (
    is_reviewer,
    latest_decision,
    list_verifications,
    record_decision,
    require_reviewer,
)

DUE = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def test_db(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "ledger.db"))
    db.init_db()
    yield


@pytest.fixture
def resolution_id(test_db):
    flag = register_flag("ws-1", "meeting-1", "MISSING_DISCLOSURE", "WARN")
    with db.transaction() as conn:
        record = insert_resolution_record(conn, flag.id, "ADD_CONTEXT", "r" * 50, AddContextMetadata(), "advisor-1")
    return record.id


class TestEvidenceLedger:

    def test_append_preserves_order(self, resolution_id):
        with db.transaction() as conn:
            append_evidence(conn, resolution_id, "NOTE", "advisor-1", metadata={"note": "first"})
            append_evidence(conn, resolution_id, "DOCUMENT_LINK", "advisor-1", url="https://docs.example.com/a")
            append_evidence(conn, resolution_id, "NOTE", "advisor-1", label="  ")

        with db.get_db() as conn:
            items = list_evidence(conn, resolution_id)
            types = evidence_types(conn, resolution_id)
            assert has_evidence_of_type(conn, resolution_id, "DOCUMENT_LINK")
            assert not has_evidence_of_type(conn, resolution_id, "ACKNOWLEDGEMENT")

        assert [i.type for i in items] == ["NOTE", "DOCUMENT_LINK", "NOTE"]
        assert items[0].metadata == {"note": "first"}
        assert items[2].label is None
        assert types == {"NOTE", "DOCUMENT_LINK"}

    def test_invalid_type_rejected(self, resolution_id):
        with pytest.raises(ValueError):
            with db.transaction() as conn:
                append_evidence(conn, resolution_id, "SCREENSHOT", "advisor-1")

    def test_rolled_back_append_leaves_no_row(self, resolution_id):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                append_evidence(conn, resolution_id, "NOTE", "advisor-1")
                raise RuntimeError("abort")

        with db.get_db() as conn:
            assert list_evidence(conn, resolution_id) == []


class TestTaskTracker:

    def test_batch_and_completion(self, resolution_id):
        specs = [TaskSpec(title="Required", due_date=DUE), TaskSpec(title="Optional", due_date=DUE, required=False)]
        with db.transaction() as conn:
            items = create_task_batch(conn, resolution_id, "advisor-1", specs)
            assert not all_required_complete(conn, resolution_id)
            complete_task(conn, resolution_id, items[0].id, "done")
            assert all_required_complete(conn, resolution_id)

        with db.get_db() as conn:
            tasks = list_tasks(conn, resolution_id)
        assert [t.title for t in tasks] == ["Required", "Optional"]
        assert tasks[0].status == "COMPLETED"
        assert tasks[0].completion_note == "done"
        assert tasks[1].status == "PENDING"
        assert tasks[0].due_date == DUE

    def test_empty_batch_counts_as_complete(self, resolution_id):
        with db.get_db() as conn:
            assert all_required_complete(conn, resolution_id)

    def test_complete_missing_task(self, resolution_id):
        with pytest.raises(NotFound):
            with db.transaction() as conn:
                complete_task(conn, resolution_id, "missing")

    def test_complete_twice(self, resolution_id):
        with db.transaction() as conn:
            item = create_task_batch(conn, resolution_id, "advisor-1", [TaskSpec(title="t", due_date=DUE)])[0]
            complete_task(conn, resolution_id, item.id)
        with pytest.raises(InvalidState):
            with db.transaction() as conn:
                complete_task(conn, resolution_id, item.id)


class TestVerificationGate:

    def test_reviewer_role(self):
        assert is_reviewer(Actor(user_id="u", workspace_id="w", role="OWNER_CCO"))
        assert not is_reviewer(Actor(user_id="u", workspace_id="w"))

    def test_reviewer_role_from_environment(self, monkeypatch):
        monkeypatch.setenv("REVIEWER_ROLE", "COMPLIANCE_LEAD")
        assert is_reviewer(Actor(user_id="u", workspace_id="w", role="COMPLIANCE_LEAD"))
        with pytest.raises(Forbidden, match="Only CCO"):
            require_reviewer(Actor(user_id="u", workspace_id="w", role="OWNER_CCO"), "Only CCO can approve remediation")

    def test_decisions_are_appended(self, resolution_id):
        with db.transaction() as conn:
            record_decision(conn, resolution_id, "cco-1", "REJECTED", "needs more")
            record_decision(conn, resolution_id, "cco-1", "APPROVED")

        with db.get_db() as conn:
            history = list_verifications(conn, resolution_id)
            latest = latest_decision(conn, resolution_id)
        assert [v.decision for v in history] == ["REJECTED", "APPROVED"]
        assert latest.decision == "APPROVED"
        assert latest.note is None

    def test_invalid_decision(self, resolution_id):
        with pytest.raises(ValueError):
            with db.transaction() as conn:
                record_decision(conn, resolution_id, "cco-1", "MAYBE")


class TestAppendOrdering:
    """Insertion counters on the append-only tables."""

    @pytest.mark.parametrize("table", ["evidence_links", "verifications", "audit_events"])
    def test_seq_lookup_uses_index(self, test_db, table):
        with db.get_db() as conn:
            indexed = [
                [info['name'] for info in conn.execute(f"PRAGMA index_info('{index['name']}')").fetchall()]
                for index in conn.execute(f"PRAGMA index_list('{table}')").fetchall()
            ]
            plan = conn.execute(f"EXPLAIN QUERY PLAN SELECT COALESCE(MAX(seq), 0) + 1 FROM {table}").fetchall()
        assert ['seq'] in indexed
        assert any("INDEX" in row['detail'] for row in plan)

    def test_next_seq_counts_up(self, resolution_id):
        with db.transaction() as conn:
            assert db.next_seq(conn, 'evidence_links') == 1
            append_evidence(conn, resolution_id, "NOTE", "advisor-1")
            assert db.next_seq(conn, 'evidence_links') == 2
