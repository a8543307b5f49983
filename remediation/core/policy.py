"""
Resolution policy - which fields, evidence and tasks each strategy needs.

Pure decision logic: nothing here touches the database. The state machine
evaluates it twice per remediation, once when it starts (against the
evidence supplied with the request) and once at submission (against
everything accumulated in the ledger since).

Start-time requirements:
    ADD_CONTEXT          one TRANSCRIPT_SNIPPET with a numeric startTime
    DISCLOSED_ELSEWHERE  source type, disclosure date, acknowledgement status
                         and one DOCUMENT_LINK with a non-empty url
    FOLLOW_UP_REQUIRED   follow-up method and a plan note of 50+ characters

Submission-time requirements:
    ADD_CONTEXT          a TRANSCRIPT_SNIPPET
    DISCLOSED_ELSEWHERE  a DOCUMENT_LINK
    FOLLOW_UP_REQUIRED   an OUTREACH_PROOF, plus an ACKNOWLEDGEMENT when
                         acknowledgement is required
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Set

from .config import MIN_PLAN_NOTE_LENGTH, get_acknowledgement_due_days
from .schema import (
    AcknowledgementStatus,
    AddContextMetadata,
    DisclosureMetadata,
    EvidenceType,
    FollowUpMetadata,
    ResolutionMetadata,
    ResolutionType,
    Severity,
)
from .tasks import TaskSpec

TASK_ADD_CONTEXT = "Add compliance context + link transcript evidence"
TASK_VALIDATE_DISCLOSURE = "Validate disclosure evidence"
TASK_OBTAIN_ACKNOWLEDGEMENT = "Obtain client acknowledgement"
TASK_SEND_FOLLOW_UP = "Send disclosure follow-up"
TASK_COLLECT_ACKNOWLEDGEMENT = "Collect acknowledgement"


@dataclass
class StartFields:
    """Strategy fields submitted with StartRemediation."""
    source_type: Optional[str] = None
    disclosure_date: Optional[str] = None
    acknowledgement_status: Optional[str] = None
    follow_up_method: Optional[str] = None
    plan_note: Optional[str] = None
    require_acknowledgement: Optional[bool] = None


@dataclass
class PolicyDecision:
    satisfied: bool
    missing_requirement: Optional[str] = None
    task_batch: List[TaskSpec] = field(default_factory=list)
    metadata: Optional[ResolutionMetadata] = None


def resolve_acknowledgement_requirement(explicit: Optional[bool], severity: str) -> bool:
    """An explicit choice wins; otherwise CRITICAL flags require acknowledgement."""
    if explicit is not None:
        return bool(explicit)
    return severity == Severity.CRITICAL


def _missing(message: str) -> PolicyDecision:
    return PolicyDecision(satisfied=False, missing_requirement=message)


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _has_numeric_start_time(item: Any) -> bool:
    metadata = getattr(item, 'metadata', None) or {}
    start_time = metadata.get('startTime', metadata.get('start_time'))
    return isinstance(start_time, (int, float)) and not isinstance(start_time, bool)


def evaluate_start(resolution_type: str, severity: str, fields: StartFields,
                   evidence: Iterable[Any], due_date: datetime) -> PolicyDecision:
    """Start-time check for a strategy; on success carries metadata and the task batch.

    ``evidence`` items only need ``type``, ``url`` and ``metadata`` attributes.
    """
    evidence = list(evidence)
    ack_offset = timedelta(days=get_acknowledgement_due_days())

    if resolution_type == ResolutionType.ADD_CONTEXT:
        has_transcript = any(
            item.type == EvidenceType.TRANSCRIPT_SNIPPET and _has_numeric_start_time(item)
            for item in evidence
        )
        if not has_transcript:
            return _missing("Transcript evidence is required for Add context.")
        return PolicyDecision(
            satisfied=True,
            metadata=AddContextMetadata(),
            task_batch=[TaskSpec(title=TASK_ADD_CONTEXT, due_date=due_date)]
        )

    if resolution_type == ResolutionType.DISCLOSED_ELSEWHERE:
        if _blank(fields.source_type):
            return _missing("Disclosure source type is required.")
        if _blank(fields.disclosure_date):
            return _missing("Disclosure date is required.")
        if fields.acknowledgement_status not in AcknowledgementStatus.ALL:
            return _missing("Client acknowledgement status is required.")
        has_document = any(
            item.type == EvidenceType.DOCUMENT_LINK and not _blank(getattr(item, 'url', None))
            for item in evidence
        )
        if not has_document:
            return _missing("Disclosure evidence link is required.")

        tasks = [TaskSpec(title=TASK_VALIDATE_DISCLOSURE, due_date=due_date)]
        if fields.acknowledgement_status != AcknowledgementStatus.YES:
            tasks.append(TaskSpec(title=TASK_OBTAIN_ACKNOWLEDGEMENT, due_date=due_date + ack_offset))
        return PolicyDecision(
            satisfied=True,
            metadata=DisclosureMetadata(
                source_type=fields.source_type.strip(),
                disclosure_date=fields.disclosure_date.strip(),
                acknowledgement_status=fields.acknowledgement_status
            ),
            task_batch=tasks
        )

    if resolution_type == ResolutionType.FOLLOW_UP_REQUIRED:
        if _blank(fields.follow_up_method):
            return _missing("Follow-up method is required.")
        if _blank(fields.plan_note):
            return _missing("Follow-up plan note is required.")
        if len(fields.plan_note.strip()) < MIN_PLAN_NOTE_LENGTH:
            return _missing(f"Plan note must be at least {MIN_PLAN_NOTE_LENGTH} characters.")

        tasks = [TaskSpec(title=TASK_SEND_FOLLOW_UP, due_date=due_date)]
        if resolve_acknowledgement_requirement(fields.require_acknowledgement, severity):
            tasks.append(TaskSpec(title=TASK_COLLECT_ACKNOWLEDGEMENT, due_date=due_date + ack_offset))
        return PolicyDecision(
            satisfied=True,
            metadata=FollowUpMetadata(
                follow_up_method=fields.follow_up_method.strip(),
                plan_note=fields.plan_note.strip(),
                require_acknowledgement=fields.require_acknowledgement
            ),
            task_batch=tasks
        )

    return _missing(f"Resolution type {resolution_type} cannot be started as remediation.")


def evaluate_submission(resolution_type: str, severity: str, metadata: Optional[ResolutionMetadata],
                        evidence_types: Set[str]) -> PolicyDecision:
    """Submission-time check against every evidence type accumulated so far."""
    if resolution_type == ResolutionType.ADD_CONTEXT:
        if EvidenceType.TRANSCRIPT_SNIPPET not in evidence_types:
            return _missing("Transcript evidence is required before submission.")

    elif resolution_type == ResolutionType.DISCLOSED_ELSEWHERE:
        if EvidenceType.DOCUMENT_LINK not in evidence_types:
            return _missing("Disclosure evidence is required before submission.")

    elif resolution_type == ResolutionType.FOLLOW_UP_REQUIRED:
        if EvidenceType.OUTREACH_PROOF not in evidence_types:
            return _missing("Outreach evidence is required before submission.")
        explicit = metadata.require_acknowledgement if isinstance(metadata, FollowUpMetadata) else None
        if resolve_acknowledgement_requirement(explicit, severity) and EvidenceType.ACKNOWLEDGEMENT not in evidence_types:
            return _missing("Acknowledgement evidence is required before submission.")

    return PolicyDecision(satisfied=True)
