"""
Row types and vocabularies for flags and their remediation.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


class Severity:
    WARN = "WARN"
    CRITICAL = "CRITICAL"
    ALL = (WARN, CRITICAL)


class FlagStatus:
    OPEN = "OPEN"
    IN_REMEDIATION = "IN_REMEDIATION"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    CLOSED = "CLOSED"
    CLOSED_ACCEPTED_RISK = "CLOSED_ACCEPTED_RISK"
    ALL = (OPEN, IN_REMEDIATION, PENDING_VERIFICATION, CLOSED, CLOSED_ACCEPTED_RISK)
    TERMINAL = (CLOSED, CLOSED_ACCEPTED_RISK)


class ResolutionType:
    ADD_CONTEXT = "ADD_CONTEXT"
    DISCLOSED_ELSEWHERE = "DISCLOSED_ELSEWHERE"
    FOLLOW_UP_REQUIRED = "FOLLOW_UP_REQUIRED"
    OVERRIDE_APPROVED = "OVERRIDE_APPROVED"
    ALL = (ADD_CONTEXT, DISCLOSED_ELSEWHERE, FOLLOW_UP_REQUIRED, OVERRIDE_APPROVED)


class TaskStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class EvidenceType:
    TRANSCRIPT_SNIPPET = "TRANSCRIPT_SNIPPET"
    DOCUMENT_LINK = "DOCUMENT_LINK"
    OUTREACH_PROOF = "OUTREACH_PROOF"
    ACKNOWLEDGEMENT = "ACKNOWLEDGEMENT"
    NOTE = "NOTE"
    ALL = (TRANSCRIPT_SNIPPET, DOCUMENT_LINK, OUTREACH_PROOF, ACKNOWLEDGEMENT, NOTE)


class Decision:
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AcknowledgementStatus:
    YES = "YES"
    NO = "NO"
    UNKNOWN = "UNKNOWN"
    ALL = (YES, NO, UNKNOWN)


class AuditAction:
    REMEDIATION_START = "REMEDIATION_START"
    REMEDIATION_UPDATE = "REMEDIATION_UPDATE"
    EVIDENCE_ADD = "EVIDENCE_ADD"
    TASK_UPDATE = "TASK_UPDATE"
    VERIFICATION = "VERIFICATION"
    OVERRIDE = "OVERRIDE"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Resolution metadata: one variant per resolution type

@dataclass
class AddContextMetadata:
    def to_dict(self) -> Dict[str, Any]:
        return {}


@dataclass
class DisclosureMetadata:
    source_type: str
    disclosure_date: str
    acknowledgement_status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FollowUpMetadata:
    follow_up_method: str
    plan_note: str
    # None means "not stated"; severity decides at evaluation time
    require_acknowledgement: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OverrideMetadata:
    override_category: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ResolutionMetadata = Union[AddContextMetadata, DisclosureMetadata, FollowUpMetadata, OverrideMetadata]

_METADATA_VARIANTS = {
    ResolutionType.ADD_CONTEXT: AddContextMetadata,
    ResolutionType.DISCLOSED_ELSEWHERE: DisclosureMetadata,
    ResolutionType.FOLLOW_UP_REQUIRED: FollowUpMetadata,
    ResolutionType.OVERRIDE_APPROVED: OverrideMetadata,
}


def metadata_for(resolution_type: str, data: Optional[Dict[str, Any]]) -> ResolutionMetadata:
    """Rebuild the metadata variant stored for a resolution type."""
    if resolution_type not in _METADATA_VARIANTS:
        raise ValueError(f"Invalid resolution type: {resolution_type}")
    variant = _METADATA_VARIANTS[resolution_type]
    data = data or {}
    if variant is AddContextMetadata:
        return AddContextMetadata()
    if variant is DisclosureMetadata:
        return DisclosureMetadata(
            source_type=data.get('source_type', ''),
            disclosure_date=data.get('disclosure_date', ''),
            acknowledgement_status=data.get('acknowledgement_status', AcknowledgementStatus.UNKNOWN)
        )
    if variant is FollowUpMetadata:
        return FollowUpMetadata(
            follow_up_method=data.get('follow_up_method', ''),
            plan_note=data.get('plan_note', ''),
            require_acknowledgement=data.get('require_acknowledgement')
        )
    return OverrideMetadata(override_category=data.get('override_category', ''))


@dataclass
class Flag:
    id: str
    workspace_id: str
    meeting_id: str
    type: str
    severity: str
    status: str
    created_at: datetime
    originating_evidence: Dict[str, Any] = field(default_factory=dict)
    resolution_type: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by_user_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in FlagStatus.TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _iso(self.created_at)
        data['resolved_at'] = _iso(self.resolved_at)
        return data


@dataclass
class ResolutionRecord:
    id: str
    flag_id: str
    resolution_type: str
    rationale: str
    metadata: ResolutionMetadata
    created_by_user_id: str
    created_at: datetime
    submitted_for_verification_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by_user_id: Optional[str] = None
    override_reason: Optional[str] = None
    override_category: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'flag_id': self.flag_id,
            'resolution_type': self.resolution_type,
            'rationale': self.rationale,
            'metadata': self.metadata.to_dict(),
            'created_by_user_id': self.created_by_user_id,
            'created_at': _iso(self.created_at),
            'submitted_for_verification_at': _iso(self.submitted_for_verification_at),
            'closed_at': _iso(self.closed_at),
            'closed_by_user_id': self.closed_by_user_id,
            'override_reason': self.override_reason,
            'override_category': self.override_category,
        }


@dataclass
class ActionItem:
    id: str
    resolution_id: str
    title: str
    owner_id: str
    due_date: datetime
    required: bool
    status: str = TaskStatus.PENDING
    completion_note: Optional[str] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['due_date'] = _iso(self.due_date)
        data['completed_at'] = _iso(self.completed_at)
        return data


@dataclass
class EvidenceLink:
    id: str
    resolution_id: str
    type: str
    created_by_user_id: str
    created_at: datetime
    label: Optional[str] = None
    url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _iso(self.created_at)
        return data


@dataclass
class Verification:
    id: str
    resolution_id: str
    reviewer_id: str
    decision: str
    decided_at: datetime
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['decided_at'] = _iso(self.decided_at)
        return data


@dataclass
class AuditEvent:
    id: str
    workspace_id: str
    user_id: str
    action: str
    resource_type: str
    resource_id: str
    meeting_id: str
    metadata: Dict[str, Any]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _iso(self.created_at)
        return data


@dataclass
class FlagDetail:
    """A flag with everything hanging off its resolution record."""
    flag: Flag
    resolution: Optional[ResolutionRecord] = None
    tasks: List[ActionItem] = field(default_factory=list)
    evidence: List[EvidenceLink] = field(default_factory=list)
    verifications: List[Verification] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'flag': self.flag.to_dict(),
            'resolution': self.resolution.to_dict() if self.resolution else None,
            'tasks': [t.to_dict() for t in self.tasks],
            'evidence': [e.to_dict() for e in self.evidence],
            'verifications': [v.to_dict() for v in self.verifications],
        }


@dataclass
class Actor:
    """Authenticated, workspace-scoped caller with its resolved role."""
    user_id: str
    workspace_id: str
    role: str = "MEMBER"


@dataclass
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def to_metadata(self) -> Dict[str, Any]:
        return {'ip_address': self.ip_address, 'user_agent': self.user_agent}
