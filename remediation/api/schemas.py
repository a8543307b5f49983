"""
Request and response models for the remediation API.
Action payloads form a union discriminated on the `action` field.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..core.errors import ValidationError

EvidenceTypeName = Literal["TRANSCRIPT_SNIPPET", "DOCUMENT_LINK", "OUTREACH_PROOF", "ACKNOWLEDGEMENT", "NOTE"]


class WireModel(BaseModel):
    """Accepts both camelCase (as sent by the web client) and snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EvidenceInput(WireModel):
    type: EvidenceTypeName
    label: Optional[str] = None
    url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('url')
    @classmethod
    def url_must_be_absolute(cls, v):
        if v is None:
            return v
        parsed = urlparse(v.strip())
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise ValueError('url must be an absolute URL')
        return v.strip()


class StartRemediationAction(WireModel):
    action: Literal["START_REMEDIATION"]
    resolution_type: Literal["ADD_CONTEXT", "DISCLOSED_ELSEWHERE", "FOLLOW_UP_REQUIRED"]
    rationale: str
    due_date: str
    source_type: Optional[str] = None
    disclosure_date: Optional[str] = None
    acknowledgement_status: Optional[Literal["YES", "NO", "UNKNOWN"]] = None
    follow_up_method: Optional[str] = None
    plan_note: Optional[str] = None
    require_acknowledgement: Optional[bool] = None
    evidence: List[EvidenceInput] = Field(default_factory=list)


class AddEvidenceAction(WireModel):
    action: Literal["ADD_EVIDENCE"]
    evidence: EvidenceInput


class CompleteTaskAction(WireModel):
    action: Literal["COMPLETE_TASK"]
    task_id: str
    completion_note: Optional[str] = None

    @field_validator('task_id')
    @classmethod
    def task_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('taskId cannot be empty')
        return v.strip()


class SubmitForVerificationAction(WireModel):
    action: Literal["SUBMIT_FOR_VERIFICATION"]


class ApproveAction(WireModel):
    action: Literal["APPROVE"]
    note: Optional[str] = None


class RejectAction(WireModel):
    action: Literal["REJECT"]
    note: str = ""


class OverrideAction(WireModel):
    action: Literal["OVERRIDE"]
    reason: str = ""
    category: str = ""


RemediationAction = Annotated[
    Union[
        StartRemediationAction,
        AddEvidenceAction,
        CompleteTaskAction,
        SubmitForVerificationAction,
        ApproveAction,
        RejectAction,
        OverrideAction,
    ],
    Field(discriminator='action'),
]

_action_adapter = TypeAdapter(RemediationAction)


def parse_action(payload: Dict[str, Any]) -> BaseModel:
    """Validate a raw action payload, raising ValidationError on the first problem."""
    try:
        return _action_adapter.validate_python(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get('loc', ())) or "payload"
        raise ValidationError(f"Invalid {field}: {first.get('msg', 'invalid value')}") from e


class FlagRegisterRequest(WireModel):
    meeting_id: str
    type: str
    severity: Literal["WARN", "CRITICAL"]
    originating_evidence: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('meeting_id', 'type')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v.strip()


class ActionResponse(BaseModel):
    success: bool
    flag: Dict[str, Any]
    task: Optional[Dict[str, Any]] = None
    evidence: Optional[Dict[str, Any]] = None
    verification: Optional[Dict[str, Any]] = None


class FlagListResponse(BaseModel):
    flags: List[Dict[str, Any]]


class AuditListResponse(BaseModel):
    events: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    config_issues: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
