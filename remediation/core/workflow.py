"""
Flag remediation workflow - the state machine that owns Flag and
ResolutionRecord lifecycles.

    OPEN -> IN_REMEDIATION -> PENDING_VERIFICATION -> CLOSED
                 ^                    |
                 +------ reject ------+
    OPEN | IN_REMEDIATION | PENDING_VERIFICATION -> CLOSED_ACCEPTED_RISK (override)

WARN flags skip PENDING_VERIFICATION: submission auto-approves and closes.

Each action validates its payload, then opens one transaction in which it
reads the flag, checks role and state, applies the resolution policy,
writes every row and emits its audit event(s). Nothing is written unless
all of it commits.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union, get_args

from pydantic import BaseModel

from .audit import AuditEmitter, SqliteAuditEmitter
from .config import (
    AUTO_APPROVAL_NOTE,
    MIN_OVERRIDE_CATEGORY_LENGTH,
    MIN_OVERRIDE_REASON_LENGTH,
    MIN_RATIONALE_LENGTH,
    MIN_REJECT_NOTE_LENGTH,
)
from .dao import get_flag, get_resolution_for_flag, insert_resolution_record, transition_flag, update_resolution
from .db import transaction, utcnow
from .errors import (
    EvidenceRequirementError,
    IncompleteTasks,
    InvalidState,
    NotFound,
    RemediationError,
    ValidationError,
)
from .evidence import append_evidence, evidence_types
from .policy import StartFields, evaluate_start, evaluate_submission
from .schema import (
    ActionItem,
    Actor,
    AuditAction,
    Decision,
    EvidenceLink,
    Flag,
    FlagStatus,
    OverrideMetadata,
    RequestContext,
    ResolutionRecord,
    ResolutionType,
    Severity,
    Verification,
)
from .tasks import all_required_complete, complete_task, create_task_batch
from .verification import record_decision, require_reviewer
from ..api.schemas import (
    AddEvidenceAction,
    ApproveAction,
    CompleteTaskAction,
    OverrideAction,
    RejectAction,
    RemediationAction,
    StartRemediationAction,
    SubmitForVerificationAction,
    parse_action,
)
from ..util.logging import logger

# Every payload class in the action union
ACTION_TYPES = get_args(get_args(RemediationAction)[0])


@dataclass
class ActionResult:
    """Updated flag plus whichever record the action created or changed."""
    flag: Flag
    resolution: Optional[ResolutionRecord] = None
    task: Optional[ActionItem] = None
    evidence: Optional[EvidenceLink] = None
    verification: Optional[Verification] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'flag': self.flag.to_dict(),
            'task': self.task.to_dict() if self.task else None,
            'evidence': self.evidence.to_dict() if self.evidence else None,
            'verification': self.verification.to_dict() if self.verification else None,
        }


def parse_iso_datetime(value: str, message: str) -> datetime:
    """ISO-8601 timestamp; a trailing Z is read as UTC."""
    text = (value or "").strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(message)


def parse_due_date(value: str) -> datetime:
    return parse_iso_datetime(value, "Invalid due date")


def parse_disclosure_date(value: Optional[str]) -> Optional[str]:
    """Normalized ISO form of a disclosure date; blank stays None for the policy check."""
    if value is None or not value.strip():
        return None
    return parse_iso_datetime(value, "Invalid disclosure date").isoformat()


def _require_min_length(value: Optional[str], minimum: int, message: str) -> str:
    text = (value or "").strip()
    if len(text) < minimum:
        raise ValidationError(message)
    return text


class WorkflowEngine:
    """Applies remediation actions to flags."""

    def __init__(self, audit: Optional[AuditEmitter] = None):
        self.audit = audit or SqliteAuditEmitter()
        self._handlers: Dict[type, Callable[..., ActionResult]] = {
            StartRemediationAction: self.start_remediation,
            AddEvidenceAction: self.add_evidence,
            CompleteTaskAction: self.complete_task,
            SubmitForVerificationAction: self.submit_for_verification,
            ApproveAction: self.approve,
            RejectAction: self.reject,
            OverrideAction: self.override,
        }
        missing = set(ACTION_TYPES) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for actions: {sorted(t.__name__ for t in missing)}")

    def dispatch(self, flag_id: str, action: Union[BaseModel, Dict[str, Any]], actor: Actor,
                 context: Optional[RequestContext] = None) -> ActionResult:
        """Route one action payload (model or raw dict) to its handler."""
        action_name = action.get('action') if isinstance(action, dict) else getattr(action, 'action', None)
        try:
            if isinstance(action, dict):
                action = parse_action(action)
            handler = self._handlers.get(type(action))
            if handler is None:
                raise ValidationError("Unsupported action")
            return handler(flag_id, action, actor, context or RequestContext())
        except RemediationError as e:
            logger.log_action_rejected(flag_id, str(action_name), e.error_type, e.message)
            raise
        except Exception as e:
            logger.error(f"Action {action_name} on flag {flag_id} failed: {e}")
            raise

    # Helpers

    def _load_flag(self, conn, actor: Actor, flag_id: str) -> Flag:
        flag = get_flag(conn, actor.workspace_id, flag_id)
        if not flag:
            raise NotFound("Flag not found")
        return flag

    def _load_resolution(self, conn, flag: Flag) -> ResolutionRecord:
        record = get_resolution_for_flag(conn, flag.id)
        if not record:
            raise InvalidState("Remediation has not started")
        return record

    def _emit(self, conn, flag: Flag, actor: Actor, context: RequestContext, action_kind: str,
              metadata: Dict[str, Any]) -> None:
        payload = dict(metadata)
        payload.update(context.to_metadata())
        self.audit.record_audit_event(
            conn,
            workspace_id=flag.workspace_id,
            user_id=actor.user_id,
            action_kind=action_kind,
            resource_id=flag.id,
            meeting_id=flag.meeting_id,
            metadata=payload
        )

    # Actions

    def start_remediation(self, flag_id: str, action: StartRemediationAction, actor: Actor,
                          context: RequestContext) -> ActionResult:
        rationale = _require_min_length(action.rationale, MIN_RATIONALE_LENGTH,
                                        f"Rationale must be at least {MIN_RATIONALE_LENGTH} characters")
        due_date = parse_due_date(action.due_date)
        disclosure_date = parse_disclosure_date(action.disclosure_date)
        fields = StartFields(
            source_type=action.source_type,
            disclosure_date=disclosure_date,
            acknowledgement_status=action.acknowledgement_status,
            follow_up_method=action.follow_up_method,
            plan_note=action.plan_note,
            require_acknowledgement=action.require_acknowledgement
        )

        with transaction() as conn:
            flag = self._load_flag(conn, actor, flag_id)
            if flag.status != FlagStatus.OPEN:
                raise InvalidState("Remediation can only be started for open flags")
            if get_resolution_for_flag(conn, flag.id):
                raise InvalidState("Remediation already started for this flag")

            decision = evaluate_start(action.resolution_type, flag.severity, fields, action.evidence, due_date)
            if not decision.satisfied:
                raise EvidenceRequirementError(decision.missing_requirement)

            record = insert_resolution_record(conn, flag.id, action.resolution_type, rationale,
                                              decision.metadata, actor.user_id)
            tasks = create_task_batch(conn, record.id, actor.user_id, decision.task_batch)
            for item in action.evidence:
                append_evidence(conn, record.id, item.type, actor.user_id,
                                label=item.label, url=item.url, metadata=item.metadata)

            from_status = flag.status
            transition_flag(conn, flag, FlagStatus.IN_REMEDIATION,
                            resolution_type=action.resolution_type, resolution_note=rationale)

            self._emit(conn, flag, actor, context, AuditAction.REMEDIATION_START, {
                'resolution_type': action.resolution_type,
                'rationale': rationale,
                'task_count': len(tasks)
            })
            if action.evidence:
                self._emit(conn, flag, actor, context, AuditAction.EVIDENCE_ADD, {
                    'count': len(action.evidence),
                    'types': [item.type for item in action.evidence]
                })

        logger.log_transition(flag.id, "start_remediation", from_status, flag.status, actor.user_id)
        return ActionResult(flag=flag, resolution=record)

    def add_evidence(self, flag_id: str, action: AddEvidenceAction, actor: Actor,
                     context: RequestContext) -> ActionResult:
        with transaction() as conn:
            flag = self._load_flag(conn, actor, flag_id)
            record = self._load_resolution(conn, flag)
            if flag.is_terminal:
                raise InvalidState("Evidence cannot be added to a closed flag")

            item = action.evidence
            link = append_evidence(conn, record.id, item.type, actor.user_id,
                                   label=item.label, url=item.url, metadata=item.metadata)
            self._emit(conn, flag, actor, context, AuditAction.EVIDENCE_ADD, {
                'evidence_id': link.id,
                'type': link.type
            })

        logger.log_operation("workflow.add_evidence", "accepted", {"flag_id": flag.id, "type": link.type})
        return ActionResult(flag=flag, evidence=link)

    def complete_task(self, flag_id: str, action: CompleteTaskAction, actor: Actor,
                      context: RequestContext) -> ActionResult:
        with transaction() as conn:
            flag = self._load_flag(conn, actor, flag_id)
            record = self._load_resolution(conn, flag)
            if flag.is_terminal:
                raise InvalidState("Tasks cannot be updated on a closed flag")

            task = complete_task(conn, record.id, action.task_id, action.completion_note)
            self._emit(conn, flag, actor, context, AuditAction.TASK_UPDATE, {
                'task_id': task.id,
                'status': task.status
            })

        logger.log_operation("workflow.complete_task", "accepted", {"flag_id": flag.id, "task_id": task.id})
        return ActionResult(flag=flag, task=task)

    def submit_for_verification(self, flag_id: str, action: SubmitForVerificationAction, actor: Actor,
                                context: RequestContext) -> ActionResult:
        verification = None
        with transaction() as conn:
            flag = self._load_flag(conn, actor, flag_id)
            if flag.status != FlagStatus.IN_REMEDIATION:
                raise InvalidState("Only flags in remediation can be submitted for verification")
            record = self._load_resolution(conn, flag)

            if not all_required_complete(conn, record.id):
                raise IncompleteTasks("All required tasks must be completed before submission.")

            decision = evaluate_submission(record.resolution_type, flag.severity, record.metadata,
                                           evidence_types(conn, record.id))
            if not decision.satisfied:
                raise EvidenceRequirementError(decision.missing_requirement)

            now = utcnow()
            from_status = flag.status
            update_resolution(conn, record, submitted_for_verification_at=now)

            if flag.severity == Severity.CRITICAL:
                transition_flag(conn, flag, FlagStatus.PENDING_VERIFICATION)
            else:
                verification = record_decision(conn, record.id, actor.user_id, Decision.APPROVED,
                                               AUTO_APPROVAL_NOTE)
                update_resolution(conn, record, closed_at=now, closed_by_user_id=actor.user_id)
                transition_flag(conn, flag, FlagStatus.CLOSED, resolved_at=now, resolved_by_user_id=actor.user_id)

            self._emit(conn, flag, actor, context, AuditAction.REMEDIATION_UPDATE, {
                'status': flag.status
            })

        logger.log_transition(flag.id, "submit_for_verification", from_status, flag.status, actor.user_id)
        return ActionResult(flag=flag, resolution=record, verification=verification)

    def approve(self, flag_id: str, action: ApproveAction, actor: Actor,
                context: RequestContext) -> ActionResult:
        with transaction() as conn:
            flag = self._load_flag(conn, actor, flag_id)
            require_reviewer(actor, "Only CCO can approve remediation")
            if flag.status != FlagStatus.PENDING_VERIFICATION:
                raise InvalidState("Flag is not pending verification")
            record = self._load_resolution(conn, flag)

            now = utcnow()
            from_status = flag.status
            verification = record_decision(conn, record.id, actor.user_id, Decision.APPROVED, action.note)
            update_resolution(conn, record, closed_at=now, closed_by_user_id=actor.user_id)
            transition_flag(conn, flag, FlagStatus.CLOSED, resolved_at=now, resolved_by_user_id=actor.user_id)

            self._emit(conn, flag, actor, context, AuditAction.VERIFICATION, {
                'decision': Decision.APPROVED
            })

        logger.log_transition(flag.id, "approve", from_status, flag.status, actor.user_id)
        return ActionResult(flag=flag, resolution=record, verification=verification)

    def reject(self, flag_id: str, action: RejectAction, actor: Actor,
               context: RequestContext) -> ActionResult:
        note = _require_min_length(action.note, MIN_REJECT_NOTE_LENGTH,
                                   f"Rejection note must be at least {MIN_REJECT_NOTE_LENGTH} characters")

        with transaction() as conn:
            flag = self._load_flag(conn, actor, flag_id)
            require_reviewer(actor, "Only CCO can reject remediation")
            if flag.status != FlagStatus.PENDING_VERIFICATION:
                raise InvalidState("Flag is not pending verification")
            record = self._load_resolution(conn, flag)

            from_status = flag.status
            verification = record_decision(conn, record.id, actor.user_id, Decision.REJECTED, note)
            transition_flag(conn, flag, FlagStatus.IN_REMEDIATION)

            self._emit(conn, flag, actor, context, AuditAction.VERIFICATION, {
                'decision': Decision.REJECTED
            })

        logger.log_transition(flag.id, "reject", from_status, flag.status, actor.user_id)
        return ActionResult(flag=flag, resolution=record, verification=verification)

    def override(self, flag_id: str, action: OverrideAction, actor: Actor,
                 context: RequestContext) -> ActionResult:
        reason = _require_min_length(action.reason, MIN_OVERRIDE_REASON_LENGTH,
                                     f"Override reason must be at least {MIN_OVERRIDE_REASON_LENGTH} characters")
        category = _require_min_length(action.category, MIN_OVERRIDE_CATEGORY_LENGTH,
                                       "Override category is required")

        with transaction() as conn:
            flag = self._load_flag(conn, actor, flag_id)
            require_reviewer(actor, "Only CCO can override flags")
            # Overrides are open to any non-terminal status
            if flag.is_terminal:
                raise InvalidState("Flag is already closed")

            record = get_resolution_for_flag(conn, flag.id)
            if not record:
                record = insert_resolution_record(conn, flag.id, ResolutionType.OVERRIDE_APPROVED, reason,
                                                  OverrideMetadata(override_category=category), actor.user_id)

            now = utcnow()
            from_status = flag.status
            verification = record_decision(conn, record.id, actor.user_id, Decision.APPROVED,
                                           f"Accepted risk: {category}")
            update_resolution(conn, record, override_reason=reason, override_category=category,
                              closed_at=now, closed_by_user_id=actor.user_id)
            transition_flag(conn, flag, FlagStatus.CLOSED_ACCEPTED_RISK,
                            resolution_type=ResolutionType.OVERRIDE_APPROVED, resolution_note=reason,
                            resolved_at=now, resolved_by_user_id=actor.user_id)

            self._emit(conn, flag, actor, context, AuditAction.OVERRIDE, {
                'category': category,
                'previous_status': from_status
            })

        logger.log_transition(flag.id, "override", from_status, flag.status, actor.user_id)
        return ActionResult(flag=flag, resolution=record, verification=verification)


# Global workflow engine instance
workflow_engine = WorkflowEngine()


def perform_action(flag_id: str, payload: Union[BaseModel, Dict[str, Any]], actor: Actor,
                   context: Optional[RequestContext] = None) -> ActionResult:
    """Apply one remediation action using the global engine."""
    return workflow_engine.dispatch(flag_id, payload, actor, context)
