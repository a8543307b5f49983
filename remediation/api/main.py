"""
HTTP surface for flag remediation.
Authentication and role resolution happen upstream; the fronting layer
passes the resolved caller in the X-User-Id, X-Workspace-Id and
X-User-Role headers.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .schemas import (
    ActionResponse,
    AuditListResponse,
    ErrorResponse,
    FlagListResponse,
    FlagRegisterRequest,
    HealthResponse,
)
from ..core.audit import list_audit_events
from ..core.config import VERSION, debug_enabled, validate_config
from ..core.dao import get_flag_detail, list_flags, register_flag
from ..core.db import health_check, init_db
from ..core.errors import NotFound, RemediationError, ValidationError
from ..core.schema import Actor, FlagStatus, RequestContext
from ..core.workflow import workflow_engine
from ..util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.set_debug(debug_enabled())
    for issue in validate_config():
        logger.warning(f"Configuration issue: {issue}")
    yield


# Initialize the FastAPI application
app = FastAPI(
    title="Flag Remediation API",
    version=VERSION,
    description="Compliance flag remediation and verification workflow",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan
)


@app.exception_handler(RemediationError)
async def remediation_error_handler(request: Request, exc: RemediationError):
    body = ErrorResponse(error_type=exc.error_type, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_workspace_id: Optional[str] = Header(default=None),
    x_user_role: str = Header(default="MEMBER"),
) -> Actor:
    """Caller identity as resolved by the upstream auth layer."""
    if not x_user_id or not x_workspace_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Actor(user_id=x_user_id, workspace_id=x_workspace_id, role=x_user_role)


def get_request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else request.headers.get("x-real-ip")
    return RequestContext(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        config_issues=validate_config()
    )


@app.post("/flags", status_code=201)
def register_flag_endpoint(request: FlagRegisterRequest, actor: Actor = Depends(get_actor)) -> Dict[str, Any]:
    """Intake for flags raised by the detection pipeline."""
    flag = register_flag(
        workspace_id=actor.workspace_id,
        meeting_id=request.meeting_id,
        flag_type=request.type,
        severity=request.severity,
        originating_evidence=request.originating_evidence
    )
    return {"success": True, "flag": flag.to_dict()}


@app.get("/flags", response_model=FlagListResponse)
def list_flags_endpoint(meeting_id: Optional[str] = None, status: Optional[str] = None,
                        actor: Actor = Depends(get_actor)):
    if status and status not in FlagStatus.ALL:
        raise ValidationError(f"Invalid status: {status}")
    flags = list_flags(actor.workspace_id, meeting_id=meeting_id, status=status)
    return FlagListResponse(flags=[flag.to_dict() for flag in flags])


@app.get("/flags/{flag_id}")
def get_flag_endpoint(flag_id: str, actor: Actor = Depends(get_actor)) -> Dict[str, Any]:
    detail = get_flag_detail(actor.workspace_id, flag_id)
    if not detail:
        raise NotFound("Flag not found")
    return detail.to_dict()


@app.post("/flags/{flag_id}/remediation", response_model=ActionResponse)
def remediation_endpoint(flag_id: str, payload: Dict[str, Any],
                         actor: Actor = Depends(get_actor),
                         context: RequestContext = Depends(get_request_context)):
    """Apply one remediation action; the body is discriminated on `action`."""
    result = workflow_engine.dispatch(flag_id, payload, actor, context)
    return ActionResponse(success=True, **result.to_dict())


@app.get("/flags/{flag_id}/audit", response_model=AuditListResponse)
def flag_audit_endpoint(flag_id: str, limit: int = 100, actor: Actor = Depends(get_actor)):
    if not get_flag_detail(actor.workspace_id, flag_id):
        raise NotFound("Flag not found")
    events = list_audit_events(actor.workspace_id, resource_id=flag_id, limit=limit)
    return AuditListResponse(events=[event.to_dict() for event in events])
