"""
Structured logging for the remediation workflow.
Every accepted transition, rejected action and audit write goes through here.
"""

import logging
from typing import Any, Dict, List

DEFAULT_SENSITIVE_FIELDS = ['rationale', 'note', 'reason', 'plan_note', 'completion_note', 'snippet', 'user_agent']


class StructuredLogger:
    """Structured logger for flag remediation operations."""

    def __init__(self, name: str = "remediation"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_transition(self, flag_id: str, action: str, from_status: str, to_status: str, actor_id: str):
        """Log an accepted workflow transition."""
        log_details = {
            "flag_id": flag_id,
            "from_status": from_status,
            "to_status": to_status,
            "actor_id": actor_id
        }
        self.log_operation(f"workflow.{action}", "accepted", log_details)

    def log_action_rejected(self, flag_id: str, action: str, error_type: str, message: str):
        """Log an action refused before or during its transaction."""
        log_details = {
            "flag_id": flag_id,
            "error_type": error_type,
            "message": message[:100] if message else ""
        }
        self.log_operation(f"workflow.{action}", "rejected", log_details)

    def log_audit_event(self, action_kind: str, resource_id: str, workspace_id: str, metadata: Dict[str, Any] = None):
        """Log an audit event write."""
        log_details = {
            "action_kind": action_kind,
            "resource_id": resource_id,
            "workspace_id": workspace_id
        }
        if metadata:
            log_details["metadata"] = sanitize_metadata(metadata)
        self.log_operation("audit.recorded", "success", log_details)

    def log_flag_registered(self, flag_id: str, meeting_id: str, severity: str):
        """Log intake of a flag from the detection pipeline."""
        self.log_operation("flag.registered", "open", {
            "flag_id": flag_id,
            "meeting_id": meeting_id,
            "severity": severity
        })

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

    def set_debug(self, enabled: bool) -> None:
        self.logger.setLevel(logging.DEBUG if enabled else logging.INFO)


def sanitize_metadata(metadata: Any, sensitive_fields: List[str] = None) -> Any:
    """Truncate free text and redact sensitive keys before logging."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(metadata, dict):
        sanitized = {}
        for k, v in metadata.items():
            if k in sensitive_fields:
                sanitized[k] = "[REDACTED]"
            else:
                sanitized[k] = sanitize_metadata(v, sensitive_fields)
        return sanitized
    elif isinstance(metadata, str):
        return metadata[:97] + "..." if len(metadata) > 100 else metadata
    elif isinstance(metadata, list):
        return [sanitize_metadata(item, sensitive_fields) for item in metadata]
    else:
        return metadata


# Global logger instance
logger = StructuredLogger()
