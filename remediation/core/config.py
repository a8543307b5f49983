"""
Configuration for the flag remediation workflow.
Environment driven, optionally seeded from a .env file.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Database path configuration (read again on every connection, see get_db_path)
DB_PATH = os.getenv("DB_PATH", "./data/remediation.db")
DB_BUSY_TIMEOUT_SEC = float(os.getenv("DB_BUSY_TIMEOUT_SEC", "10"))

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Role resolution is external; this is the role name it hands us for CCOs
REVIEWER_ROLE = os.getenv("REVIEWER_ROLE", "OWNER_CCO")

ACKNOWLEDGEMENT_DUE_DAYS = int(os.getenv("ACKNOWLEDGEMENT_DUE_DAYS", "7"))

# Minimum free-text lengths
MIN_RATIONALE_LENGTH = 50
MIN_PLAN_NOTE_LENGTH = 50
MIN_REJECT_NOTE_LENGTH = 10
MIN_OVERRIDE_REASON_LENGTH = 20
MIN_OVERRIDE_CATEGORY_LENGTH = 2

AUTO_APPROVAL_NOTE = "Auto-approved (non-critical)"

# Version string
VERSION = "1.0.0"


def get_db_path() -> str:
    """Current database path; honours DB_PATH changes made after import."""
    return os.getenv("DB_PATH", DB_PATH)


def get_reviewer_role() -> str:
    return os.getenv("REVIEWER_ROLE", REVIEWER_ROLE)


def get_acknowledgement_due_days() -> int:
    return int(os.getenv("ACKNOWLEDGEMENT_DUE_DAYS", str(ACKNOWLEDGEMENT_DUE_DAYS)))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if not get_reviewer_role().strip():
        issues.append("REVIEWER_ROLE must not be empty")

    try:
        if get_acknowledgement_due_days() < 0:
            issues.append("ACKNOWLEDGEMENT_DUE_DAYS must be >= 0")
    except ValueError:
        issues.append(f"Invalid ACKNOWLEDGEMENT_DUE_DAYS: {os.getenv('ACKNOWLEDGEMENT_DUE_DAYS')}")

    if DB_BUSY_TIMEOUT_SEC <= 0:
        issues.append("DB_BUSY_TIMEOUT_SEC must be > 0")

    return issues
