"""Shared constants for onboardflow."""

DEFAULT_MAX_RETRIES = 3
DEFAULT_ASSIGNED_ROLE = "hr"

# Actor recorded for transitions the engine performs on its own.
SYSTEM_ACTOR = "system"

INTEGRATION_FAILURE = "integration_failure"

# Integration type used for auto-trigger steps that do not name one.
DEFAULT_INTEGRATION_TYPES = {
    "background_check": "background_check",
    "equipment_setup": "equipment_provisioning",
    "system_access": "system_access",
    "document": "document_signature",
    "notification": "notification",
}

# (upper bound exclusive, stage label)
PROGRESS_STAGES = (
    (25, "pre-boarding"),
    (50, "day-1"),
    (75, "week-1"),
    (100, "month-1"),
)
