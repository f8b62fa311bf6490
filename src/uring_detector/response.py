from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


class TaskType(str, Enum):
    """Task type of a response envelope."""

    # A scan is a point-in-time snapshot, so STATE is the only task type.
    STATE = "STATE"


class ErrorCode(IntEnum):
    """Error codes carried in FAILURE envelopes."""

    INVALID_ARGUMENTS = 1
    IO_FAILURE = 1002
    # /proc itself could not be listed
    ENUMERATION_FAILURE = 1003


def iso_utc_timestamp() -> str:
    """
    Generate an ISO 8601 UTC timestamp with microsecond precision,
    suffixed with 'Z'.
    Example: '2025-09-10T09:42:13.123456Z'
    """
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="microseconds")
        .replace("+00:00", "Z")
    )


def make_success_response(
    task_type: TaskType, subtype: Optional[str], data: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Create a schema-compliant SUCCESS response.

    {
      "timestamp": "...",
      "status": "SUCCESS",
      "metadata": { "task_type": "...", "subtype": "..." },
      "data": { ... }
    }
    """
    return {
        "timestamp": iso_utc_timestamp(),
        "status": "SUCCESS",
        "metadata": {
            "task_type": task_type.value,
            "subtype": subtype or "",
        },
        "data": data,
    }


def make_error_response(
    task_type: TaskType, subtype: Optional[str], code: int, message: str
) -> Dict[str, Any]:
    """
    Create a schema-compliant FAILURE response.

    {
      "timestamp": "...",
      "status": "FAILURE",
      "metadata": { "task_type": "...", "subtype": "..." },
      "error": { "code": <int>, "message": "<string>" }
    }
    """
    return {
        "timestamp": iso_utc_timestamp(),
        "status": "FAILURE",
        "metadata": {
            "task_type": task_type.value,
            "subtype": subtype or "",
        },
        "error": {
            "code": int(code),
            "message": str(message),
        },
    }
