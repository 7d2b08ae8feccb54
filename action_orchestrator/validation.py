"""
Input validation for action requests.

Requests are rejected here before the orchestrator creates a task.
"""

import re
from typing import Any, Optional, Union

from .errors import ValidationError
from .models import ActionKind

TARGET_PATTERN = re.compile(
    r"^https?://(www\.)?(tiktok\.com|vm\.tiktok\.com|vt\.tiktok\.com)/.+",
    re.IGNORECASE,
)

TARGET_ID_PATTERNS = (
    re.compile(r"/@[\w.-]+/video/(\d+)"),
    re.compile(r"/video/(\d+)"),
    re.compile(r"/v/(\d+)"),
    re.compile(r"/t/(\w+)"),
)


def is_valid_target(target: Any) -> bool:
    """Check whether a value is an acceptable target locator"""
    if not target or not isinstance(target, str):
        return False
    return TARGET_PATTERN.match(target) is not None


def validate_target(target: Any) -> str:
    if not is_valid_target(target):
        raise ValidationError(f"Invalid target locator: {target!r}")
    return target


def extract_target_id(target: str) -> Optional[str]:
    """Extract the resource id from a target locator, None if unrecognized"""
    if not is_valid_target(target):
        return None

    for pattern in TARGET_ID_PATTERNS:
        match = pattern.search(target)
        if match:
            return match.group(1)

    return None


def parse_action_kind(value: Union[ActionKind, str, None]) -> ActionKind:
    if isinstance(value, ActionKind):
        return value
    try:
        return ActionKind(value)
    except ValueError:
        raise ValidationError(f"Invalid action kind: {value!r}") from None


def parse_max_attempts(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"max_attempts must be a positive integer, got {value!r}")
    return value
