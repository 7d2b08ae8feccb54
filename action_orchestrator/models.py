"""
Task and Result Data Model

Task records tracked by the orchestrator and the structured results returned
by providers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ActionKind(Enum):
    """Actions a provider can perform against a target"""

    VIEWS = "views"
    LIKES = "likes"
    SHARES = "shares"
    FAVORITES = "favorites"
    FOLLOWERS = "followers"
    COMMENTS = "comments"


class TaskStatus(Enum):
    """Task execution status"""

    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


def _isoformat(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp).isoformat()


@dataclass
class ActionResult:
    """Outcome of one provider execution attempt"""

    success: bool
    provider: str
    action_kind: ActionKind
    target: str
    timestamp: float
    session_id: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        provider: str,
        action_kind: ActionKind,
        target: str,
        error: str,
        timestamp: float,
        session_id: Optional[str] = None,
    ) -> "ActionResult":
        return cls(
            success=False,
            provider=provider,
            action_kind=action_kind,
            target=target,
            timestamp=timestamp,
            session_id=session_id,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary"""
        data = {
            "success": self.success,
            "provider": self.provider,
            "action_kind": self.action_kind.value,
            "target": self.target,
            "session_id": self.session_id,
            "timestamp": _isoformat(self.timestamp),
        }
        if self.error is not None:
            data["error"] = self.error
        if self.details:
            data["details"] = dict(self.details)
        return data


@dataclass
class Task:
    """One requested action against a target"""

    id: str
    target: str
    action_kind: ActionKind
    created_at: float
    max_attempts: int
    options: Dict[str, Any] = field(default_factory=dict)
    target_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    provider: Optional[str] = None
    attempts: int = 0

    completed_at: Optional[float] = None
    cancelled_at: Optional[float] = None
    error: Optional[str] = None
    result: Optional[ActionResult] = None

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the task for callers outside the orchestrator"""
        return {
            "id": self.id,
            "target": self.target,
            "target_id": self.target_id,
            "action_kind": self.action_kind.value,
            "options": dict(self.options),
            "status": self.status.value,
            "provider": self.provider,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "created_at": _isoformat(self.created_at),
            "completed_at": _isoformat(self.completed_at),
            "cancelled_at": _isoformat(self.cancelled_at),
            "error": self.error,
            "result": self.result.to_dict() if self.result else None,
        }
