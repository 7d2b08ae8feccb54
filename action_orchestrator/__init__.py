"""
Action Orchestration Engine

Accepts action requests against a target, routes each one to a healthy
execution provider, drives a bounded retry protocol and manages isolated
browser sessions for the providers.

Version: 1.0.0
"""

from .config import load_config
from .errors import (
    ConfigurationError,
    ExecutionError,
    InvalidTransitionError,
    LaunchError,
    NoProviderAvailable,
    OrchestratorError,
    ValidationError,
)
from .logging_config import configure_logging
from .models import ActionKind, ActionResult, Task, TaskStatus
from .orchestrator import TaskOrchestrator
from .providers import BaseProvider, ChallengeResolver, FormActionProvider, create_provider
from .registry import ProviderRegistry
from .scheduling import AsyncioScheduler, VirtualClock, VirtualScheduler
from .service import ActionService
from .session_manager import BrowserSession, SessionManager

__all__ = [
    "ActionKind",
    "ActionResult",
    "ActionService",
    "AsyncioScheduler",
    "BaseProvider",
    "BrowserSession",
    "ChallengeResolver",
    "ConfigurationError",
    "ExecutionError",
    "FormActionProvider",
    "InvalidTransitionError",
    "LaunchError",
    "NoProviderAvailable",
    "OrchestratorError",
    "ProviderRegistry",
    "SessionManager",
    "Task",
    "TaskOrchestrator",
    "TaskStatus",
    "ValidationError",
    "VirtualClock",
    "VirtualScheduler",
    "configure_logging",
    "create_provider",
    "load_config",
]
