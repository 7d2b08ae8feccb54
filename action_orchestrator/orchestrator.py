"""
Task Orchestration System

Accepts action requests, selects a provider, delegates execution and drives
the bounded retry protocol through a one-shot deferred scheduler.

Task lifecycle:
    pending -> running -> completed | failed | retrying | cancelled
    retrying -> running | cancelled

Every task record lives in exactly one of the active store and the history
store. A terminal transition moves it from active to history exactly once.
History is a bounded FIFO of the most recent terminal tasks.

Version: 1.0.0
"""

import asyncio
import inspect
import time
from collections import OrderedDict, defaultdict
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import structlog

from .errors import InvalidTransitionError, NoProviderAvailable
from .logging_config import log_action_event, log_error
from .models import ActionKind, ActionResult, Task, TaskStatus
from .providers import BaseProvider
from .registry import ProviderRegistry
from .validation import (
    extract_target_id,
    parse_action_kind,
    parse_max_attempts,
    validate_target,
)

ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.RUNNING: {
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.RETRYING,
        TaskStatus.CANCELLED,
    },
    TaskStatus.RETRYING: {TaskStatus.RUNNING, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}

TASK_EVENTS = (
    "task_created",
    "task_started",
    "task_retrying",
    "task_completed",
    "task_failed",
    "task_cancelled",
)


class TaskOrchestrator:
    """
    Task orchestrator for provider-executed actions.

    All task mutations go through the transition helpers of this class.
    Callers only receive dictionary snapshots of task records.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: Dict[str, Any],
        scheduler: Any,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize task orchestrator.

        Args:
            registry: Provider registry used for selection
            config: The ``tasks`` configuration section
            scheduler: Object with ``schedule(delay, callback)``
            clock: Epoch-seconds clock
        """
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.registry = registry
        self.scheduler = scheduler
        self.clock = clock

        # Configuration
        self.default_max_attempts = config.get("max_retries", 3)
        self.retry_delay = config.get("retry_delay", 5)
        self.task_timeout = config.get("task_timeout", 300)
        self.history_limit = config.get("history_limit", 1000)

        # Task stores
        self.active_tasks: Dict[str, Task] = {}
        self.history: "OrderedDict[str, Task]" = OrderedDict()

        # Event notification
        self.task_event_handlers: Dict[str, List[Callable]] = defaultdict(list)

        self.started_at = clock()

        self.logger.info(
            "Task Orchestrator initialized",
            providers=registry.names(),
            default_max_attempts=self.default_max_attempts,
            retry_delay=self.retry_delay,
        )

    async def submit(
        self,
        target: str,
        action_kind: Any = ActionKind.VIEWS,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Submit an action request.

        Args:
            target: Target locator
            action_kind: ``ActionKind`` or its string value
            options: Free-form options; ``max_attempts`` overrides the default

        Returns:
            Report of the first attempt: completed, failed or retrying

        Raises:
            ValidationError: Bad target, action kind or max_attempts. No task
                is created.
        """
        kind = parse_action_kind(action_kind)
        validate_target(target)
        options = dict(options or {})
        max_attempts = parse_max_attempts(
            options.get("max_attempts", self.default_max_attempts)
        )

        task = Task(
            id=str(uuid4()),
            target=target,
            target_id=extract_target_id(target),
            action_kind=kind,
            options=options,
            created_at=self.clock(),
            max_attempts=max_attempts,
        )
        self.active_tasks[task.id] = task

        log_action_event(self.logger, kind, target, None, "task_created", task_id=task.id)
        await self._notify_task_event("task_created", task)
        if task.status.is_terminal:
            return self._report(task, success=False, error=task.error)

        try:
            provider = self.registry.require_provider(kind)
        except NoProviderAvailable as error:
            task.error = str(error)
            await self._finalize(task, TaskStatus.FAILED)
            return self._report(task, success=False, error=task.error)

        # Provider binding is sticky for the task's lifetime
        task.provider = provider.name
        return await self._run_attempt(task, provider)

    def get_task_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot of a task from the active store, then history"""
        task = self.active_tasks.get(task_id) or self.history.get(task_id)
        return task.to_dict() if task else None

    async def cancel(self, task_id: str) -> bool:
        """
        Cancel an active task.

        In-flight provider calls are not interrupted; a pending retry becomes
        a no-op when it fires.

        Returns:
            False when the task is unknown or already terminal
        """
        task = self.active_tasks.get(task_id)
        if not task:
            return False

        await self._finalize(task, TaskStatus.CANCELLED)
        return True

    def reset_providers(self) -> None:
        self.registry.reset_all()

    def get_active_tasks(self) -> List[Dict[str, Any]]:
        return [task.to_dict() for task in self.active_tasks.values()]

    def get_task_history(self, limit: int = 100) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        tasks = list(self.history.values())[-limit:]
        return [task.to_dict() for task in tasks]

    def get_available_actions(self) -> List[str]:
        return [kind.value for kind in ActionKind]

    def get_available_providers(self) -> List[str]:
        return self.registry.names()

    def get_provider_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.registry.get_stats()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get orchestrator statistics.

        Returns:
            Provider snapshots, task counts and uptime in seconds
        """
        history = list(self.history.values())
        return {
            "providers": self.get_provider_stats(),
            "tasks": {
                "active": len(self.active_tasks),
                "total": len(history) + len(self.active_tasks),
                "completed": sum(1 for t in history if t.status == TaskStatus.COMPLETED),
                "failed": sum(1 for t in history if t.status == TaskStatus.FAILED),
                "cancelled": sum(1 for t in history if t.status == TaskStatus.CANCELLED),
            },
            "uptime": self.clock() - self.started_at,
        }

    def add_event_handler(self, event_type: str, handler: Callable) -> None:
        if event_type not in TASK_EVENTS:
            raise ValueError(f"Unknown task event: {event_type}")
        self.task_event_handlers[event_type].append(handler)

    async def cleanup(self) -> int:
        """Cancel every active task"""
        task_ids = list(self.active_tasks)
        for task_id in task_ids:
            await self.cancel(task_id)

        self.logger.info("Task orchestrator cleanup completed", cancelled=len(task_ids))
        return len(task_ids)

    # ========================================================================
    # PRIVATE METHODS
    # ========================================================================

    async def _run_attempt(self, task: Task, provider: BaseProvider) -> Dict[str, Any]:
        self._transition(task, TaskStatus.RUNNING)
        await self._notify_task_event("task_started", task)
        if task.status != TaskStatus.RUNNING:
            return self._report(task, success=False, error=task.error)

        result = await self._execute_action(provider, task)

        if task.status != TaskStatus.RUNNING:
            log_action_event(
                self.logger,
                task.action_kind,
                task.target,
                provider.name,
                "result_discarded",
                task_id=task.id,
                task_status=task.status.value,
                result_success=result.success,
            )
            return self._report(task, success=False, error=task.error)

        if result.success:
            task.result = result
            task.error = None
            await self._finalize(task, TaskStatus.COMPLETED)
            return self._report(task, success=True, result=result)

        task.attempts += 1
        task.error = result.error

        if task.attempts < task.max_attempts:
            self._transition(task, TaskStatus.RETRYING)
            self.scheduler.schedule(self.retry_delay, partial(self._retry_task, task.id))

            log_action_event(
                self.logger,
                task.action_kind,
                task.target,
                provider.name,
                "retrying",
                task_id=task.id,
                attempt=task.attempts,
                max_attempts=task.max_attempts,
                retry_delay=self.retry_delay,
            )
            await self._notify_task_event("task_retrying", task)
            return self._report(task, success=False, error=task.error, result=result)

        await self._finalize(task, TaskStatus.FAILED)
        return self._report(task, success=False, error=task.error, result=result)

    async def _retry_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Deferred retry callback; a no-op unless the task is still retrying"""
        task = self.active_tasks.get(task_id)
        if not task or task.status != TaskStatus.RETRYING:
            return None

        log_action_event(
            self.logger,
            task.action_kind,
            task.target,
            task.provider,
            "retry_started",
            task_id=task_id,
            attempt=task.attempts,
        )

        provider = self.registry.get(task.provider)
        if provider is None:
            task.error = f"Provider not found: {task.provider}"
            await self._finalize(task, TaskStatus.FAILED)
            return self._report(task, success=False, error=task.error)

        return await self._run_attempt(task, provider)

    async def _execute_action(self, provider: BaseProvider, task: Task) -> ActionResult:
        try:
            return await asyncio.wait_for(
                provider.perform_action(task.target, task.action_kind, dict(task.options)),
                timeout=self.task_timeout,
            )

        except NotImplementedError:
            raise

        except asyncio.TimeoutError:
            provider.update_stats(False)
            error_message = f"Action timed out after {self.task_timeout} seconds"
            log_action_event(
                self.logger,
                task.action_kind,
                task.target,
                provider.name,
                "timeout",
                task_id=task.id,
            )
            return ActionResult.failure(
                provider=provider.name,
                action_kind=task.action_kind,
                target=task.target,
                error=error_message,
                timestamp=self.clock(),
            )

        except Exception as error:
            log_error(
                self.logger,
                error,
                provider=provider.name,
                action="execute_action",
                task_id=task.id,
                target=task.target,
            )
            return ActionResult.failure(
                provider=provider.name,
                action_kind=task.action_kind,
                target=task.target,
                error=str(error),
                timestamp=self.clock(),
            )

    def _transition(self, task: Task, status: TaskStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[task.status]:
            raise InvalidTransitionError(
                f"Task {task.id} cannot move from {task.status.value} to {status.value}"
            )
        task.status = status

    async def _finalize(self, task: Task, status: TaskStatus) -> None:
        """Apply a terminal transition and move the task to history"""
        self._transition(task, status)

        now = self.clock()
        if status == TaskStatus.CANCELLED:
            task.cancelled_at = now
        else:
            task.completed_at = now

        del self.active_tasks[task.id]
        self.history[task.id] = task
        while len(self.history) > self.history_limit:
            self.history.popitem(last=False)

        log_action_event(
            self.logger,
            task.action_kind,
            task.target,
            task.provider,
            status.value,
            task_id=task.id,
            attempts=task.attempts,
            duration_seconds=round(now - task.created_at, 3),
        )
        await self._notify_task_event(f"task_{status.value}", task)

    def _report(
        self,
        task: Task,
        success: bool,
        error: Optional[str] = None,
        result: Optional[ActionResult] = None,
    ) -> Dict[str, Any]:
        report = result.to_dict() if result else {}
        report.update(
            {
                "success": success,
                "task_id": task.id,
                "status": task.status.value,
                "provider": task.provider,
                "action_kind": task.action_kind.value,
                "target": task.target,
                "attempts": task.attempts,
                "max_attempts": task.max_attempts,
            }
        )
        if error is not None:
            report["error"] = error
        report.setdefault("timestamp", datetime.fromtimestamp(self.clock()).isoformat())
        return report

    async def _notify_task_event(self, event_type: str, task: Task) -> None:
        """Notify registered event handlers with a task snapshot"""
        handlers = self.task_event_handlers.get(event_type, [])
        if not handlers:
            return

        snapshot = task.to_dict()
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(snapshot)
                else:
                    handler(snapshot)
            except Exception as error:
                self.logger.error(f"Event handler error: {error}", event_type=event_type)


__all__ = ["TaskOrchestrator", "ALLOWED_TRANSITIONS", "TASK_EVENTS"]
