"""
Action Service

Single context object that builds the session manager, providers, registry and
orchestrator once from configuration, runs the periodic session sweep and tears
everything down in order.

Version: 1.0.0
"""

import asyncio
import random
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog

from .models import ActionKind
from .orchestrator import TaskOrchestrator
from .persistence import JsonDocumentStore
from .providers import ChallengeResolver, create_provider
from .registry import ProviderRegistry
from .scheduling import AsyncioScheduler
from .session_manager import SessionManager


class ActionService:
    """Owns every engine component for the lifetime of one process"""

    def __init__(
        self,
        config: Dict[str, Any],
        launcher: Any = None,
        scheduler: Any = None,
        clock: Callable[[], float] = time.time,
        challenge_resolver: Optional[ChallengeResolver] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.config = config
        self.clock = clock

        session_config = dict(config.get("browser", {}))
        session_config.update(config.get("session", {}))
        self.cleanup_interval = session_config.get("cleanup_interval", 300)

        self.store = JsonDocumentStore()
        self.session_manager = SessionManager(
            session_config, launcher=launcher, store=self.store, clock=clock, rng=rng
        )

        self.registry = ProviderRegistry()
        for profile in config.get("providers", []):
            self.registry.register(
                create_provider(
                    profile,
                    self.session_manager,
                    challenge_resolver=challenge_resolver,
                    clock=clock,
                    sleep=sleep,
                    screenshot_dir=session_config.get("screenshot_dir"),
                )
            )

        self.scheduler = scheduler or AsyncioScheduler()
        self.orchestrator = TaskOrchestrator(
            self.registry, config.get("tasks", {}), self.scheduler, clock=clock
        )

        self.cleanup_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the background session sweep"""
        if self.cleanup_task and not self.cleanup_task.done():
            return

        self.cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.info(
            "Action service started",
            providers=self.registry.names(),
            cleanup_interval=self.cleanup_interval,
        )

    async def shutdown(self) -> None:
        """Gracefully shutdown the service"""
        self.logger.info("Shutting down action service")

        if self.cleanup_task and not self.cleanup_task.done():
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
        self.cleanup_task = None

        await self.orchestrator.cleanup()
        await self.scheduler.shutdown()
        await self.session_manager.release_all()

        close = getattr(self.session_manager.launcher, "close", None)
        if close is not None:
            await close()

        self.logger.info("Action service shutdown complete")

    async def submit(
        self,
        target: str,
        action_kind: Any = ActionKind.VIEWS,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await self.orchestrator.submit(target, action_kind, options)

    def get_task_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        return self.orchestrator.get_task_status(task_id)

    async def cancel(self, task_id: str) -> bool:
        return await self.orchestrator.cancel(task_id)

    def reset_providers(self) -> None:
        self.orchestrator.reset_providers()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.orchestrator.get_stats()
        stats["sessions"] = self.session_manager.get_stats()
        stats["timestamp"] = datetime.fromtimestamp(self.clock()).isoformat()
        return stats

    async def _cleanup_loop(self) -> None:
        """Background session cleanup loop"""
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                await self.session_manager.cleanup_expired()

            except asyncio.CancelledError:
                break
            except Exception as error:
                self.logger.error("Cleanup loop error", error=str(error))


__all__ = ["ActionService"]
