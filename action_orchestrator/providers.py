"""
Execution Provider System

Pluggable execution backends. Every provider shares the availability policy
owned by BaseProvider (rate spacing plus a circuit breaker that only an
explicit reset closes). Variants implement ``perform_action``.

Key Features:
- Circuit breaker on consecutive failures
- Inter-action rate spacing
- Closed set of provider kinds built by ``create_provider``
- Form-submission variant driving one exclusive browser session per attempt

Version: 1.0.0
"""

import asyncio
import time
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urljoin
from uuid import uuid4

import structlog
from playwright.async_api import Error as PlaywrightError

from .errors import ConfigurationError, ExecutionError, ValidationError
from .logging_config import log_action_event, log_error, log_provider_event
from .models import ActionKind, ActionResult
from .session_manager import SessionManager
from .validation import parse_action_kind


class ProviderKind(Enum):
    """Provider variants"""

    FORM = "form"


class BaseProvider:
    """
    Common provider state and availability policy.

    Subclasses must implement ``perform_action`` and call ``update_stats``
    exactly once per attempt.
    """

    kind: Optional[ProviderKind] = None

    def __init__(
        self,
        name: str,
        config: Dict[str, Any],
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.name = name
        self.config = config
        self.clock = clock
        self.sleep = sleep

        delays = config.get("delays", {})
        self.between_actions = delays.get("between_actions", 30)
        self.max_errors = config.get("max_errors", 3)

        # Availability state
        self.is_available = True
        self.last_action_time = 0.0
        self.action_count = 0
        self.error_count = 0

    def check_availability(self) -> bool:
        """Circuit closed and the inter-action delay has elapsed"""
        if not self.is_available:
            log_provider_event(self.logger, self.name, "availability_check", "unavailable")
            return False

        elapsed = self.time_since_last_action()
        if elapsed < self.between_actions:
            log_provider_event(
                self.logger,
                self.name,
                "availability_check",
                "rate_limited",
                remaining_seconds=round(self.between_actions - elapsed, 3),
            )
            return False

        return True

    def supports(self, action_kind: ActionKind) -> bool:
        return True

    def time_since_last_action(self) -> float:
        return self.clock() - self.last_action_time

    async def wait_for_delay(self) -> None:
        log_provider_event(
            self.logger, self.name, "waiting", "delay", delay=self.between_actions
        )
        await self.sleep(self.between_actions)

    def update_stats(self, success: bool) -> None:
        self.last_action_time = self.clock()
        self.action_count += 1

        if success:
            self.error_count = 0
            return

        self.error_count += 1
        if self.is_available and self.error_count >= self.max_errors:
            self.is_available = False
            log_provider_event(
                self.logger,
                self.name,
                "disabled",
                "too_many_errors",
                error_count=self.error_count,
            )

    def reset_availability(self) -> None:
        self.is_available = True
        self.error_count = 0
        log_provider_event(self.logger, self.name, "reset", "availability_restored")

    def get_stats(self) -> Dict[str, Any]:
        """Read-only snapshot of the provider state"""
        return {
            "name": self.name,
            "kind": self.kind.value if self.kind else None,
            "is_available": self.is_available,
            "action_count": self.action_count,
            "error_count": self.error_count,
            "last_action_time": self.last_action_time,
            "time_since_last_action": self.time_since_last_action(),
        }

    async def perform_action(
        self,
        target: str,
        action_kind: ActionKind,
        options: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        raise NotImplementedError(
            f"perform_action must be implemented by {self.__class__.__name__}"
        )


class ChallengeResolver:
    """Resolves an interstitial challenge shown on a page"""

    async def resolve(self, page: Any, provider: str) -> bool:
        """
        Attempt to clear the challenge currently displayed on ``page``.

        Returns:
            Whether the challenge was resolved
        """
        raise NotImplementedError(
            f"resolve must be implemented by {self.__class__.__name__}"
        )


class FormActionProvider(BaseProvider):
    """
    Provider driving a web form in a headless browser.

    Profile keys:
        base_url: Landing page
        endpoints: Mapping of action kind to the path of its form page
        selectors: ``form``, ``target_input``, ``submit``, ``completion`` and
            optionally ``challenge``
        delays: ``between_actions`` and ``after_submit`` in seconds
    """

    kind = ProviderKind.FORM
    REQUIRED_SELECTORS = ("form", "target_input", "submit", "completion")

    def __init__(
        self,
        name: str,
        config: Dict[str, Any],
        session_manager: SessionManager,
        challenge_resolver: Optional[ChallengeResolver] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        screenshot_dir: Optional[str] = None,
    ):
        super().__init__(name, config, clock=clock, sleep=sleep)
        self.session_manager = session_manager
        self.challenge_resolver = challenge_resolver
        self.screenshot_dir = Path(screenshot_dir) if screenshot_dir else None

        self.base_url = config.get("base_url")
        if not self.base_url:
            raise ConfigurationError(f"Provider {name} has no base_url")

        try:
            self.endpoints = {
                parse_action_kind(kind): path
                for kind, path in config.get("endpoints", {}).items()
            }
        except ValidationError as error:
            raise ConfigurationError(f"Provider {name}: {error}") from error
        self.selectors = dict(config.get("selectors", {}))
        missing = [key for key in self.REQUIRED_SELECTORS if not self.selectors.get(key)]
        if missing:
            raise ConfigurationError(
                f"Provider {name} is missing selectors: {', '.join(missing)}"
            )

        self.after_submit = config.get("delays", {}).get("after_submit", 5)
        self.timeout_ms = config.get("timeout_ms", 30000)
        self.completion_timeout_ms = config.get("completion_timeout_ms", 60000)

    def supports(self, action_kind: ActionKind) -> bool:
        return action_kind in self.endpoints

    async def perform_action(
        self,
        target: str,
        action_kind: ActionKind,
        options: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        """
        Run one attempt of the action in a fresh browser session.

        Args:
            target: Target locator
            action_kind: Action to perform
            options: ``headless`` and ``session_id`` overrides

        Returns:
            Structured result; failures are returned, never raised
        """
        options = options or {}
        session_id = options.get("session_id") or str(uuid4())
        launch_options = {}
        if "headless" in options:
            launch_options["headless"] = bool(options["headless"])

        log_action_event(
            self.logger, action_kind, target, self.name, "executing", session_id=session_id
        )

        try:
            async with self.session_manager.session(session_id, launch_options) as session:
                await self.session_manager.load_cookies(session_id, session)
                try:
                    await self._run_interaction(session.page, target, action_kind)
                except ExecutionError:
                    await self.take_screenshot(session.page, f"{self.name}_{action_kind.value}")
                    raise
                await self.session_manager.save_cookies(session_id, session)

        except NotImplementedError:
            raise

        except Exception as error:
            self.update_stats(False)
            log_error(
                self.logger,
                error,
                provider=self.name,
                action_kind=action_kind.value,
                target=target,
                session_id=session_id,
            )
            return ActionResult.failure(
                provider=self.name,
                action_kind=action_kind,
                target=target,
                error=str(error),
                timestamp=self.clock(),
                session_id=session_id,
            )

        self.update_stats(True)
        log_action_event(
            self.logger, action_kind, target, self.name, "success", session_id=session_id
        )
        return ActionResult(
            success=True,
            provider=self.name,
            action_kind=action_kind,
            target=target,
            timestamp=self.clock(),
            session_id=session_id,
        )

    async def take_screenshot(self, page: Any, label: str) -> Optional[str]:
        """Capture a full-page screenshot for debugging, best effort"""
        if self.screenshot_dir is None:
            return None

        path = self.screenshot_dir / f"{label}_{int(self.clock() * 1000)}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
        except Exception as error:
            log_error(self.logger, error, provider=self.name, action="screenshot")
            return None

        log_provider_event(self.logger, self.name, "screenshot", "taken", path=str(path))
        return str(path)

    # ========================================================================
    # PRIVATE METHODS
    # ========================================================================

    async def _run_interaction(
        self, page: Any, target: str, action_kind: ActionKind
    ) -> None:
        endpoint = self.endpoints.get(action_kind)
        if endpoint is None:
            raise ExecutionError(f"{self.name} does not offer {action_kind.value}")

        await self._navigate(page, self.base_url)
        await self._navigate(page, urljoin(self.base_url, endpoint))
        await self._wait_for(page, self.selectors["form"], "action form", self.timeout_ms)

        try:
            await page.fill(self.selectors["target_input"], target, timeout=self.timeout_ms)
            await page.click(self.selectors["submit"], timeout=self.timeout_ms)
        except PlaywrightError as error:
            raise ExecutionError(f"Failed to submit target: {error}") from error

        await self.sleep(self.after_submit)
        await self._handle_challenge(page)
        await self._wait_for(
            page, self.selectors["completion"], "completion signal", self.completion_timeout_ms
        )

    async def _navigate(self, page: Any, url: str) -> None:
        try:
            await page.goto(url, timeout=self.timeout_ms)
        except PlaywrightError as error:
            raise ExecutionError(f"Navigation to {url} failed: {error}") from error

    async def _wait_for(
        self, page: Any, selector: str, description: str, timeout_ms: int
    ) -> None:
        try:
            await page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightError as error:
            raise ExecutionError(
                f"No {description} within {timeout_ms} ms ({selector})"
            ) from error

    async def _handle_challenge(self, page: Any) -> None:
        selector = self.selectors.get("challenge")
        if not selector:
            return

        try:
            challenge = await page.query_selector(selector)
        except PlaywrightError as error:
            raise ExecutionError(f"Challenge detection failed: {error}") from error
        if challenge is None:
            return

        log_provider_event(self.logger, self.name, "challenge", "detected")
        resolved = False
        if self.challenge_resolver is not None:
            resolved = await self.challenge_resolver.resolve(page, self.name)
        if not resolved:
            raise ExecutionError("Challenge could not be resolved")

        log_provider_event(self.logger, self.name, "challenge", "resolved")


PROVIDER_CLASSES = {
    ProviderKind.FORM: FormActionProvider,
}


def create_provider(
    profile: Dict[str, Any],
    session_manager: SessionManager,
    challenge_resolver: Optional[ChallengeResolver] = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    screenshot_dir: Optional[str] = None,
) -> BaseProvider:
    """
    Build a provider from its profile.

    Raises:
        ConfigurationError: Unknown kind or incomplete profile
    """
    name = profile.get("name")
    if not name:
        raise ConfigurationError("Provider profile has no name")

    try:
        kind = ProviderKind(profile.get("kind", ProviderKind.FORM.value))
    except ValueError:
        raise ConfigurationError(
            f"Provider {name} has unknown kind {profile.get('kind')!r}"
        ) from None

    provider_class = PROVIDER_CLASSES[kind]
    return provider_class(
        name,
        profile,
        session_manager,
        challenge_resolver=challenge_resolver,
        clock=clock,
        sleep=sleep,
        screenshot_dir=screenshot_dir,
    )


__all__ = [
    "BaseProvider",
    "ChallengeResolver",
    "FormActionProvider",
    "ProviderKind",
    "create_provider",
]
