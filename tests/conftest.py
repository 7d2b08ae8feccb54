"""
Test configuration

In-process fakes for the browser stack and providers. No test launches a real
browser or sleeps in real time.
"""

import asyncio
import random
from typing import Any, Dict, List, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from action_orchestrator.models import ActionResult
from action_orchestrator.providers import BaseProvider
from action_orchestrator.registry import ProviderRegistry
from action_orchestrator.scheduling import VirtualClock, VirtualScheduler
from action_orchestrator.session_manager import SessionManager

TARGET = "https://www.tiktok.com/@u/video/123"


class FakePage:
    """Records interactions; steps listed in ``fail_on`` raise a Playwright timeout
    and waiting for the ``hang_on`` selector never returns"""

    def __init__(self, fail_on=None, challenge_present=False, hang_on=None):
        self.fail_on = dict(fail_on or {})
        self.hang_on = hang_on
        self.challenge_present = challenge_present
        self.calls: List[tuple] = []
        self.screenshots: List[str] = []
        self.closed = False

    def _step(self, name, *args):
        self.calls.append((name,) + args)
        for key in (name, (name,) + args):
            if key in self.fail_on:
                raise self.fail_on[key]

    async def goto(self, url, timeout=None):
        self._step("goto", url)

    async def wait_for_selector(self, selector, timeout=None):
        self._step("wait_for_selector", selector)
        if selector == self.hang_on:
            await asyncio.Event().wait()

    async def fill(self, selector, value, timeout=None):
        self._step("fill", selector, value)

    async def click(self, selector, timeout=None):
        self._step("click", selector)

    async def query_selector(self, selector):
        self._step("query_selector", selector)
        return object() if self.challenge_present else None

    async def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, page: FakePage, cookies=None):
        self.page = page
        self.current_cookies = list(cookies or [])
        self.added_cookies: List[Dict[str, Any]] = []
        self.closed = False
        self.fail_close = False

    async def new_page(self):
        return self.page

    async def cookies(self):
        return list(self.current_cookies)

    async def add_cookies(self, cookies):
        self.added_cookies.extend(cookies)

    async def close(self):
        if self.fail_close:
            raise RuntimeError("context already gone")
        self.closed = True


class FakeBrowser:
    def __init__(self, page: FakePage, fail_new_context=False):
        self.page = page
        self.fail_new_context = fail_new_context
        self.contexts: List[FakeContext] = []
        self.context_kwargs: List[Dict[str, Any]] = []
        self.connected = True

    async def new_context(self, **kwargs):
        if self.fail_new_context:
            raise RuntimeError("context creation failed")
        self.context_kwargs.append(kwargs)
        context = FakeContext(self.page, cookies=[{"name": "sid", "value": "abc"}])
        self.contexts.append(context)
        return context

    def is_connected(self):
        return self.connected

    async def close(self):
        self.connected = False


class FakeLauncher:
    """Hands out fake browsers whose pages are built from ``page_options``"""

    def __init__(self, **page_options):
        self.page_options = page_options
        self.launch_options: List[Dict[str, Any]] = []
        self.browsers: List[FakeBrowser] = []
        self.fail_launch = False
        self.fail_new_context = False
        self.closed = False

    async def launch(self, options):
        self.launch_options.append(dict(options))
        if self.fail_launch:
            raise RuntimeError("executable not found")
        browser = FakeBrowser(FakePage(**self.page_options), fail_new_context=self.fail_new_context)
        self.browsers.append(browser)
        return browser

    async def close(self):
        self.closed = True

    @property
    def pages(self) -> List[FakePage]:
        return [browser.page for browser in self.browsers]


class StubProvider(BaseProvider):
    """
    Provider with scripted outcomes.

    Each outcome is True, False or an exception instance to raise. The last
    outcome repeats once the script runs out.
    """

    def __init__(self, name, config, clock, outcomes=(True,), supported=None):
        super().__init__(name, config, clock=clock)
        self.outcomes = list(outcomes)
        self.supported = supported
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    def supports(self, action_kind):
        return self.supported is None or action_kind in self.supported

    async def perform_action(self, target, action_kind, options=None):
        self.calls.append({"target": target, "action_kind": action_kind, "options": options})
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome

        self.update_stats(outcome)
        if outcome:
            return ActionResult(
                success=True,
                provider=self.name,
                action_kind=action_kind,
                target=target,
                timestamp=self.clock(),
            )
        return ActionResult.failure(
            provider=self.name,
            action_kind=action_kind,
            target=target,
            error="remote rejected the request",
            timestamp=self.clock(),
        )


@pytest.fixture
def target():
    return TARGET


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def scheduler(clock):
    return VirtualScheduler(clock)


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def sleeps():
    """Records delays requested through the injected sleep"""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(seconds):
        sleeps.append(seconds)

    return sleep


@pytest.fixture
def session_config(tmp_path):
    return {
        "browser_type": "chromium",
        "headless": True,
        "slow_mo": 0,
        "timeout_ms": 1000,
        "viewport_width": 1280,
        "viewport_height": 720,
        "args": ["--no-sandbox"],
        "cookie_path": str(tmp_path / "cookies.json"),
        "user_agent_path": str(tmp_path / "user-agents.json"),
        "proxy_path": str(tmp_path / "proxies.json"),
        "screenshot_dir": str(tmp_path / "screenshots"),
        "session_timeout": 3600,
        "cleanup_interval": 300,
    }


@pytest.fixture
def session_manager(session_config, launcher, clock):
    return SessionManager(session_config, launcher=launcher, clock=clock, rng=random.Random(7))


@pytest.fixture
def form_profile():
    return {
        "name": "alpha",
        "kind": "form",
        "base_url": "https://provider.example/",
        "endpoints": {"views": "/views", "likes": "/likes"},
        "selectors": {
            "form": "form#action",
            "target_input": "input[name=url]",
            "submit": "button[type=submit]",
            "completion": ".done",
            "challenge": "#challenge",
        },
        "delays": {"between_actions": 30, "after_submit": 2},
        "max_errors": 3,
    }


@pytest.fixture
def make_provider(clock):
    def factory(name="alpha", outcomes=(True,), between_actions=0, max_errors=3, supported=None):
        config = {"delays": {"between_actions": between_actions}, "max_errors": max_errors}
        return StubProvider(name, config, clock, outcomes=outcomes, supported=supported)

    return factory


@pytest.fixture
def registry():
    return ProviderRegistry()


@pytest.fixture
def tasks_config():
    return {"max_retries": 3, "retry_delay": 5, "task_timeout": 300, "history_limit": 1000}


@pytest.fixture
def playwright_timeout():
    def factory(message="Timeout 1000ms exceeded."):
        return PlaywrightTimeoutError(message)

    return factory

