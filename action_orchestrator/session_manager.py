"""
Browser Session Management System

Exclusive browser-session leases for provider executions. Each session owns a
browser/context/page triple registered under a session id and is released on
every exit path of the execution that acquired it.

Key Features:
- Scoped acquisition with guaranteed release
- User-agent identity rotation and optional proxy rotation
- Cookie load/save against a persisted cookie document
- Timeout accounting and expired-session sweeps

Version: 1.0.0
"""

import asyncio
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

import structlog

from .errors import LaunchError
from .logging_config import log_error, log_session_event
from .persistence import JsonDocumentStore

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class SessionStatus(Enum):
    """Browser session status"""

    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass
class BrowserSession:
    """One exclusive browser lease used for a single execution attempt"""

    session_id: str
    browser: Any
    context: Any
    page: Any
    created_at: float
    user_agent: str
    proxy: Optional[Dict[str, str]] = None
    status: SessionStatus = SessionStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_alive(self) -> bool:
        """Check that the browser process and page are still usable"""
        return (
            self.status == SessionStatus.ACTIVE
            and self.browser is not None
            and self.browser.is_connected()
            and self.page is not None
            and not self.page.is_closed()
        )


class PlaywrightLauncher:
    """Launches browser processes through Playwright"""

    def __init__(self, browser_type: str = "chromium"):
        self.browser_type = browser_type
        self._playwright = None
        self._start_lock = asyncio.Lock()

    async def launch(self, options: Dict[str, Any]) -> Any:
        async with self._start_lock:
            if self._playwright is None:
                from playwright.async_api import async_playwright

                self._playwright = await async_playwright().start()

        launcher = getattr(self._playwright, self.browser_type)
        return await launcher.launch(**options)

    async def close(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class SessionManager:
    """
    Browser session manager for provider executions.

    Sessions are never shared: one session id maps to one browser handle, and
    a registered id cannot be acquired again until it is released.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        launcher: Any = None,
        store: Optional[JsonDocumentStore] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize session manager.

        Args:
            config: Merged ``session`` and ``browser`` configuration
            launcher: Object with ``async launch(options)`` returning a browser
            store: Document store for cookies, user agents and proxies
            clock: Epoch-seconds clock
            rng: Random source for identity and proxy rotation
        """
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.config = config
        self.launcher = launcher or PlaywrightLauncher(
            config.get("browser_type", "chromium")
        )
        self.store = store or JsonDocumentStore()
        self.clock = clock
        self.rng = rng or random.Random()

        # Session registry
        self.sessions: Dict[str, BrowserSession] = {}
        self._launching: Set[str] = set()

        # Configuration
        self.session_timeout = config.get("session_timeout", 3600)
        self.cookie_path = Path(config.get("cookie_path", "./data/cookies.json"))
        self.user_agent_path = Path(
            config.get("user_agent_path", "./data/user-agents.json")
        )
        self.proxy_path = Path(config.get("proxy_path", "./data/proxies.json"))
        self.viewport = {
            "width": config.get("viewport_width", 1366),
            "height": config.get("viewport_height", 768),
        }
        self.launch_defaults = {
            "headless": config.get("headless", True),
            "slow_mo": config.get("slow_mo", 100),
            "timeout": config.get("timeout_ms", 30000),
            "args": list(config.get("args", [])),
        }

        # Statistics
        self.session_stats = {
            "sessions_created": 0,
            "sessions_terminated": 0,
            "sessions_expired": 0,
            "launch_failures": 0,
            "close_errors": 0,
        }

    async def acquire(
        self, session_id: str, launch_options: Optional[Dict[str, Any]] = None
    ) -> BrowserSession:
        """
        Launch a browser and page and register them under ``session_id``.

        Args:
            session_id: Session identifier
            launch_options: Overrides for the browser launch options

        Returns:
            Registered browser session

        Raises:
            LaunchError: The browser could not be started or the id is taken
        """
        if session_id in self.sessions or session_id in self._launching:
            raise LaunchError(f"Session {session_id} is already active")

        self._launching.add(session_id)
        try:
            return await self._launch_session(session_id, launch_options)
        finally:
            self._launching.discard(session_id)

    async def _launch_session(
        self, session_id: str, launch_options: Optional[Dict[str, Any]]
    ) -> BrowserSession:
        options = {**self.launch_defaults, **(launch_options or {})}
        user_agent = await self._select_user_agent()
        proxy = await self._select_proxy()
        if proxy:
            options["proxy"] = proxy

        log_session_event(
            self.logger,
            "launching",
            session_id,
            headless=options.get("headless"),
            proxy=proxy.get("server") if proxy else None,
        )

        browser = None
        try:
            browser = await self.launcher.launch(options)
            context = await browser.new_context(
                viewport=self.viewport, user_agent=user_agent
            )
            page = await context.new_page()
        except Exception as error:
            self.session_stats["launch_failures"] += 1
            log_error(self.logger, error, session_id=session_id, action="launch")
            if browser is not None:
                await self._close_quietly(session_id, "browser", browser.close)
            raise LaunchError(f"Browser launch failed: {error}") from error

        session = BrowserSession(
            session_id=session_id,
            browser=browser,
            context=context,
            page=page,
            created_at=self.clock(),
            user_agent=user_agent,
            proxy=proxy,
        )
        self.sessions[session_id] = session
        self.session_stats["sessions_created"] += 1

        log_session_event(self.logger, "launched", session_id, user_agent=user_agent)
        return session

    async def release(self, session_id: str) -> bool:
        """
        Close page, context and browser and drop the registration.

        Close failures are logged and swallowed.

        Returns:
            Whether a session was registered under ``session_id``
        """
        session = self.sessions.pop(session_id, None)
        if session is None:
            log_session_event(self.logger, "close_skipped", session_id, reason="not_found")
            return False

        page, context, browser = session.page, session.context, session.browser
        if page is not None and not self._page_closed(session_id, page):
            await self._close_quietly(session_id, "page", page.close)
        if context is not None:
            await self._close_quietly(session_id, "context", context.close)
        if browser is not None and self._browser_connected(session_id, browser):
            await self._close_quietly(session_id, "browser", browser.close)

        session.status = SessionStatus.TERMINATED
        self.session_stats["sessions_terminated"] += 1

        log_session_event(
            self.logger,
            "closed",
            session_id,
            lifetime_seconds=round(self.clock() - session.created_at, 3),
        )
        return True

    @asynccontextmanager
    async def session(
        self, session_id: str, launch_options: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[BrowserSession]:
        """Acquire a session for the duration of a block, releasing it on exit"""
        session = await self.acquire(session_id, launch_options)
        try:
            yield session
        finally:
            await self.release(session_id)

    def get_session(self, session_id: str) -> Optional[BrowserSession]:
        return self.sessions.get(session_id)

    def is_valid(self, session_id: str) -> bool:
        """Registered, handles alive, and younger than the session timeout"""
        session = self.sessions.get(session_id)
        if session is None:
            return False
        try:
            alive = session.is_alive()
        except Exception as error:
            log_error(self.logger, error, session_id=session_id, action="liveness_check")
            return False
        return alive and not self._is_expired(session)

    async def cleanup_expired(self) -> int:
        """
        Release every session older than the session timeout.

        Returns:
            Number of sessions released
        """
        expired = [
            session_id
            for session_id, session in list(self.sessions.items())
            if self._is_expired(session)
        ]

        for session_id in expired:
            try:
                await self.release(session_id)
            except Exception as error:
                log_error(self.logger, error, session_id=session_id, action="cleanup")

        self.session_stats["sessions_expired"] += len(expired)
        self.logger.info(
            "Expired session cleanup completed",
            cleaned=len(expired),
            remaining_sessions=len(self.sessions),
        )
        return len(expired)

    async def release_all(self) -> int:
        session_ids = list(self.sessions.keys())
        results = await asyncio.gather(
            *(self.release(session_id) for session_id in session_ids),
            return_exceptions=True,
        )
        self.logger.info("All sessions closed", count=len(session_ids))
        return sum(1 for result in results if result is True)

    async def load_cookies(self, session_id: str, session: BrowserSession) -> bool:
        """
        Apply persisted cookies for ``session_id`` to the session.

        Returns:
            Whether any cookies were loaded
        """
        try:
            document = await self.store.read(self.cookie_path, default=None)
            if document is None:
                log_session_event(self.logger, "cookies_not_found", session_id)
                return False

            cookies = document.get(session_id) if isinstance(document, dict) else None
            if not cookies:
                log_session_event(self.logger, "cookies_empty", session_id)
                return False

            await session.context.add_cookies(cookies)
            log_session_event(self.logger, "cookies_loaded", session_id, count=len(cookies))
            return True

        except Exception as error:
            log_error(self.logger, error, session_id=session_id, action="load_cookies")
            return False

    async def save_cookies(self, session_id: str, session: BrowserSession) -> bool:
        """
        Persist the session's current cookies under ``session_id``.

        Returns:
            Whether the cookie document was written
        """
        try:
            cookies = await session.context.cookies()

            def merge(document: Any) -> Dict[str, Any]:
                document = document if isinstance(document, dict) else {}
                document[session_id] = cookies
                return document

            await self.store.update(self.cookie_path, {}, merge)
            log_session_event(self.logger, "cookies_saved", session_id, count=len(cookies))
            return True

        except Exception as error:
            log_error(self.logger, error, session_id=session_id, action="save_cookies")
            return False

    def get_stats(self) -> Dict[str, Any]:
        """
        Get session manager statistics.

        Returns:
            Session counts and lifetime counters
        """
        active = sum(1 for session_id in self.sessions if self.is_valid(session_id))
        return {
            "total_sessions": len(self.sessions),
            "active_sessions": active,
            "expired_sessions": len(self.sessions) - active,
            "statistics": self.session_stats.copy(),
        }

    # ========================================================================
    # PRIVATE METHODS
    # ========================================================================

    def _is_expired(self, session: BrowserSession) -> bool:
        return self.clock() - session.created_at >= self.session_timeout

    async def _select_user_agent(self) -> str:
        try:
            user_agents = await self.store.read(self.user_agent_path, default=[])
        except Exception as error:
            log_error(self.logger, error, action="load_user_agents")
            return DEFAULT_USER_AGENT

        user_agents = [ua for ua in user_agents or [] if isinstance(ua, str) and ua]
        if not user_agents:
            return DEFAULT_USER_AGENT
        return self.rng.choice(user_agents)

    async def _select_proxy(self) -> Optional[Dict[str, str]]:
        try:
            proxies: List[Any] = await self.store.read(self.proxy_path, default=[])
        except Exception as error:
            log_error(self.logger, error, action="load_proxies")
            return None

        if not proxies:
            return None
        if not isinstance(proxies, list):
            self.logger.warning(
                "Proxy document is not a list", proxy_path=str(self.proxy_path)
            )
            return None
        return self._normalize_proxy(self.rng.choice(proxies))

    @staticmethod
    def _normalize_proxy(descriptor: Any) -> Optional[Dict[str, str]]:
        if isinstance(descriptor, str) and descriptor:
            return {"server": descriptor}
        if isinstance(descriptor, dict) and descriptor.get("server"):
            return {
                key: str(descriptor[key])
                for key in ("server", "username", "password", "bypass")
                if descriptor.get(key)
            }
        return None

    def _page_closed(self, session_id: str, page: Any) -> bool:
        try:
            return page.is_closed()
        except Exception as error:
            log_error(self.logger, error, session_id=session_id, action="page_state")
            return False

    def _browser_connected(self, session_id: str, browser: Any) -> bool:
        try:
            return browser.is_connected()
        except Exception as error:
            log_error(self.logger, error, session_id=session_id, action="browser_state")
            return True

    async def _close_quietly(self, session_id: str, handle: str, close: Callable) -> None:
        try:
            await close()
        except Exception as error:
            self.session_stats["close_errors"] += 1
            self.logger.warning(
                "Session handle close failed",
                session_id=session_id,
                handle=handle,
                error=str(error),
            )


__all__ = [
    "SessionManager",
    "BrowserSession",
    "SessionStatus",
    "PlaywrightLauncher",
    "DEFAULT_USER_AGENT",
]
