"""
Integration tests for ActionService wiring
"""
import random

import pytest

from action_orchestrator.config import load_config
from action_orchestrator.errors import ConfigurationError
from action_orchestrator.service import ActionService


@pytest.fixture
def service_config(tmp_path, form_profile, session_config):
    session_keys = ("cookie_path", "user_agent_path", "proxy_path", "screenshot_dir")
    return load_config(
        {
            "providers_path": str(tmp_path / "providers.json"),
            "providers": [form_profile],
            "session": {key: session_config[key] for key in session_keys},
            "browser": {"slow_mo": 0},
        },
        environ={},
    )


@pytest.fixture
def service(service_config, launcher, scheduler, clock, fake_sleep):
    return ActionService(
        service_config,
        launcher=launcher,
        scheduler=scheduler,
        clock=clock,
        rng=random.Random(1),
        sleep=fake_sleep,
    )


class TestConstruction:
    def test_components_built_once(self, service):
        assert service.registry.names() == ["alpha"]
        assert service.orchestrator.registry is service.registry
        assert service.orchestrator.retry_delay == 5
        assert service.session_manager.session_timeout == 3600
        assert service.session_manager.viewport == {"width": 1366, "height": 768}
        assert service.session_manager.launch_defaults["slow_mo"] == 0

    def test_invalid_profile_rejected(self, service_config, launcher):
        service_config["providers"] = [{"name": "broken", "kind": "form"}]

        with pytest.raises(ConfigurationError):
            ActionService(service_config, launcher=launcher)

    def test_duplicate_profile_names_rejected(self, service_config, form_profile, launcher):
        service_config["providers"].append(dict(form_profile))

        with pytest.raises(ValueError):
            ActionService(service_config, launcher=launcher)


@pytest.mark.asyncio
class TestServiceOperations:
    """End-to-end request handling against the fake browser"""

    async def test_submit_success(self, service, launcher, target):
        result = await service.submit(target, "views")

        assert result["success"] is True
        assert result["status"] == "completed"
        assert len(launcher.browsers) == 1

        status = service.get_task_status(result["task_id"])
        assert status["status"] == "completed"
        assert status["result"]["provider"] == "alpha"

        stats = service.get_stats()
        assert stats["tasks"]["completed"] == 1
        assert stats["providers"]["alpha"]["action_count"] == 1
        assert stats["sessions"]["total_sessions"] == 0
        assert "timestamp" in stats

    async def test_failed_attempt_retries_in_new_session(
        self, service, launcher, scheduler, playwright_timeout, target
    ):
        launcher.page_options = {"fail_on": {"click": playwright_timeout()}}

        first = await service.submit(target, "views")
        assert first["status"] == "retrying"

        launcher.page_options = {}
        await scheduler.advance(5)

        assert len(launcher.browsers) == 2
        status = service.get_task_status(first["task_id"])
        assert status["status"] == "completed"
        assert status["attempts"] == 1

    async def test_second_request_is_rate_limited(self, service, target):
        await service.submit(target, "views")

        result = await service.submit(target, "likes")

        assert result["success"] is False
        assert result["error"] == "no available providers"

    async def test_cancel_and_reset(self, service, launcher, playwright_timeout, target):
        launcher.page_options = {"fail_on": {"click": playwright_timeout()}}
        first = await service.submit(target, "views")

        assert await service.cancel(first["task_id"]) is True
        assert await service.cancel(first["task_id"]) is False

        service.registry.get("alpha").is_available = False
        service.reset_providers()
        assert service.registry.get("alpha").is_available is True

    async def test_start_and_shutdown(self, service, launcher, scheduler, playwright_timeout, target):
        await service.start()
        cleanup_task = service.cleanup_task
        await service.start()
        assert service.cleanup_task is cleanup_task

        launcher.page_options = {"fail_on": {"click": playwright_timeout()}}
        pending = await service.submit(target, "views")
        await service.session_manager.acquire("lingering")

        await service.shutdown()

        assert cleanup_task.cancelled() or cleanup_task.done()
        assert service.cleanup_task is None
        assert service.get_task_status(pending["task_id"])["status"] == "cancelled"
        assert scheduler.pending_count == 0
        assert service.session_manager.sessions == {}
        assert launcher.closed is True
