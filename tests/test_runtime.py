"""
Tests for runtime composition: job ownership and re-initialization.
"""
import pytest

from bitnovo_pay.runtime import Runtime
from bitnovo_pay.server import WebhookServer


@pytest.fixture
def disabled_settings(settings):
    return settings.model_copy(update={"webhook_enabled": False})


class TestRuntime:

    @pytest.mark.asyncio
    async def test_initialize_registers_cleanup_jobs(self, disabled_settings):
        runtime = Runtime(disabled_settings)
        await runtime.initialize()
        try:
            assert runtime.initialized
            assert runtime.scheduler.running
            assert len(runtime.scheduler.get_job_ids()) == 2
            assert runtime.event_store.cleanup_task_running
            assert runtime.qr_cache.cleanup_task_running
            assert runtime.webhook_server is None
        finally:
            await runtime.shutdown()

    @pytest.mark.asyncio
    async def test_reinitialize_cancels_previous_jobs(self, disabled_settings):
        runtime = Runtime(disabled_settings)
        await runtime.initialize()
        old_scheduler = runtime.scheduler
        old_store = runtime.event_store

        await runtime.initialize()
        try:
            assert not old_scheduler.running
            assert not old_store.cleanup_task_running
            assert runtime.event_store is not old_store
            assert old_scheduler.get_job_ids() == []
            assert len(runtime.scheduler.get_job_ids()) == 2
        finally:
            await runtime.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_clears_state(self, disabled_settings):
        runtime = Runtime(disabled_settings)
        await runtime.initialize()
        runtime.nonce_cache.add("n1")
        scheduler = runtime.scheduler

        await runtime.shutdown()

        assert not runtime.initialized
        assert not scheduler.running
        assert runtime.nonce_cache.size() == 0
        assert len(runtime.event_store) == 0

    @pytest.mark.asyncio
    async def test_settings_flow_into_components(self, settings):
        settings = settings.model_copy(
            update={"webhook_max_events": 42, "webhook_event_ttl_ms": 120_000}
        )
        runtime = Runtime(settings)
        await runtime.initialize(start_server=False)
        try:
            config = runtime.event_store.get_config()
            assert config["maxEntries"] == 42
            assert config["ttlMs"] == 120_000
            assert runtime.webhook_server is not None
            assert not runtime.webhook_server.is_running()
            assert runtime.handler.get_stats()["hasDeviceSecret"] is True
        finally:
            await runtime.shutdown()

    @pytest.mark.asyncio
    async def test_server_start_failure_is_tolerated(self, settings, monkeypatch):
        async def failing_start(self):
            raise RuntimeError("Webhook server exited during startup")

        monkeypatch.setattr(WebhookServer, "start", failing_start)
        runtime = Runtime(settings)

        await runtime.initialize()
        try:
            assert runtime.initialized
            assert runtime.scheduler.running
            assert runtime.webhook_server is not None
            assert not runtime.webhook_server.is_running()
        finally:
            await runtime.shutdown()

        assert not runtime.initialized
