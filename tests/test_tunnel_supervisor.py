"""
Tests for the tunnel session state machine: connect, reconnect backoff,
retry exhaustion and health-triggered reconnection.
"""
import asyncio

import pytest

from bitnovo_pay.exceptions import TunnelConnectError
from bitnovo_pay.models.tunnel import TunnelConfig, TunnelProviderName, TunnelStatus
from bitnovo_pay.services.scheduler import SweepScheduler
from bitnovo_pay.tunnel.supervisor import TunnelSupervisor

from conftest import FakeTunnelProvider


class RecordingSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_config(**overrides) -> TunnelConfig:
    values = {
        "provider": TunnelProviderName.NGROK,
        "local_port": 3000,
        "reconnect_max_retries": 3,
        "reconnect_backoff_seconds": 5.0,
        "health_check_interval_seconds": 60.0,
    }
    values.update(overrides)
    return TunnelConfig(**values)


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_success(self):
        provider = FakeTunnelProvider()
        supervisor = TunnelSupervisor(provider, make_config())

        url = await supervisor.connect()

        info = supervisor.info
        assert url == "https://fake.tunnel.test"
        assert info.status == TunnelStatus.CONNECTED
        assert info.public_url == url
        assert info.connected_at is not None
        assert info.provider == TunnelProviderName.NGROK

    @pytest.mark.asyncio
    async def test_connect_failure_sets_error(self):
        provider = FakeTunnelProvider(connect_results=[TunnelConnectError("bad token")])
        supervisor = TunnelSupervisor(provider, make_config())

        with pytest.raises(TunnelConnectError):
            await supervisor.connect()

        assert supervisor.info.status == TunnelStatus.ERROR
        assert supervisor.info.last_error == "bad token"

    @pytest.mark.asyncio
    async def test_unexpected_provider_error_wrapped(self):
        provider = FakeTunnelProvider(connect_results=[RuntimeError("socket closed")])
        supervisor = TunnelSupervisor(provider, make_config())

        with pytest.raises(TunnelConnectError):
            await supervisor.connect()
        assert supervisor.info.status == TunnelStatus.ERROR

    @pytest.mark.asyncio
    async def test_info_is_a_copy(self):
        supervisor = TunnelSupervisor(FakeTunnelProvider(), make_config())
        await supervisor.connect()

        info = supervisor.info
        info.status = TunnelStatus.ERROR

        assert supervisor.info.status == TunnelStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_disconnect(self):
        provider = FakeTunnelProvider()
        supervisor = TunnelSupervisor(provider, make_config())
        await supervisor.connect()

        await supervisor.disconnect()

        assert provider.disconnect_calls == 1
        assert supervisor.info.status == TunnelStatus.DISCONNECTED
        assert supervisor.info.public_url is None


class TestBackoff:

    def test_doubles_and_caps(self):
        supervisor = TunnelSupervisor(FakeTunnelProvider(), make_config())
        delays = [supervisor.backoff_delay(n) for n in range(1, 7)]
        assert delays == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]

    def test_zero_base(self):
        supervisor = TunnelSupervisor(
            FakeTunnelProvider(), make_config(reconnect_backoff_seconds=0)
        )
        assert supervisor.backoff_delay(4) == 0


class TestReconnect:

    @pytest.mark.asyncio
    async def test_retries_exhausted_ends_in_error(self):
        failure = TunnelConnectError("still down")
        provider = FakeTunnelProvider(
            connect_results=["https://first.test", failure, failure, failure]
        )
        sleep = RecordingSleep()
        supervisor = TunnelSupervisor(provider, make_config(reconnect_max_retries=3), sleep=sleep)
        await supervisor.connect()

        await supervisor.reconnect()

        info = supervisor.info
        assert info.status == TunnelStatus.ERROR
        assert info.reconnect_attempts == 3
        assert info.last_error == "still down"
        assert provider.connect_calls == 4
        assert sleep.delays == [5.0, 10.0, 20.0]
        assert supervisor.is_reconnecting is False

    @pytest.mark.asyncio
    async def test_success_resets_attempts(self):
        provider = FakeTunnelProvider(
            connect_results=[
                "https://first.test",
                TunnelConnectError("blip"),
                "https://second.test",
            ]
        )
        sleep = RecordingSleep()
        supervisor = TunnelSupervisor(provider, make_config(reconnect_max_retries=5), sleep=sleep)
        await supervisor.connect()

        await supervisor.reconnect()

        info = supervisor.info
        assert info.status == TunnelStatus.CONNECTED
        assert info.public_url == "https://second.test"
        assert info.reconnect_attempts == 0
        assert info.last_error is None
        assert sleep.delays == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_zero_retries_fails_immediately(self):
        provider = FakeTunnelProvider()
        supervisor = TunnelSupervisor(
            provider, make_config(reconnect_max_retries=0), sleep=RecordingSleep()
        )
        await supervisor.connect()

        await supervisor.reconnect()

        assert supervisor.info.status == TunnelStatus.ERROR
        assert provider.connect_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_triggers_coalesce(self):
        release = asyncio.Event()

        async def blocking_sleep(seconds: float) -> None:
            await release.wait()

        provider = FakeTunnelProvider()
        supervisor = TunnelSupervisor(provider, make_config(), sleep=blocking_sleep)
        await supervisor.connect()

        first = supervisor.trigger_reconnect()
        await asyncio.sleep(0)
        assert supervisor.is_reconnecting
        assert supervisor.info.status == TunnelStatus.RECONNECTING

        second = supervisor.trigger_reconnect()
        await supervisor.reconnect()  # swallowed while the first is running

        assert second is first
        release.set()
        await supervisor.wait_for_reconnect()

        assert provider.connect_calls == 2
        assert supervisor.info.status == TunnelStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_cancels_reconnect(self):
        async def never(seconds: float) -> None:
            await asyncio.Event().wait()

        provider = FakeTunnelProvider()
        supervisor = TunnelSupervisor(provider, make_config(), sleep=never)
        await supervisor.connect()
        supervisor.trigger_reconnect()
        await asyncio.sleep(0)

        await supervisor.disconnect()

        assert supervisor.info.status == TunnelStatus.DISCONNECTED
        assert supervisor.is_reconnecting is False


class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_healthy_tunnel(self):
        provider = FakeTunnelProvider()
        supervisor = TunnelSupervisor(provider, make_config())
        await supervisor.connect()

        assert await supervisor.run_health_check() is True
        assert provider.health_calls == 1

    @pytest.mark.asyncio
    async def test_only_connected_tunnel_is_probed(self):
        provider = FakeTunnelProvider(healthy=False)
        supervisor = TunnelSupervisor(provider, make_config())

        assert await supervisor.run_health_check() is True
        assert provider.health_calls == 0

    @pytest.mark.asyncio
    async def test_failed_probe_triggers_reconnect(self):
        provider = FakeTunnelProvider(
            connect_results=["https://first.test", "https://second.test"],
            healthy=False,
        )
        supervisor = TunnelSupervisor(provider, make_config(), sleep=RecordingSleep())
        await supervisor.connect()

        assert await supervisor.run_health_check() is False
        await supervisor.wait_for_reconnect()

        info = supervisor.info
        assert info.status == TunnelStatus.CONNECTED
        assert info.public_url == "https://second.test"
        assert provider.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_health_job_lifecycle(self):
        scheduler = SweepScheduler()
        scheduler.start()
        try:
            supervisor = TunnelSupervisor(FakeTunnelProvider(), make_config(), scheduler=scheduler)
            await supervisor.connect()
            assert supervisor.info.health_check_enabled is True
            assert len(scheduler.get_job_ids()) == 1

            await supervisor.disconnect()
            assert supervisor.info.health_check_enabled is False
            assert scheduler.get_job_ids() == []
        finally:
            scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_no_scheduler_no_health_job(self):
        supervisor = TunnelSupervisor(FakeTunnelProvider(), make_config())
        await supervisor.connect()
        assert supervisor.info.health_check_enabled is False

    @pytest.mark.asyncio
    async def test_failure_after_disconnect_does_not_reconnect(self):
        release = asyncio.Event()

        class SlowUnhealthyProvider(FakeTunnelProvider):
            async def check_health(self) -> bool:
                self.health_calls += 1
                await release.wait()
                return False

        provider = SlowUnhealthyProvider()
        supervisor = TunnelSupervisor(provider, make_config(), sleep=RecordingSleep())
        await supervisor.connect()

        check = asyncio.create_task(supervisor.run_health_check())
        await asyncio.sleep(0)
        assert provider.health_calls == 1

        await supervisor.disconnect()
        release.set()
        assert await check is True
        await supervisor.wait_for_reconnect()

        assert supervisor.info.status == TunnelStatus.DISCONNECTED
        assert provider.connect_calls == 1
        assert supervisor.trigger_reconnect() is None

    @pytest.mark.asyncio
    async def test_connect_after_disconnect_rearms_reconnect(self):
        provider = FakeTunnelProvider(healthy=False)
        supervisor = TunnelSupervisor(provider, make_config(), sleep=RecordingSleep())
        await supervisor.connect()
        await supervisor.disconnect()

        await supervisor.connect()
        assert await supervisor.run_health_check() is False
        await supervisor.wait_for_reconnect()

        assert supervisor.info.status == TunnelStatus.CONNECTED
        assert provider.connect_calls == 3
