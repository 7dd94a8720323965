"""
Tests for environment-driven settings.
"""
import pytest
from pydantic import ValidationError

from bitnovo_pay.config import load_settings, mask_device_id


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "WEBHOOK_ENABLED", "WEBHOOK_PORT", "WEBHOOK_PATH", "WEBHOOK_PUBLIC_URL",
        "TUNNEL_PROVIDER", "LOG_LEVEL", "BITNOVO_DEVICE_SECRET", "BITNOVO_DEVICE_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:

    def test_defaults(self, clean_env):
        settings = load_settings(_env_file=None)
        assert settings.webhook_enabled is False
        assert settings.webhook_port == 3000
        assert settings.webhook_path == "/webhook/bitnovo"
        assert settings.webhook_max_events == 1000
        assert settings.webhook_event_ttl_seconds == 3600
        assert settings.tunnel_enabled is True
        assert settings.tunnel_provider is None
        assert settings.tunnel_health_check_interval_seconds == 60
        assert settings.tunnel_reconnect_backoff_seconds == 5

    def test_reads_environment(self, clean_env):
        clean_env.setenv("WEBHOOK_ENABLED", "true")
        clean_env.setenv("WEBHOOK_PORT", "8080")
        clean_env.setenv("TUNNEL_PROVIDER", "ZROK")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = load_settings(_env_file=None)

        assert settings.webhook_enabled is True
        assert settings.webhook_port == 8080
        assert settings.tunnel_provider == "zrok"
        assert settings.log_level == "DEBUG"

    def test_empty_provider_means_auto(self, clean_env):
        clean_env.setenv("TUNNEL_PROVIDER", "")
        assert load_settings(_env_file=None).tunnel_provider is None

    @pytest.mark.parametrize("port", [80, 1023, 65536])
    def test_port_range(self, clean_env, port):
        with pytest.raises(ValidationError):
            load_settings(_env_file=None, webhook_port=port)

    def test_unknown_provider(self, clean_env):
        with pytest.raises(ValidationError):
            load_settings(_env_file=None, tunnel_provider="cloudflare")

    def test_relative_path_rejected(self, clean_env):
        with pytest.raises(ValidationError):
            load_settings(_env_file=None, webhook_path="webhook")

    def test_public_url_must_be_http(self, clean_env):
        with pytest.raises(ValidationError):
            load_settings(_env_file=None, webhook_public_url="ftp://example.com")
        settings = load_settings(_env_file=None, webhook_public_url="https://example.com/")
        assert settings.webhook_public_url == "https://example.com"


class TestMaskedSummary:

    def test_secrets_not_exposed(self, clean_env):
        settings = load_settings(
            _env_file=None,
            bitnovo_device_id="abcd1234efgh5678",
            bitnovo_device_secret="super-secret",
        )
        summary = settings.masked_summary()

        assert summary["device_id"] == "abcd****5678"
        assert summary["has_device_secret"] is True
        assert "super-secret" not in str(summary)

    def test_mask_short_ids(self):
        assert mask_device_id(None) == "****"
        assert mask_device_id("short") == "****"
