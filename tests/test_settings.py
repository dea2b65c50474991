"""
Gateway settings tests.
"""

import logging

import pytest

from llm_gateway.config.settings import (
    DEFAULT_ENCRYPTION_SECRET,
    GatewaySettings,
    build_credential_services,
)
from llm_gateway.credentials.redaction import CREDENTIAL_LOGGERS, CredentialLoggingFilter
from llm_gateway.platform.errors import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("CREDENTIAL_ENCRYPTION_KEY", "APP_ENV", "TOKEN_REFRESH_MAX_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestGatewaySettings:

    def test_reads_environment(self, clean_env):
        clean_env.setenv("CREDENTIAL_ENCRYPTION_KEY", "test-operator-secret")
        clean_env.setenv("APP_ENV", "production")
        clean_env.setenv("TOKEN_REFRESH_MAX_ATTEMPTS", "5")

        settings = GatewaySettings.from_env()

        assert settings.encryption_secret == "test-operator-secret"
        assert settings.is_production is True
        assert settings.refresh_max_attempts == 5

    def test_defaults_outside_production_warn(self, clean_env, caplog):
        with caplog.at_level(logging.WARNING, logger="llm_gateway.config.settings"):
            settings = GatewaySettings.from_env()

        assert settings.encryption_secret == DEFAULT_ENCRYPTION_SECRET
        assert settings.app_env == "development"
        assert settings.refresh_max_attempts == 3
        assert "insecure default" in caplog.text

    def test_default_secret_refused_in_production(self, clean_env):
        clean_env.setenv("APP_ENV", "production")

        with pytest.raises(ConfigurationError) as exc_info:
            GatewaySettings.from_env()

        assert exc_info.value.code == "CONFIGURATION_ERROR"

    def test_blank_secret_counts_as_unset(self, clean_env):
        clean_env.setenv("CREDENTIAL_ENCRYPTION_KEY", "")
        clean_env.setenv("APP_ENV", "PRODUCTION")

        with pytest.raises(ConfigurationError):
            GatewaySettings.from_env()

    @pytest.mark.parametrize("value", ["zero", "0", "-1"])
    def test_bad_attempt_count(self, clean_env, value):
        clean_env.setenv("TOKEN_REFRESH_MAX_ATTEMPTS", value)

        with pytest.raises(ConfigurationError):
            GatewaySettings.from_env()


class TestBuildCredentialServices:

    @pytest.mark.asyncio
    async def test_services_share_store(self):
        settings = GatewaySettings(encryption_secret="test-operator-secret", refresh_max_attempts=2)

        services = build_credential_services(settings)

        assert services.pool.store is services.store
        assert services.refresh.store is services.store
        assert services.refresh.max_attempts == 2

        credential_id = await services.store.create("oauth", {"access_token": "test_access"})
        bundle = await services.pool.acquire("claude-sonnet-4")
        assert bundle.id == credential_id

    def test_installs_redaction_filter(self):
        build_credential_services(GatewaySettings(encryption_secret="test-operator-secret"))

        for name in CREDENTIAL_LOGGERS:
            assert any(isinstance(f, CredentialLoggingFilter) for f in logging.getLogger(name).filters)
