from unittest.mock import AsyncMock, patch

import httpx
import pytest

from creatorhub.config import Settings, get_settings, settings as _settings
from creatorhub.exceptions import ConfigurationError, ExternalServiceError
from creatorhub.llm.providers import (
    EchoProvider, N8nChatProvider, N8nImageProvider, get_chat_provider, get_image_provider,
)


class TestSettings:

    def test_defaults(self, monkeypatch):
        for var in ("CHAT_TIMEOUT_SECONDS", "IMAGE_TIMEOUT_SECONDS", "TRIAL_MONTHLY_CREDITS", "THRIVECART_SECRET"):
            monkeypatch.delenv(var, raising=False)

        cfg = Settings(_env_file=None)

        assert cfg.chat_timeout_seconds == 30
        assert cfg.image_timeout_seconds == 180
        assert cfg.trial_monthly_credits == 10000
        assert cfg.vdocipher_otp_ttl == 300
        assert cfg.auto_provision_accounts is True
        assert cfg.chat_billing_enabled is False
        assert cfg.thrivecart_secret is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("THRIVECART_SECRET", "tc-secret")
        monkeypatch.setenv("ADMIN_EMAILS", '["ops@example.com"]')
        monkeypatch.setenv("CHAT_BILLING_ENABLED", "true")
        monkeypatch.setenv("N8N_CHAT_WEBHOOK_URL", "https://n8n.example.com/webhook/chat")

        cfg = Settings(_env_file=None)

        assert cfg.thrivecart_secret == "tc-secret"
        assert cfg.admin_emails == ["ops@example.com"]
        assert cfg.chat_billing_enabled is True
        assert cfg.n8n_chat_webhook_url == "https://n8n.example.com/webhook/chat"

    def test_settings_singleton_behavior(self):
        assert get_settings() is get_settings()
        assert get_settings() is _settings


class TestProviders:

    def test_echo_when_chat_webhook_missing(self):
        assert isinstance(get_chat_provider(), EchoProvider)

    def test_n8n_when_chat_webhook_configured(self, monkeypatch):
        monkeypatch.setattr(_settings, "n8n_chat_webhook_url", "https://n8n.example.com/webhook/chat")

        provider = get_chat_provider()

        assert isinstance(provider, N8nChatProvider)
        assert provider.timeout == 30

    @pytest.mark.asyncio
    async def test_image_provider_without_url(self):
        provider = get_image_provider()

        assert isinstance(provider, N8nImageProvider)
        with pytest.raises(ConfigurationError):
            await provider.generate({"message": "cat"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,expected", [
        ({"reply": "hi"}, "hi"),
        ([{"output": "from list"}], "from list"),
        ({"text": "plain"}, "plain"),
    ])
    async def test_chat_reply_shapes(self, body, expected):
        provider = N8nChatProvider("https://n8n.example.com/webhook/chat", 5)

        with patch("creatorhub.llm.providers._post_json", return_value=body):
            assert await provider.complete({"message": "x"}) == expected

    @pytest.mark.asyncio
    async def test_chat_reply_missing(self):
        provider = N8nChatProvider("https://n8n.example.com/webhook/chat", 5)

        with patch("creatorhub.llm.providers._post_json", return_value={"status": "ok"}):
            with pytest.raises(ExternalServiceError):
                await provider.complete({"message": "x"})

    @pytest.mark.asyncio
    async def test_timeout_becomes_external_error(self):
        provider = N8nChatProvider("https://n8n.example.com/webhook/chat", 5)

        with patch("creatorhub.llm.providers.httpx.AsyncClient") as client_cls:
            http = AsyncMock()
            http.post.side_effect = httpx.ReadTimeout("slow")
            client_cls.return_value.__aenter__.return_value = http
            client_cls.return_value.__aexit__.return_value = False
            with pytest.raises(ExternalServiceError) as exc_info:
                await provider.complete({"message": "x"})

        assert "timed out" in exc_info.value.message


class TestOps:

    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}
        assert client.get("/ops/health").json()["status"] == "healthy"

    def test_request_id_header(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert client.get("/healthz").headers["X-Request-ID"]

    def test_readyz_tolerates_missing_redis(self, client):
        with patch("creatorhub.routers.observability.get_redis", side_effect=RuntimeError("redis down")):
            response = client.get("/ops/readyz")

        assert response.status_code == 200
        body = response.json()
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["redis"]["status"] == "degraded"

    def test_livez(self, client):
        with patch("creatorhub.routers.observability.psutil") as ps:
            ps.virtual_memory.return_value.percent = 40.0
            ps.disk_usage.return_value.used = 40
            ps.disk_usage.return_value.total = 100
            response = client.get("/ops/livez")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_livez_fails_on_full_disk(self, client):
        with patch("creatorhub.routers.observability.psutil") as ps:
            ps.virtual_memory.return_value.percent = 40.0
            ps.disk_usage.return_value.used = 99
            ps.disk_usage.return_value.total = 100
            response = client.get("/ops/livez")

        assert response.status_code == 503

    def test_metrics(self, client, make_user):
        make_user(tier="tier1")

        response = client.get("/ops/metrics")

        assert response.status_code == 200
        assert "creatorhub_accounts_total 1" in response.text
        assert "creatorhub_paid_accounts 1" in response.text
        assert "creatorhub_coupon_redemptions_total 0" in response.text
