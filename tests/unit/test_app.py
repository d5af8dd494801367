"""Application assembly and settings tests"""
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from src.app import create_app
from src.core.config import Settings
from src.core.logging import mask_proxy, sanitize_for_log


class TestCreateApp:

    def test_components_share_one_store(self, fake_cache):
        app = create_app(cache=fake_cache)

        assert app.rate_limiter.cache is fake_cache
        assert app.proxy_manager.cache is fake_cache
        assert app.monitor.cache is fake_cache
        assert app.dispatcher.orchestrator is app.orchestrator
        assert app.orchestrator.monitor is app.monitor

    @pytest.mark.asyncio
    async def test_start_requeues_pending(self, fake_cache):
        app = create_app(cache=fake_cache)
        scheduler = MagicMock()
        scheduler.running = False
        app.dispatcher._scheduler = scheduler

        requeued = await app.start()

        assert requeued == 0
        scheduler.start.assert_called_once()

        scheduler.running = True
        await app.shutdown()
        scheduler.shutdown.assert_called_once()


class TestSettings:

    def test_lists_parsed(self):
        settings = Settings(proxy_list=" http://a:1 , ,http://b:2", scraper_backoff_schedule="10, 20")

        assert settings.proxies == ["http://a:1", "http://b:2"]
        assert settings.backoff_schedule == [10, 20]

    @pytest.mark.parametrize("field, value", [
        ("rate_limit_max_requests", 0),
        ("rate_limit_failure_penalty", 1.5),
        ("circuit_recovery_success_rate", 120),
        ("scraper_backoff_schedule", "30,abc"),
        ("scraper_job_timeout_s", 0),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestLogHelpers:

    def test_mask_proxy(self):
        assert mask_proxy("http://user:pw@10.0.0.1:8080") == "http://***@10.0.0.1:8080"
        assert mask_proxy("http://10.0.0.1:8080") == "http://10.0.0.1:8080"
        assert mask_proxy(None) == "direct"

    def test_sanitize_for_log(self):
        assert sanitize_for_log("a  b\nc") == "a b c"
        assert sanitize_for_log("x" * 20, max_length=5) == "xxxxx..."
        assert sanitize_for_log("") == "[empty]"
