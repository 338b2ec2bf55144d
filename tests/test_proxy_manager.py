"""Tests for ProxyManager lifecycle (background event loop thread)."""

import asyncio
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from core.config_manager import ConfigManager
from core.proxy_manager import ProxyManager

pytestmark = pytest.mark.integration


@pytest.fixture
def config(tmp_path: Path, monkeypatch) -> ConfigManager:
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("SUB_PROXY_HOST", raising=False)
    config = ConfigManager(tmp_path / "config.json")
    config.set("server.host", "127.0.0.1")
    config.set("server.port", 0)
    return config


class TestProxyManager:
    def test_start_and_stop(self, config: ConfigManager) -> None:
        manager = ProxyManager(config)

        assert manager.start()
        try:
            assert manager.get_status()["running"] is True
            assert manager.start() is False
        finally:
            manager.stop()

        assert manager.get_status()["running"] is False
        assert not manager.thread.is_alive()

    def test_hanging_cleanup_still_stops_loop(self, config: ConfigManager, caplog) -> None:
        """
        // Given: a running proxy whose server cleanup never finishes
        // When: stop() is called
        // Then: the error is logged, and the event loop and its thread still end
        """
        async def hang():
            await asyncio.sleep(30)

        manager = ProxyManager(config)
        manager.stop_timeout = 0.2
        assert manager.start()

        with patch.object(manager, "_stop_server", hang), caplog.at_level(logging.ERROR):
            manager.stop()

        assert "Error stopping proxy" in caplog.text
        assert manager.get_status()["running"] is False
        assert not manager.thread.is_alive()

    def test_busy_port_is_reported(self, config: ConfigManager) -> None:
        manager = ProxyManager(config)

        with patch("core.proxy_manager.check_port_availability", return_value=(False, "Port 0 is in use")), \
                patch("core.proxy_manager.get_process_using_port", return_value=None):
            assert manager.start() is False

        assert manager.last_error == "Port 0 is in use"
        assert manager.thread is None

    def test_status_proxy_base(self, config: ConfigManager) -> None:
        config.set("server.port", 7777)

        status = ProxyManager(config).get_status()

        assert status["proxy_base"] == "http://127.0.0.1:7777/proxy?u="
        assert status["running"] is False

    def test_stop_when_not_running(self, config: ConfigManager) -> None:
        ProxyManager(config).stop()
