"""
창고 정책 및 시스템 조립 테스트
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from almacen.config_loader import ConfigLoader, LedgerConfig
from almacen.ledger.inventory_ledger import MemoryLedger
from almacen.orchestrator.site_policy import SitePolicy
from almacen.system import create_ledger, create_system

from conftest import make_mqtt_client

SETTINGS_PATH = Path(__file__).parent.parent / "config" / "settings.yaml"


class TestSitePolicy:

    def test_only_automated_site_is_real(self):
        policy = SitePolicy("Vera")
        assert policy.should_dispatch_real("Vera")
        assert not policy.is_simulated("Vera")
        assert policy.is_simulated("Almeria")
        assert policy.is_simulated("vera")

    def test_automated_site_is_configurable(self):
        policy = SitePolicy("Almeria")
        assert policy.should_dispatch_real("Almeria")
        assert policy.is_simulated("Vera")


class TestCreateLedger:

    def test_memory_backend(self):
        assert isinstance(create_ledger(LedgerConfig("memory", "", 1)), MemoryLedger)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_ledger(LedgerConfig("sqlite", "", 1))


class TestCreateSystem:

    @pytest.fixture
    def config(self):
        return ConfigLoader(str(SETTINGS_PATH)).load()

    def test_components_are_wired(self, config):
        ledger = MemoryLedger()
        client = make_mqtt_client()

        system = create_system(config, ledger=ledger, mqtt_client=client)

        assert system.coordinator.ledger is ledger
        assert system.coordinator.gateway is system.gateway
        assert system.gateway.client is client
        assert system.gateway._event_handler == system.coordinator.on_device_event

    def test_start_and_shutdown(self, config):
        ledger = MagicMock()
        client = make_mqtt_client()
        system = create_system(config, ledger=ledger, mqtt_client=client)

        system.start()
        system.shutdown()

        client.connect_async.assert_called_once_with(config.mqtt.broker, config.mqtt.port, 60)
        client.loop_start.assert_called_once()
        client.loop_stop.assert_called_once()
        client.disconnect.assert_called_once()
        ledger.close.assert_called_once()
