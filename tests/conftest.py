"""
공용 fixture
MQTT 클라이언트는 MagicMock으로 대체하여 실제 전송 기록만 확인
"""

import json
from unittest.mock import MagicMock

import pytest

from almacen.config_loader import MQTTConfig, WarehouseConfig
from almacen.controllers.device_gateway import DeviceGateway
from almacen.ledger.inventory_ledger import InventoryRecord, MemoryLedger
from almacen.orchestrator.coordinator import OperationCoordinator
from almacen.orchestrator.site_policy import SitePolicy


def make_mqtt_config(**overrides):
    values = dict(
        broker="localhost",
        port=1883,
        username="",
        password="",
        client_id="test_coordinator",
        keepalive=60,
        topic_prefix="PR2A1",
        qos=1,
        reconnect_min_delay=1,
        reconnect_max_delay=30,
    )
    values.update(overrides)
    return MQTTConfig(**values)


def make_warehouse_config(**overrides):
    values = dict(
        automated_site="Vera",
        default_site="Vera",
        slot_count=5,
        default_entrance_quantity=12,
        default_exit_quantity=10,
        palletizing_mode="paletizar",
        agv_arrival_timeout=0,
    )
    values.update(overrides)
    return WarehouseConfig(**values)


def make_mqtt_client(rc=0):
    """paho 클라이언트 대역 - publish는 rc를 가진 결과 반환"""
    client = MagicMock()
    client.publish.return_value = MagicMock(rc=rc)
    return client


def connect(gateway):
    """브로커 연결 성공 콜백 흉내"""
    gateway._on_connect(gateway.client, None, {}, MagicMock(is_failure=False), None)


def real_publishes(client):
    """실제로 전송된 (토픽, 페이로드 dict) 목록"""
    sent = []
    for c in client.publish.call_args_list:
        topic, packet = c.args[0], c.args[1]
        sent.append((topic, json.loads(packet)))
    return sent


@pytest.fixture
def mqtt_client():
    return make_mqtt_client()


@pytest.fixture
def site_policy():
    return SitePolicy("Vera")


@pytest.fixture
def gateway(mqtt_client, site_policy):
    gw = DeviceGateway(make_mqtt_config(), site_policy, mqtt_client)
    connect(gw)
    mqtt_client.subscribe.reset_mock()
    return gw


@pytest.fixture
def ledger():
    return MemoryLedger([
        InventoryRecord(id="42", reading_code="LEC-42", site="Vera", quantity=12),
        InventoryRecord(id="43", reading_code="LEC-43", site="Vera", quantity=None),
        InventoryRecord(id="50", reading_code="LEC-50", site="Almeria", quantity=8),
        InventoryRecord(id="60", reading_code="LEC-60", site="Vera", quantity=6, location=3),
        InventoryRecord(id="61", reading_code="LEC-61", site="Vera", quantity=None, location=4),
        InventoryRecord(id="70", reading_code="LEC-70", site="Almeria", quantity=9, location=2),
    ])


@pytest.fixture
def coordinator(ledger, gateway, site_policy):
    coord = OperationCoordinator(make_warehouse_config(), ledger, gateway, site_policy)
    yield coord
    coord.shutdown()
