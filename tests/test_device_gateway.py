"""
Device Gateway 테스트
paho 클라이언트는 MagicMock - 콜백을 직접 호출하여 연결/수신을 흉내냄
"""

import json
from unittest.mock import MagicMock

from almacen.controllers.device_gateway import DeviceGateway, PublishStatus
from almacen.controllers.topics import (
    OutboundTopic, AGVStatusEvent, ConveyorStatusEvent, EmergencyStopEvent,
)
from almacen.orchestrator.state import AGVLoad

from conftest import make_mqtt_config, make_mqtt_client, connect


def make_gateway(site_policy, client=None):
    return DeviceGateway(make_mqtt_config(), site_policy, client or make_mqtt_client())


class TestConnectivity:

    def test_starts_disconnected(self, site_policy):
        assert make_gateway(site_policy).is_connected is False

    def test_connect_subscribes_all_topics(self, site_policy):
        client = make_mqtt_client()
        gw = make_gateway(site_policy, client)
        connect(gw)

        assert gw.is_connected is True
        subscriptions = client.subscribe.call_args.args[0]
        assert len(subscriptions) == 7
        assert ("PR2A1/avisos/parada_emergencia", 1) in subscriptions

    def test_failed_connect_keeps_flag_false(self, site_policy):
        client = make_mqtt_client()
        gw = make_gateway(site_policy, client)
        gw._on_connect(client, None, {}, MagicMock(is_failure=True), None)

        assert gw.is_connected is False
        client.subscribe.assert_not_called()

    def test_disconnect_clears_flag(self, gateway):
        gateway._on_disconnect(gateway.client, None, {}, MagicMock(), None)
        assert gateway.is_connected is False

    def test_start_connects_async_and_loops(self, site_policy):
        client = make_mqtt_client()
        make_gateway(site_policy, client).start()
        client.connect_async.assert_called_once_with("localhost", 1883, 60)
        client.loop_start.assert_called_once()


class TestPublish:

    def test_real_site_transmits_with_qos1(self, gateway, mqtt_client):
        result = gateway.publish(OutboundTopic.DIRECTIVE, {"accion": "entrada"}, site="Vera")

        assert result.status is PublishStatus.SENT
        assert result.ok and not result.simulated
        topic, packet = mqtt_client.publish.call_args.args
        assert topic == "PR2A1/acciones/directriz"
        assert json.loads(packet) == {"accion": "entrada"}
        assert mqtt_client.publish.call_args.kwargs["qos"] == 1

    def test_simulated_site_does_not_transmit(self, gateway, mqtt_client):
        result = gateway.publish(OutboundTopic.DIRECTIVE, {"accion": "entrada"}, site="Almeria")

        assert result.status is PublishStatus.SIMULATED
        assert result.ok
        mqtt_client.publish.assert_not_called()

    def test_disconnected_publish_fails_without_transmitting(self, site_policy):
        client = make_mqtt_client()
        gw = make_gateway(site_policy, client)

        result = gw.publish(OutboundTopic.CONVEYOR_1, {"accion": "parada"}, site="Vera")

        assert result.status is PublishStatus.FAILED
        assert not result.ok
        client.publish.assert_not_called()

    def test_transport_error_code_is_failure(self, site_policy):
        client = make_mqtt_client(rc=4)
        gw = make_gateway(site_policy, client)
        connect(gw)

        assert gw.publish(OutboundTopic.CONVEYOR_2, {"accion": "parada"}).status is PublishStatus.FAILED


class TestHandleMessage:

    def test_decoded_event_is_forwarded(self, gateway):
        handler = MagicMock()
        gateway.set_event_handler(handler)

        gateway.handle_message("PR2A1/status/agv", b'{"ubicacion": 2, "estado": "drop"}')

        handler.assert_called_once_with(AGVStatusEvent(location=2, state=AGVLoad.DROP))

    def test_on_message_callback_routes_to_handler(self, gateway):
        handler = MagicMock()
        gateway.set_event_handler(handler)
        message = MagicMock(topic="PR2A1/status/conveyor_1", payload=b"Parado")

        gateway._on_message(gateway.client, None, message)

        handler.assert_called_once_with(ConveyorStatusEvent(conveyor=1, status="Parado"))

    def test_invalid_payload_is_dropped(self, gateway):
        handler = MagicMock()
        gateway.set_event_handler(handler)

        assert gateway.handle_message("PR2A1/status/infrarrojos_1", b"abc") is None
        handler.assert_not_called()

    def test_unknown_topic_is_ignored(self, gateway):
        handler = MagicMock()
        gateway.set_event_handler(handler)

        assert gateway.handle_message("PR2A1/status/otra_cosa", b"1") is None
        handler.assert_not_called()

    def test_handler_exception_does_not_escape(self, gateway):
        gateway.set_event_handler(MagicMock(side_effect=RuntimeError("boom")))

        event = gateway.handle_message("PR2A1/avisos/parada_emergencia", b"")

        assert isinstance(event, EmergencyStopEvent)
