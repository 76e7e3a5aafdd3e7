"""
비상 정지 테스트
정지 지시 4종 발행, 시뮬레이션 창고, 부분 실패, 상태 초기화
"""

from unittest.mock import MagicMock

from almacen.controllers.device_gateway import PublishResult, PublishStatus
from almacen.controllers.topics import OutboundTopic
from almacen.orchestrator.emergency import EmergencyHandler
from almacen.orchestrator.state import OperationKind, OutcomeStatus

from conftest import real_publishes


STOP_DIRECTIVES = [
    ("PR2A1/acciones/conveyor_1", {"accion": "parada"}),
    ("PR2A1/acciones/conveyor_2", {"accion": "parada"}),
    ("PR2A1/acciones/paletizaje", {"accion": "parada", "modo": "paletizar"}),
    ("PR2A1/cobot/recogida", {"accion": "parada"}),
]


class TestEmergencyHandler:

    def test_real_site_publishes_four_directives(self, gateway, mqtt_client, site_policy):
        report = EmergencyHandler(gateway, site_policy).stop_equipment("Vera")

        assert real_publishes(mqtt_client) == STOP_DIRECTIVES
        assert report.simulated is False
        assert len(report.results) == 4
        assert report.failed == []

    def test_palletizing_mode_is_configurable(self, gateway, mqtt_client, site_policy):
        EmergencyHandler(gateway, site_policy, "despaletizar").stop_equipment("Vera")

        assert real_publishes(mqtt_client)[2][1] == {"accion": "parada", "modo": "despaletizar"}

    def test_simulated_site_sends_nothing(self, gateway, mqtt_client, site_policy):
        report = EmergencyHandler(gateway, site_policy).stop_equipment("Almeria")

        mqtt_client.publish.assert_not_called()
        assert report.simulated is True
        assert all(r.status is PublishStatus.SIMULATED for r in report.results)

    def test_one_failure_does_not_stop_the_rest(self, site_policy):
        gateway = MagicMock()
        gateway.publish.side_effect = [
            PublishResult(PublishStatus.SENT, "PR2A1/acciones/conveyor_1", "{}"),
            PublishResult(PublishStatus.FAILED, "PR2A1/acciones/conveyor_2", "{}"),
            RuntimeError("socket closed"),
            PublishResult(PublishStatus.SENT, "PR2A1/cobot/recogida", "{}"),
        ]

        report = EmergencyHandler(gateway, site_policy).stop_equipment("Vera")

        assert gateway.publish.call_count == 4
        assert gateway.publish.call_args_list[3].args[0] is OutboundTopic.COBOT_PICKUP
        assert len(report.results) == 3
        assert [r.topic for r in report.failed] == ["PR2A1/acciones/conveyor_2"]


class TestCoordinatorEmergencyStop:

    def test_clears_active_operation(self, coordinator):
        coordinator.start_entrance("42")

        coordinator.emergency_stop()

        state = coordinator.status()
        assert state.emergency_stop is True
        assert state.current_operation is None
        assert state.pending_boxes == 0
        assert state.last_outcome.status is OutcomeStatus.ABORTED

    def test_stops_equipment_of_active_site(self, coordinator, mqtt_client):
        coordinator.start_exit(OperationKind.SALIDA_CENTRO, "70")

        report = coordinator.emergency_stop()

        assert report.site == "Almeria"
        assert report.simulated is True
        mqtt_client.publish.assert_not_called()

    def test_without_operation_uses_default_site(self, coordinator, mqtt_client):
        report = coordinator.emergency_stop()

        assert report.site == "Vera"
        assert real_publishes(mqtt_client) == STOP_DIRECTIVES

    def test_is_idempotent(self, coordinator, mqtt_client):
        coordinator.start_entrance("42")
        coordinator.emergency_stop()
        first = coordinator.status()
        coordinator.emergency_stop()
        second = coordinator.status()

        assert second.emergency_stop is True
        assert second.current_operation is None
        assert second.pending_boxes == 0
        assert second.last_outcome == first.last_outcome
        # 입고 지시 1건 + 정지 지시 4건 × 2회
        assert mqtt_client.publish.call_count == 9

    def test_emergency_topic_triggers_stop(self, coordinator, gateway, mqtt_client):
        coordinator.start_entrance("42")
        mqtt_client.publish.reset_mock()

        gateway.handle_message("PR2A1/avisos/parada_emergencia", b"STOP")

        assert coordinator.status().emergency_stop is True
        assert real_publishes(mqtt_client) == STOP_DIRECTIVES

    def test_stop_proceeds_when_broker_is_down(self, coordinator, gateway, mqtt_client):
        coordinator.start_entrance("42")
        gateway._on_disconnect(gateway.client, None, {}, None, None)

        report = coordinator.emergency_stop()

        assert len(report.failed) == 4
        state = coordinator.status()
        assert state.emergency_stop is True
        assert state.current_operation is None

    def test_palletizing_stop_carries_operation_mode(self, coordinator, mqtt_client):
        coordinator.start_entrance("42", "despaletizar")
        mqtt_client.publish.reset_mock()

        coordinator.emergency_stop()

        assert real_publishes(mqtt_client)[2] == (
            "PR2A1/acciones/paletizaje", {"accion": "parada", "modo": "despaletizar"}
        )
