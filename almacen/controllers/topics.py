"""
MQTT 토픽 정의 및 수신 페이로드 해석
토픽별 규칙: 상태 토픽은 원문 문자열, 적외선은 정수, AGV/QR은 JSON 객체
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from almacen.orchestrator.errors import PayloadDecodeError
from almacen.orchestrator.state import AGVLoad

QR_WRAPPER_KEY = "QR Code"


class InboundTopic(Enum):
    """구독 토픽 (prefix 제외)"""
    EMERGENCY_STOP = "avisos/parada_emergencia"
    CONVEYOR_1 = "status/conveyor_1"
    CONVEYOR_2 = "status/conveyor_2"
    INFRARED_1 = "status/infrarrojos_1"
    INFRARED_2 = "status/infrarrojos_2"
    AGV = "status/agv"
    QR_SCAN = "avisos/QR"


class OutboundTopic(Enum):
    """발행 토픽 (prefix 제외)"""
    CONVEYOR_1 = "acciones/conveyor_1"
    CONVEYOR_2 = "acciones/conveyor_2"
    PALLETIZING = "acciones/paletizaje"
    COBOT_PICKUP = "cobot/recogida"
    DIRECTIVE = "acciones/directriz"


class TopicNamer:
    """prefix를 붙여 실제 MQTT 토픽 문자열로 변환"""

    def __init__(self, prefix: str = "PR2A1"):
        self.prefix = prefix.rstrip("/")

    def full(self, topic: Union[InboundTopic, OutboundTopic]) -> str:
        return f"{self.prefix}/{topic.value}"

    def subscriptions(self):
        return [self.full(t) for t in InboundTopic]

    def parse(self, topic: str) -> Optional[InboundTopic]:
        """수신 토픽 문자열 -> InboundTopic (모르는 토픽이면 None)"""
        head = f"{self.prefix}/"
        if not topic.startswith(head):
            return None
        try:
            return InboundTopic(topic[len(head):])
        except ValueError:
            return None


# ── 수신 이벤트 ────────────────────────────────────────────────

@dataclass(frozen=True)
class EmergencyStopEvent:
    raw: str = ""


@dataclass(frozen=True)
class ConveyorStatusEvent:
    conveyor: int
    status: str


@dataclass(frozen=True)
class InfraredStatusEvent:
    sensor: int
    value: int


@dataclass(frozen=True)
class AGVStatusEvent:
    location: int
    state: AGVLoad


@dataclass(frozen=True)
class QRScanEvent:
    """QR 스캔 알림 - id 또는 lectura 중 하나는 반드시 존재"""
    record_id: Optional[str]
    reading_code: Optional[str]
    quantity: Optional[int]


DeviceEvent = Union[
    EmergencyStopEvent,
    ConveyorStatusEvent,
    InfraredStatusEvent,
    AGVStatusEvent,
    QRScanEvent,
]


def decode(topic: InboundTopic, payload: bytes) -> DeviceEvent:
    """
    토픽별 규칙으로 페이로드 해석

    Raises:
        PayloadDecodeError: 형식이 맞지 않는 페이로드
    """
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
    except UnicodeDecodeError as e:
        raise PayloadDecodeError(topic.value, f"UTF-8 아님: {e}")

    if topic is InboundTopic.EMERGENCY_STOP:
        # 메시지 존재 자체가 신호, 내용은 무시
        return EmergencyStopEvent(raw=text)

    if topic is InboundTopic.CONVEYOR_1:
        return ConveyorStatusEvent(conveyor=1, status=text)
    if topic is InboundTopic.CONVEYOR_2:
        return ConveyorStatusEvent(conveyor=2, status=text)

    if topic in (InboundTopic.INFRARED_1, InboundTopic.INFRARED_2):
        sensor = 1 if topic is InboundTopic.INFRARED_1 else 2
        return InfraredStatusEvent(sensor=sensor, value=_parse_int(topic, text.strip(), "적외선 값"))

    if topic is InboundTopic.AGV:
        return _decode_agv(topic, text)

    if topic is InboundTopic.QR_SCAN:
        return _decode_qr(topic, text)

    raise PayloadDecodeError(topic.value, "처리하지 않는 토픽")


def _parse_int(topic: InboundTopic, value, what: str) -> int:
    if isinstance(value, bool):
        raise PayloadDecodeError(topic.value, f"{what}이(가) 정수가 아님: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PayloadDecodeError(topic.value, f"{what}이(가) 정수가 아님: {value!r}")


def _load_object(topic: InboundTopic, text: str) -> dict:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadDecodeError(topic.value, f"JSON 파싱 오류: {e}")
    if not isinstance(data, dict):
        raise PayloadDecodeError(topic.value, "JSON 객체가 아님")
    return data


def _decode_agv(topic: InboundTopic, text: str) -> AGVStatusEvent:
    data = _load_object(topic, text)
    if "ubicacion" not in data:
        raise PayloadDecodeError(topic.value, "ubicacion 누락")
    location = _parse_int(topic, data["ubicacion"], "ubicacion")
    try:
        state = AGVLoad(data.get("estado", AGVLoad.DROP.value))
    except ValueError:
        raise PayloadDecodeError(topic.value, f"알 수 없는 estado: {data.get('estado')!r}")
    return AGVStatusEvent(location=location, state=state)


def _decode_qr(topic: InboundTopic, text: str) -> QRScanEvent:
    """
    두 가지 형식 허용:
        1. {"id": ..., "lectura": ..., "cantidad": ...}
        2. {"QR Code": "<1번 형식의 JSON 문자열>"}
    래퍼 키가 있으면 항상 그 내용만 사용
    """
    data = _load_object(topic, text)

    if QR_WRAPPER_KEY in data:
        inner = data[QR_WRAPPER_KEY]
        if isinstance(inner, str):
            data = _load_object(topic, inner)
        elif isinstance(inner, dict):
            data = inner
        else:
            raise PayloadDecodeError(topic.value, f"'{QR_WRAPPER_KEY}' 내용이 JSON 문자열이 아님")

    record_id = data.get("id")
    reading_code = data.get("lectura")
    if not record_id and not reading_code:
        raise PayloadDecodeError(topic.value, "id 또는 lectura 누락")

    quantity = data.get("cantidad")
    if quantity is not None and quantity != "":
        quantity = _parse_int(topic, quantity, "cantidad")
    else:
        quantity = None

    return QRScanEvent(
        record_id=str(record_id) if record_id else None,
        reading_code=str(reading_code) if reading_code else None,
        quantity=quantity,
    )
