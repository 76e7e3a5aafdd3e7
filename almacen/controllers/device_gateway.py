#!/usr/bin/env python3
"""
Device Gateway
MQTT 기반 설비(컨베이어, AGV, 적외선 센서, 팔레타이저, 코봇) 통신 모듈
"""

import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, Callable

import paho.mqtt.client as mqtt

from almacen.config_loader import MQTTConfig
from almacen.controllers.topics import (
    TopicNamer, OutboundTopic, DeviceEvent, decode,
)
from almacen.orchestrator.errors import PayloadDecodeError
from almacen.orchestrator.site_policy import SitePolicy


class PublishStatus(Enum):
    SENT = "sent"
    SIMULATED = "simulated"
    FAILED = "failed"


@dataclass(frozen=True)
class PublishResult:
    """발행 결과"""
    status: PublishStatus
    topic: str
    packet: str

    @property
    def ok(self) -> bool:
        return self.status is not PublishStatus.FAILED

    @property
    def simulated(self) -> bool:
        return self.status is PublishStatus.SIMULATED


class DeviceGateway:
    """MQTT 게이트웨이 - 고정 토픽 구독, 토픽별 디스패치, 지시 발행"""

    def __init__(self, config: MQTTConfig, site_policy: SitePolicy,
                 mqtt_client: Optional[mqtt.Client] = None):
        self.config = config
        self.site_policy = site_policy
        self.topics = TopicNamer(config.topic_prefix)
        self.logger = logging.getLogger(__name__)

        # 연결 상태 (모든 publish가 참조)
        self._connected = False
        self._state_lock = threading.Lock()

        self._event_handler: Optional[Callable[[DeviceEvent], None]] = None

        self.client = mqtt_client if mqtt_client is not None else self._create_client()
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_subscribe = self._on_subscribe
        self.client.on_message = self._on_message
        self.client.on_publish = self._on_publish

    def _create_client(self) -> mqtt.Client:
        """paho 클라이언트 생성 (자격 증명 및 재연결 지연 설정)"""
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or None)
        client.reconnect_delay_set(
            min_delay=self.config.reconnect_min_delay,
            max_delay=self.config.reconnect_max_delay,
        )
        return client

    # ── 수명 주기 ───────────────────────────────────────────────

    def set_event_handler(self, handler: Callable[[DeviceEvent], None]):
        """해석된 수신 이벤트를 받을 핸들러 등록 (코디네이터)"""
        self._event_handler = handler

    def start(self):
        """브로커 비동기 연결 및 네트워크 루프 시작"""
        self.logger.info(f"[MQTT] 브로커 연결 시작: {self.config.broker}:{self.config.port}")
        self.client.connect_async(self.config.broker, self.config.port, self.config.keepalive)
        self.client.loop_start()

    def stop(self):
        self.logger.info("[MQTT] 클라이언트 종료 중...")
        self.client.loop_stop()
        self.client.disconnect()
        self._set_connected(False)
        self.logger.info("[MQTT] 클라이언트 연결 해제 완료")

    @property
    def is_connected(self) -> bool:
        with self._state_lock:
            return self._connected

    def _set_connected(self, value: bool):
        with self._state_lock:
            self._connected = value

    # ── paho 콜백 ───────────────────────────────────────────────

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self._set_connected(False)
            self.logger.error(f"[MQTT] 브로커 연결 실패: {reason_code}")
            return

        self._set_connected(True)
        self.logger.info(f"[MQTT] ✅ 브로커 연결 성공: {self.config.broker}")

        # 재연결 시에도 항상 다시 구독
        subscriptions = [(topic, self.config.qos) for topic in self.topics.subscriptions()]
        client.subscribe(subscriptions)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._set_connected(False)
        self.logger.warning(f"[MQTT] ⚠️ 브로커 연결 끊김 ({reason_code}) - 자동 재연결 대기")

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        failed = [rc for rc in reason_code_list if rc.is_failure]
        if failed:
            self.logger.error(f"[MQTT] 토픽 구독 실패: {failed}")
        else:
            self.logger.info("[MQTT] 모든 상태 토픽 구독 완료")

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        self.logger.debug(f"[MQTT] 발행 확인 mid={mid}")

    def _on_message(self, client, userdata, message):
        self.handle_message(message.topic, message.payload)

    # ── 수신 처리 ───────────────────────────────────────────────

    def handle_message(self, topic: str, payload: bytes) -> Optional[DeviceEvent]:
        """
        수신 메시지를 토픽별로 해석하여 이벤트 핸들러로 전달

        네트워크 스레드에서 호출되므로 예외를 밖으로 전파하지 않음 (응답할 호출자 없음)

        Returns:
            전달한 이벤트 (해석 실패 또는 모르는 토픽이면 None)
        """
        self.logger.info(f"[MQTT] 📨 수신 {topic}: {payload!r}")

        inbound = self.topics.parse(topic)
        if inbound is None:
            self.logger.warning(f"[MQTT] 처리하지 않는 토픽: {topic}")
            return None

        try:
            event = decode(inbound, payload)
        except PayloadDecodeError as e:
            self.logger.error(f"[MQTT] 페이로드 해석 실패 - {e}")
            return None

        if self._event_handler is None:
            self.logger.warning(f"[MQTT] 이벤트 핸들러 미등록 - {event} 무시")
            return event

        try:
            self._event_handler(event)
        except Exception:
            self.logger.exception(f"[MQTT] 이벤트 처리 중 오류: {event}")
        return event

    # ── 발행 ────────────────────────────────────────────────────

    def publish(self, topic: OutboundTopic, payload: Dict[str, Any],
                site: Optional[str] = None, qos: Optional[int] = None) -> PublishResult:
        """
        지시 발행

        site가 자동화 창고가 아니면 전송하지 않고 로그만 남긴 뒤 성공(SIMULATED)으로 보고.
        연결되어 있지 않으면 전송하지 않고 FAILED 반환.
        """
        full_topic = self.topics.full(topic)
        packet = json.dumps(payload, ensure_ascii=False)

        if site is not None and self.site_policy.is_simulated(site):
            self.logger.info(f"[MQTT][SIMULATION {site}] 발행 생략 {full_topic}: {packet}")
            return PublishResult(PublishStatus.SIMULATED, full_topic, packet)

        if not self.is_connected:
            self.logger.error(f"[MQTT] ❌ {full_topic} 발행 불가: 브로커 미연결")
            return PublishResult(PublishStatus.FAILED, full_topic, packet)

        try:
            info = self.client.publish(full_topic, packet, qos=self.config.qos if qos is None else qos)
        except (ValueError, OSError) as e:
            self.logger.error(f"[MQTT] ❌ {full_topic} 발행 오류: {e}")
            return PublishResult(PublishStatus.FAILED, full_topic, packet)

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error(f"[MQTT] ❌ {full_topic} 발행 실패: {mqtt.error_string(info.rc)}")
            return PublishResult(PublishStatus.FAILED, full_topic, packet)

        self.logger.info(f"[MQTT] 📤 발행 {full_topic}: {packet}")
        return PublishResult(PublishStatus.SENT, full_topic, packet)
