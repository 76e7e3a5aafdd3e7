"""
Operation Coordinator
시스템 상태의 단일 소유자 - 입고/출고 오퍼레이션 시작, 설비 이벤트 반영, 비상 정지 처리

오퍼레이션 흐름:
    입고: 원장 조회 → 슬롯 할당/예약 → 상태 갱신 → 지시 발행
    출고: 원장 조회 → 상태 갱신 → 지시 발행 → 원장 레코드 삭제
    완료: AGV가 목표 위치 도착 보고 → 오퍼레이션 종료
    중단: 비상 정지 / 도착 대기 시간 초과
"""

import copy
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Dict, Any

from almacen.config_loader import WarehouseConfig
from almacen.controllers.device_gateway import DeviceGateway, PublishResult
from almacen.controllers.topics import (
    OutboundTopic, DeviceEvent, EmergencyStopEvent, ConveyorStatusEvent,
    InfraredStatusEvent, AGVStatusEvent, QRScanEvent,
)
from almacen.ledger.inventory_ledger import InventoryLedger, InventoryRecord
from almacen.orchestrator import slot_allocator
from almacen.orchestrator.emergency import EmergencyHandler, EmergencyStopReport
from almacen.orchestrator.errors import (
    CoordinatorError, ValidationError, NotFoundError, ConflictError, NotStoredError,
    OperationBlockedError, DispatchError, LedgerError, TimedOutError,
)
from almacen.orchestrator.site_policy import SitePolicy
from almacen.orchestrator.state import (
    SystemState, Operation, OperationKind, OperationPhase, OperationOutcome,
    OutcomeStatus, EXIT_KINDS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationResult:
    """입고/출고 시작 결과"""
    kind: OperationKind
    record_id: str
    position: int
    quantity: int
    site: str
    simulation: bool


class OperationCoordinator:
    """
    창고 오퍼레이션 코디네이터

    동시성 모델:
    - 시스템 상태 변경은 모두 self._lock 안에서 실행 (HTTP 스레드, MQTT 네트워크 스레드, 타이머)
    - 창고별 할당 락이 "사용 중 슬롯 조회 → 할당 → 원장 기록"을 하나로 묶음
    - 원장 I/O는 상태 락 밖에서 실행
    - 락 순서는 항상 창고 락 → 상태 락
    - QR 스캔 입고는 전용 작업 스레드에서 실행 (MQTT 네트워크 스레드는 해석과 전달만 담당)
    """

    def __init__(self, config: WarehouseConfig, ledger: InventoryLedger,
                 gateway: DeviceGateway, site_policy: SitePolicy):
        self.config = config
        self.ledger = ledger
        self.gateway = gateway
        self.site_policy = site_policy
        self.emergency = EmergencyHandler(gateway, site_policy, config.palletizing_mode)

        self._state = SystemState()
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._site_locks: Dict[str, threading.Lock] = {}
        self._site_locks_guard = threading.Lock()
        self._watchdog: Optional[threading.Timer] = None
        self._scan_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="qr-scan")

        gateway.set_event_handler(self.on_device_event)
        logger.info("[COORD] 오퍼레이션 코디네이터 초기화")

    # ── 조회 ────────────────────────────────────────────────────

    def status(self) -> SystemState:
        """시스템 상태 스냅샷 (읽기 전용 복사본)"""
        with self._lock:
            return copy.deepcopy(self._state)

    def status_payload(self) -> Dict[str, Any]:
        return {
            "systemState": self.status().to_dict(),
            "connected": self.gateway.is_connected,
        }

    # ── 입고 ────────────────────────────────────────────────────

    def start_entrance(self, product_id: str, mode: Optional[str] = None) -> OperationResult:
        """
        제품 id로 입고 오퍼레이션 시작

        Args:
            product_id: 원장 레코드 id
            mode: 팔레타이저 모드 (비상 정지 시 정지 지시에 포함)

        Raises:
            ValidationError: id 누락
            NotFoundError: 원장에 없는 제품
            NoCapacityError: 빈 슬롯 없음
            OperationBlockedError: 비상 정지 상태
            DispatchError: 지시 발행 실패 (예약 취소됨)
        """
        if product_id is None or str(product_id).strip() == "":
            raise ValidationError("Missing id in QR code")
        product_id = str(product_id).strip()
        self._ensure_not_blocked()

        record = self.ledger.get(product_id)
        if record is None:
            logger.error(f"[COORD] 제품 {product_id} 없음")
            raise NotFoundError(f"Product with code {product_id} not found")

        quantity = int(record.quantity or self.config.default_entrance_quantity)
        return self._begin_entrance(record, quantity, mode)

    def start_entrance_from_scan(self, event: QRScanEvent) -> OperationResult:
        """QR 스캔 알림으로 입고 시작 - id 우선, 없으면 lectura로 조회"""
        self._ensure_not_blocked()

        if event.record_id:
            record = self.ledger.get(event.record_id)
            key = f"ID {event.record_id}"
        else:
            record = self.ledger.find_by_reading(event.reading_code)
            key = f"lectura {event.reading_code}"

        if record is None:
            raise NotFoundError(f"Product not found with {key}")

        quantity = int(event.quantity or self.config.default_entrance_quantity)
        return self._begin_entrance(record, quantity)

    def _begin_entrance(self, record: InventoryRecord, quantity: int,
                        mode: Optional[str] = None) -> OperationResult:
        if record.is_stored:
            raise ConflictError(
                f"Product {record.id} is already stored at location {record.location}"
            )

        site = record.site
        with self._site_lock(site):
            occupied = self.ledger.occupied_positions(site)
            logger.info(f"[COORD] {site} 사용 중 슬롯: {sorted(occupied)}")
            position = slot_allocator.allocate(site, occupied, self.config.slot_count)

            if not self.ledger.assign_location(record.id, site, position):
                raise ConflictError(f"Location {position} in warehouse {site} could not be reserved")

            operation = Operation(
                kind=OperationKind.ENTRADA,
                position=position,
                quantity=quantity,
                product_id=record.id,
                site=site,
                mode=mode,
            )
            payload = {
                "accion": OperationKind.ENTRADA.value,
                "cantidad": str(quantity),
                "posicion": str(position),
            }
            try:
                result = self._activate_and_dispatch(operation, payload)
            except (OperationBlockedError, DispatchError):
                self.ledger.clear_location(record.id)
                logger.warning(f"[COORD] 제품 {record.id} 슬롯 {position} 예약 취소")
                raise

        logger.info(f"[COORD] ✅ 제품 {record.id} → {site} 슬롯 {position} 배정 ({quantity}박스)")
        return OperationResult(
            kind=OperationKind.ENTRADA,
            record_id=record.id,
            position=position,
            quantity=quantity,
            site=site,
            simulation=result.simulated,
        )

    # ── 출고 ────────────────────────────────────────────────────

    def start_exit(self, kind: OperationKind, record_id: str,
                   mode: Optional[str] = None) -> OperationResult:
        """
        출고 오퍼레이션 시작 (salida_particulares / salida_centro)

        지시 발행 후 원장 레코드를 삭제함.
        발행 성공 후 삭제가 실패하면 LedgerError가 전파되고 지시는 철회하지 않음.
        """
        if kind not in EXIT_KINDS:
            raise ValidationError(f"Invalid exit kind: {kind}")
        if record_id is None or str(record_id).strip() == "":
            raise ValidationError("Missing id")
        record_id = str(record_id).strip()
        self._ensure_not_blocked()

        record = self.ledger.get(record_id)
        if record is None:
            raise NotFoundError("Reparto record not found")

        with self._site_lock(record.site):
            # 락 대기 중 다른 출고가 먼저 처리했을 수 있음
            record = self.ledger.get(record_id)
            if record is None:
                raise NotFoundError("Reparto record not found")
            if not record.is_stored:
                raise NotStoredError("This product is not stored in a warehouse location")

            quantity = int(record.quantity or self.config.default_exit_quantity)
            operation = Operation(
                kind=kind,
                position=record.location,
                quantity=quantity,
                product_id=record.reading_code,
                site=record.site,
                mode=mode,
            )
            payload = {
                "accion": kind.value,
                "posicion": str(record.location),
                "cantidad": str(quantity),
            }
            result = self._activate_and_dispatch(operation, payload)

            try:
                self.ledger.delete(record.id)
            except LedgerError:
                logger.error(f"[COORD] ❌ 레코드 {record.id} 삭제 실패 - 출고 지시는 이미 발행됨")
                raise

        logger.info(f"[COORD] ✅ {kind.value}: {record.site} 슬롯 {record.location} 출고 시작 ({quantity}박스)")
        return OperationResult(
            kind=kind,
            record_id=record.id,
            position=record.location,
            quantity=quantity,
            site=record.site,
            simulation=result.simulated,
        )

    # ── 배송 등록 ───────────────────────────────────────────────

    def register_delivery(self, site: str, reading_code: str, quantity=None) -> InventoryRecord:
        """새 배송 레코드 등록 (입고 전 단계)"""
        if not site or not reading_code:
            raise ValidationError("Missing almacen or lectura")
        try:
            quantity = int(quantity) if quantity not in (None, "") else self.config.default_entrance_quantity
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid cantidad: {quantity!r}")

        record = self.ledger.register(site, reading_code, quantity)
        logger.info(f"[COORD] 배송 등록: id={record.id}, lectura={reading_code}, cantidad={quantity}")
        return record

    # ── 비상 정지 ───────────────────────────────────────────────

    def emergency_stop(self) -> EmergencyStopReport:
        """진행 중인 오퍼레이션을 무조건 중단 (멱등)"""
        with self._lock:
            logger.error("[COORD] 🚨 비상 정지 활성화")
            self._state.emergency_stop = True

            operation = self._state.current_operation
            site = operation.site if operation else self.config.default_site
            report = self.emergency.stop_equipment(site, operation.mode if operation else None)

            if operation is not None:
                self._finish(OutcomeStatus.ABORTED)
            else:
                self._state.pending_boxes = 0
                self._cancel_watchdog()
            return report

    def reset_emergency(self) -> bool:
        """비상 정지 플래그만 해제 (중단된 오퍼레이션은 복구하지 않음)"""
        with self._lock:
            self._state.emergency_stop = False
            logger.warning("[COORD] 🔄 비상 정지 해제")
            return True

    # ── 설비 이벤트 ─────────────────────────────────────────────

    def on_device_event(self, event: DeviceEvent):
        """게이트웨이가 해석한 수신 이벤트를 상태에 반영"""
        if isinstance(event, EmergencyStopEvent):
            self.emergency_stop()

        elif isinstance(event, ConveyorStatusEvent):
            with self._lock:
                if event.conveyor == 1:
                    self._state.conveyor1_status = event.status
                else:
                    self._state.conveyor2_status = event.status

        elif isinstance(event, InfraredStatusEvent):
            with self._lock:
                if event.sensor == 1:
                    self._state.infrared1_status = event.value
                else:
                    self._state.infrared2_status = event.value
            logger.debug(f"[COORD] 적외선 {event.sensor}: {event.value}")

        elif isinstance(event, AGVStatusEvent):
            self._on_agv_status(event)

        elif isinstance(event, QRScanEvent):
            self.submit_scan(event)

        else:
            logger.warning(f"[COORD] 알 수 없는 이벤트: {event!r}")

    # ── QR 스캔 작업 스레드 ─────────────────────────────────────

    def submit_scan(self, event: QRScanEvent) -> Future:
        """QR 스캔 입고를 작업 스레드에 넘기고 즉시 반환"""
        logger.info(f"[COORD] QR 스캔 수신: id={event.record_id}, lectura={event.reading_code}")
        return self._scan_executor.submit(self._process_scan, event)

    def _process_scan(self, event: QRScanEvent) -> Optional[OperationResult]:
        try:
            return self.start_entrance_from_scan(event)
        except CoordinatorError as e:
            logger.error(f"[COORD] ❌ QR 입고 처리 실패: {e}")
        except Exception:
            logger.exception("[COORD] QR 입고 처리 중 예상치 못한 오류")
        return None

    def wait_for_scans(self, timeout: Optional[float] = None):
        """이미 접수된 QR 스캔 작업이 모두 끝날 때까지 대기 (작업 스레드는 1개라 순서대로 처리됨)"""
        self._scan_executor.submit(lambda: None).result(timeout)

    def shutdown(self):
        """작업 스레드와 도착 대기 타이머 정리"""
        self._scan_executor.shutdown(wait=True)
        with self._lock:
            self._cancel_watchdog()
        logger.info("[COORD] 코디네이터 종료")

    def _on_agv_status(self, event: AGVStatusEvent):
        with self._lock:
            self._state.agv.location = event.location
            self._state.agv.state = event.state

            operation = self._state.current_operation
            if operation is not None and operation.agv_target_position == event.location:
                logger.info(f"[COORD] AGV 목표 위치 {event.location} 도착 ({event.state.value})")
                operation.phase = OperationPhase.COMPLETED
                self._finish(OutcomeStatus.COMPLETED)

    # ── 완료 대기 ───────────────────────────────────────────────

    def wait_for_completion(self, timeout: Optional[float] = None) -> Optional[OperationOutcome]:
        """
        현재 오퍼레이션이 끝날 때까지 대기

        Returns:
            종료 기록 (진행 중인 오퍼레이션이 없으면 마지막 기록)

        Raises:
            TimedOutError: timeout 안에 끝나지 않음
        """
        with self._changed:
            operation = self._state.current_operation
            if operation is None:
                return self._state.last_outcome
            done = self._changed.wait_for(
                lambda: self._state.current_operation is not operation, timeout
            )
            if not done:
                raise TimedOutError(f"Operation at position {operation.position} still pending")
            return self._state.last_outcome

    # ── 내부 ────────────────────────────────────────────────────

    def _site_lock(self, site: str) -> threading.Lock:
        with self._site_locks_guard:
            lock = self._site_locks.get(site)
            if lock is None:
                lock = self._site_locks[site] = threading.Lock()
            return lock

    def _ensure_not_blocked(self):
        with self._lock:
            if self._state.emergency_stop:
                raise OperationBlockedError("Emergency stop is active")

    def _activate_and_dispatch(self, operation: Operation, payload: Dict[str, Any]) -> PublishResult:
        """상태 락 안에서 오퍼레이션 활성화 후 지시 발행, 발행 실패 시 활성화 취소"""
        with self._lock:
            if self._state.emergency_stop:
                raise OperationBlockedError("Emergency stop is active")

            # 락 안에서는 발행과 상태 갱신 순서가 외부에 드러나지 않음
            result = self.gateway.publish(OutboundTopic.DIRECTIVE, payload, site=operation.site)
            if not result.ok:
                raise DispatchError(f"Could not publish directive to {result.topic}")

            current = self._state.current_operation
            if current is not None:
                logger.warning(
                    f"[COORD] 진행 중인 {current.kind.value} (슬롯 {current.position})을 "
                    f"새 {operation.kind.value}으로 대체"
                )
                self._finish(OutcomeStatus.SUPERSEDED)

            self._state.current_operation = operation
            self._state.pending_boxes = operation.quantity
            self._start_watchdog(operation)
            self._changed.notify_all()

            if result.simulated:
                logger.info(
                    f"[COORD] 🔄 [SIMULATION {operation.site}] 슬롯 {operation.position}, "
                    f"{operation.quantity}박스"
                )
            else:
                logger.info(
                    f"[COORD] {operation.site} 설비 동작 시작: 슬롯 {operation.position}, "
                    f"{operation.quantity}박스"
                )
            return result

    def _finish(self, status: OutcomeStatus):
        """현재 오퍼레이션 종료 기록 (상태 락 보유 상태에서 호출)"""
        operation = self._state.current_operation
        self._state.current_operation = None
        self._state.pending_boxes = 0
        self._cancel_watchdog()
        if operation is not None:
            self._state.last_outcome = OperationOutcome(operation=operation, status=status)
            logger.info(f"[COORD] 오퍼레이션 종료: {operation.kind.value} 슬롯 {operation.position} - {status.value}")
        self._changed.notify_all()

    def _start_watchdog(self, operation: Operation):
        self._cancel_watchdog()
        timeout = self.config.agv_arrival_timeout
        if not timeout or timeout <= 0:
            return
        self._watchdog = threading.Timer(timeout, self._on_arrival_timeout, args=(operation,))
        self._watchdog.daemon = True
        self._watchdog.start()

    def _cancel_watchdog(self):
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_arrival_timeout(self, operation: Operation):
        with self._lock:
            if self._state.current_operation is not operation:
                return
            logger.error(
                f"[COORD] ⏱ AGV 도착 대기 시간 초과: {operation.kind.value} 슬롯 {operation.position}"
            )
            self._finish(OutcomeStatus.TIMED_OUT)
