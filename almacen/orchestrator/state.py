"""
시스템 상태 및 오퍼레이션 데이터 정의
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any


class OperationKind(Enum):
    """오퍼레이션 종류"""
    ENTRADA = "entrada"
    SALIDA_PARTICULARES = "salida_particulares"
    SALIDA_CENTRO = "salida_centro"


EXIT_KINDS = (OperationKind.SALIDA_PARTICULARES, OperationKind.SALIDA_CENTRO)


class OperationPhase(Enum):
    PICKING_FROM_STORAGE = "picking_from_storage"
    COMPLETED = "completed"


class AGVLoad(Enum):
    """AGV 적재 상태"""
    DROP = "drop"    # 팔레트 없음
    CARRY = "carry"  # 팔레트 운반 중


class OutcomeStatus(Enum):
    """오퍼레이션 종료 사유"""
    COMPLETED = "completed"
    ABORTED = "aborted"          # 비상 정지
    TIMED_OUT = "timed_out"
    SUPERSEDED = "superseded"    # 새 오퍼레이션으로 대체


@dataclass
class AGVStatus:
    location: int = 0
    state: AGVLoad = AGVLoad.DROP

    def to_dict(self) -> Dict[str, Any]:
        return {"ubicacion": self.location, "estado": self.state.value}


@dataclass
class Operation:
    """진행 중인 창고 오퍼레이션"""
    kind: OperationKind
    position: int
    quantity: int
    product_id: str
    site: str
    phase: OperationPhase = OperationPhase.PICKING_FROM_STORAGE
    mode: Optional[str] = None  # 팔레타이저 모드
    started_at: float = field(default_factory=time.time)

    @property
    def agv_target_position(self) -> int:
        """AGV 텔레메트리와 매칭할 목표 위치 (슬롯과 동일)"""
        return self.position

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "position": self.position,
            "cantidad": self.quantity,
            "productId": self.product_id,
            "almacen": self.site,
            "phase": self.phase.value,
            "mode": self.mode,
            "agvTargetPosition": self.agv_target_position,
        }


@dataclass(frozen=True)
class OperationOutcome:
    """종료된 오퍼레이션 기록"""
    operation: Operation
    status: OutcomeStatus
    finished_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.to_dict(),
            "status": self.status.value,
            "finishedAt": self.finished_at,
        }


@dataclass
class SystemState:
    """프로세스 전체에서 하나만 존재하는 시스템 상태 (코디네이터 소유)"""
    emergency_stop: bool = False
    conveyor1_status: str = "Parado"
    conveyor2_status: str = "Parado"
    infrared1_status: int = 0
    infrared2_status: int = 0
    agv: AGVStatus = field(default_factory=AGVStatus)
    pending_boxes: int = 0
    current_operation: Optional[Operation] = None
    last_outcome: Optional[OperationOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emergencyStop": self.emergency_stop,
            "conveyor1Status": self.conveyor1_status,
            "conveyor2Status": self.conveyor2_status,
            "infrared1Status": self.infrared1_status,
            "infrared2Status": self.infrared2_status,
            "agvStatus": self.agv.to_dict(),
            "pendingBoxes": self.pending_boxes,
            "currentOperation": (
                self.current_operation.to_dict() if self.current_operation else None
            ),
            "lastOutcome": self.last_outcome.to_dict() if self.last_outcome else None,
        }
