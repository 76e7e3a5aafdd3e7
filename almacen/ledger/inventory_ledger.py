"""
Inventory Ledger - reparto 레코드 저장소 인터페이스

코디네이터가 사용하는 범위:
- 창고별 사용 중 슬롯 조회
- 입고 시 location / timestamp_recepcion 기록 (조건부)
- 출고 시 레코드 삭제
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, List, Set, Dict, Any


@dataclass(frozen=True)
class InventoryRecord:
    """reparto 테이블의 한 행"""
    id: str
    reading_code: str
    site: str
    quantity: Optional[int] = None
    location: Optional[int] = None
    created_at: Optional[datetime] = None
    received_at: Optional[datetime] = None

    @property
    def is_stored(self) -> bool:
        return self.location is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lectura": self.reading_code,
            "almacen": self.site,
            "cantidad": self.quantity,
            "location": self.location,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
            "timestamp_recepcion": self.received_at.isoformat() if self.received_at else None,
        }


class InventoryLedger(ABC):
    """재고 원장 인터페이스"""

    @abstractmethod
    def get(self, record_id: str) -> Optional[InventoryRecord]:
        """id로 레코드 조회"""

    @abstractmethod
    def find_by_reading(self, reading_code: str) -> Optional[InventoryRecord]:
        """lectura로 레코드 조회"""

    @abstractmethod
    def occupied_positions(self, site: str) -> Set[int]:
        """창고의 사용 중 슬롯 번호"""

    @abstractmethod
    def assign_location(self, record_id: str, site: str, position: int) -> bool:
        """
        슬롯이 같은 창고의 다른 레코드에 점유되어 있지 않을 때만
        location과 수령 시각을 기록

        Returns:
            기록 성공 여부 (슬롯이 이미 점유되었거나 레코드가 없으면 False)
        """

    @abstractmethod
    def clear_location(self, record_id: str) -> None:
        """location / 수령 시각 초기화 (예약 취소용)"""

    @abstractmethod
    def delete(self, record_id: str) -> None:
        pass

    @abstractmethod
    def register(self, site: str, reading_code: str, quantity: int) -> InventoryRecord:
        """새 배송 레코드 추가"""

    @abstractmethod
    def list_records(self) -> List[InventoryRecord]:
        pass

    def close(self) -> None:
        pass


class MemoryLedger(InventoryLedger):
    """
    메모리 기반 원장
    DB 없이 시뮬레이션 실행할 때와 테스트에서 사용
    """

    def __init__(self, records: Optional[List[InventoryRecord]] = None):
        self._lock = threading.Lock()
        self._records: Dict[str, InventoryRecord] = {}
        self._next_id = 1
        for record in records or []:
            self.add(record)

    def add(self, record: InventoryRecord) -> InventoryRecord:
        with self._lock:
            self._records[record.id] = record
            if record.id.isdigit():
                self._next_id = max(self._next_id, int(record.id) + 1)
            return record

    def get(self, record_id: str) -> Optional[InventoryRecord]:
        with self._lock:
            return self._records.get(str(record_id))

    def find_by_reading(self, reading_code: str) -> Optional[InventoryRecord]:
        with self._lock:
            for record in self._records.values():
                if record.reading_code == reading_code:
                    return record
            return None

    def occupied_positions(self, site: str) -> Set[int]:
        with self._lock:
            return {
                r.location for r in self._records.values()
                if r.site == site and r.location is not None
            }

    def assign_location(self, record_id: str, site: str, position: int) -> bool:
        with self._lock:
            record = self._records.get(str(record_id))
            if record is None:
                return False
            for other in self._records.values():
                if other.id != record.id and other.site == site and other.location == position:
                    return False
            self._records[record.id] = replace(record, location=position, received_at=datetime.now())
            return True

    def clear_location(self, record_id: str) -> None:
        with self._lock:
            record = self._records.get(str(record_id))
            if record is not None:
                self._records[record.id] = replace(record, location=None, received_at=None)

    def delete(self, record_id: str) -> None:
        with self._lock:
            self._records.pop(str(record_id), None)

    def register(self, site: str, reading_code: str, quantity: int) -> InventoryRecord:
        with self._lock:
            record = InventoryRecord(
                id=str(self._next_id),
                reading_code=reading_code,
                site=site,
                quantity=quantity,
                created_at=datetime.now(),
            )
            self._next_id += 1
            self._records[record.id] = record
            return record

    def list_records(self) -> List[InventoryRecord]:
        with self._lock:
            return list(self._records.values())
