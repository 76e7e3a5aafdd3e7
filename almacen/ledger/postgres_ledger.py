"""
PostgreSQL 기반 Inventory Ledger (reparto 테이블)

스키마와 마이그레이션은 이 모듈의 범위가 아님 - 테이블이 이미 존재한다고 가정
"""

import logging
from contextlib import contextmanager
from typing import Optional, List, Set, Dict, Any

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from almacen.ledger.inventory_ledger import InventoryLedger, InventoryRecord
from almacen.orchestrator.errors import LedgerError

logger = logging.getLogger(__name__)

_COLUMNS = "id, lectura, almacen, cantidad, location, timestamp, timestamp_recepcion"


def _to_record(row: Dict[str, Any]) -> InventoryRecord:
    return InventoryRecord(
        id=str(row['id']),
        reading_code=row['lectura'],
        site=row['almacen'],
        quantity=row['cantidad'],
        location=int(row['location']) if row['location'] is not None else None,
        created_at=row['timestamp'],
        received_at=row['timestamp_recepcion'],
    )


class PostgresLedger(InventoryLedger):
    """
    스레드 안전 원장 구현

    Threading Model:
    - 커넥션 풀(ThreadedConnectionPool)로 동시 접근 처리
    - 각 메서드는 한 트랜잭션 안에서 실행되고 실패 시 롤백
    - assign_location은 한 문장(UPDATE ... WHERE NOT EXISTS)으로 슬롯 점유를 검사
    """

    def __init__(self, dsn: str, pool_size: int = 5):
        self.dsn = dsn
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=pool_size,
                dsn=dsn,
                cursor_factory=RealDictCursor,
                application_name='almacen_coordinator',
            )
        except psycopg2.Error as e:
            logger.error(f"[LEDGER] 데이터베이스 연결 실패: {e}")
            raise LedgerError(f"Database connection failed: {e}") from e
        logger.info("[LEDGER] ✅ 데이터베이스 연결 완료")

    @contextmanager
    def _cursor(self):
        """풀에서 커넥션을 빌려 커서 제공, 정상 종료 시 커밋"""
        conn = self._pool.getconn()
        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"[LEDGER] 쿼리 실패: {e}")
            raise LedgerError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def get(self, record_id: str) -> Optional[InventoryRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM reparto WHERE id = %s", (record_id,))
            row = cur.fetchone()
        return _to_record(row) if row else None

    def find_by_reading(self, reading_code: str) -> Optional[InventoryRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM reparto WHERE lectura = %s ORDER BY id LIMIT 1",
                (reading_code,)
            )
            row = cur.fetchone()
        return _to_record(row) if row else None

    def occupied_positions(self, site: str) -> Set[int]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT location FROM reparto WHERE location IS NOT NULL AND almacen = %s",
                (site,)
            )
            rows = cur.fetchall()
        return {int(row['location']) for row in rows}

    def assign_location(self, record_id: str, site: str, position: int) -> bool:
        """
        NOT EXISTS 검사는 한 프로세스 안에서만 충분함 (창고 락과 함께 사용).
        여러 인스턴스가 같은 DB를 쓰면 부분 유니크 인덱스
        reparto (almacen, location) WHERE location IS NOT NULL 이 최종 보호선이며,
        인덱스 위반은 예약 실패(False)로 처리
        """
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    UPDATE reparto SET location = %s, timestamp_recepcion = NOW()
                    WHERE id = %s
                      AND NOT EXISTS (
                          SELECT 1 FROM reparto
                          WHERE almacen = %s AND location = %s AND id <> %s
                      )
                    """,
                    (position, record_id, site, position, record_id)
                )
                updated = cur.rowcount
        except LedgerError as e:
            if isinstance(e.__cause__, psycopg2.IntegrityError):
                logger.warning(f"[LEDGER] {site} 슬롯 {position} 이미 점유됨 (유니크 인덱스)")
                return False
            raise
        return updated == 1

    def clear_location(self, record_id: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE reparto SET location = NULL, timestamp_recepcion = NULL WHERE id = %s",
                (record_id,)
            )

    def delete(self, record_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM reparto WHERE id = %s", (record_id,))

    def register(self, site: str, reading_code: str, quantity: int) -> InventoryRecord:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO reparto (almacen, lectura, timestamp, cantidad)
                VALUES (%s, %s, NOW(), %s)
                RETURNING {_COLUMNS}
                """,
                (site, reading_code, quantity)
            )
            row = cur.fetchone()
        return _to_record(row)

    def list_records(self) -> List[InventoryRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM reparto ORDER BY id")
            rows = cur.fetchall()
        return [_to_record(row) for row in rows]

    def close(self) -> None:
        self._pool.closeall()
        logger.info("[LEDGER] 커넥션 풀 종료")
