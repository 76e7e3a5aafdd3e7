"""
슬롯 할당기
창고(site)별 1..N 범위에서 비어 있는 가장 낮은 슬롯 번호를 선택
"""

import logging
from typing import Iterable

from almacen.orchestrator.errors import NoCapacityError

logger = logging.getLogger(__name__)

DEFAULT_SLOT_COUNT = 5


def allocate(site: str, occupied: Iterable[int], slot_count: int = DEFAULT_SLOT_COUNT) -> int:
    """
    첫 번째 빈 슬롯 반환

    Args:
        site: 창고 이름 (로그/에러 메시지용)
        occupied: 원장에서 방금 읽은 사용 중 슬롯 번호들
        slot_count: 슬롯 개수 N

    Returns:
        1..N 중 비어 있는 가장 작은 번호

    Raises:
        NoCapacityError: 모든 슬롯이 사용 중
    """
    used = set(occupied)
    for position in range(1, slot_count + 1):
        if position not in used:
            logger.debug(f"[SLOT] {site}: 사용 중 {sorted(used)} -> {position} 할당")
            return position

    logger.error(f"[SLOT] {site}: 빈 슬롯 없음 (사용 중 {sorted(used)})")
    raise NoCapacityError(f"No available positions in warehouse {site}")
