"""
비상 정지 핸들러
비상 정지 토픽 수신 시 모든 설비(컨베이어 1/2, 팔레타이저, 코봇)에 정지 지시
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple, Dict, Any, Optional

from almacen.controllers.device_gateway import DeviceGateway, PublishResult
from almacen.controllers.topics import OutboundTopic
from almacen.orchestrator.site_policy import SitePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmergencyStopReport:
    site: str
    simulated: bool
    results: List[PublishResult] = field(default_factory=list)

    @property
    def failed(self) -> List[PublishResult]:
        return [r for r in self.results if not r.ok]


class EmergencyHandler:
    """
    정지 지시 4종을 각각 독립적으로 발행
    하나가 실패해도 나머지는 계속 발행하며 롤백하지 않음
    """

    def __init__(self, gateway: DeviceGateway, site_policy: SitePolicy,
                 palletizing_mode: str = "paletizar"):
        self.gateway = gateway
        self.site_policy = site_policy
        self.palletizing_mode = palletizing_mode

    def stop_directives(self, mode: Optional[str] = None) -> List[Tuple[OutboundTopic, Dict[str, Any]]]:
        """mode: 진행 중인 오퍼레이션의 팔레타이저 모드 (없으면 설정값)"""
        return [
            (OutboundTopic.CONVEYOR_1, {"accion": "parada"}),
            (OutboundTopic.CONVEYOR_2, {"accion": "parada"}),
            (OutboundTopic.PALLETIZING, {"accion": "parada", "modo": mode or self.palletizing_mode}),
            (OutboundTopic.COBOT_PICKUP, {"accion": "parada"}),
        ]

    def stop_equipment(self, site: str, mode: Optional[str] = None) -> EmergencyStopReport:
        """창고의 모든 설비 정지 지시 발행 (시뮬레이션 창고는 로그만)"""
        simulated = self.site_policy.is_simulated(site)
        if simulated:
            logger.warning(f"[EMERGENCY][SIMULATION {site}] 모든 설비 정지 지시 시뮬레이션")
        else:
            logger.error(f"[EMERGENCY] {site} 모든 설비 정지 지시 발행")

        results = []
        for topic, payload in self.stop_directives(mode):
            try:
                result = self.gateway.publish(topic, payload, site=site)
            except Exception:
                logger.exception(f"[EMERGENCY] {topic.value} 정지 지시 발행 중 오류")
                continue
            if not result.ok:
                logger.critical(f"[EMERGENCY] ✗ {result.topic} 정지 지시 발행 실패")
            results.append(result)

        return EmergencyStopReport(site=site, simulated=simulated, results=results)
