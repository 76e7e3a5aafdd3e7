"""
창고(site) 정책
실제 자동화 설비가 연결된 창고 하나만 실제 MQTT 지시를 받고,
나머지 창고는 로그만 남기는 시뮬레이션으로 처리
"""

import logging

logger = logging.getLogger(__name__)


class SitePolicy:
    """실제 발행 / 시뮬레이션 판단"""

    def __init__(self, automated_site: str = "Vera"):
        self.automated_site = automated_site
        logger.info(f"[SITE] 자동화 창고: {automated_site}")

    def should_dispatch_real(self, site: str) -> bool:
        return site == self.automated_site

    def is_simulated(self, site: str) -> bool:
        return not self.should_dispatch_real(site)
