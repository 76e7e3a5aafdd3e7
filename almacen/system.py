"""
시스템 조립
설정으로부터 원장, 게이트웨이, 코디네이터를 생성하고 연결
"""

import logging
from dataclasses import dataclass
from typing import Optional

import paho.mqtt.client as mqtt

from almacen.config_loader import Config, LedgerConfig
from almacen.controllers.device_gateway import DeviceGateway
from almacen.ledger.inventory_ledger import InventoryLedger, MemoryLedger
from almacen.orchestrator.coordinator import OperationCoordinator
from almacen.orchestrator.site_policy import SitePolicy

logger = logging.getLogger(__name__)


@dataclass
class WarehouseSystem:
    """조립된 구성 요소 묶음"""
    config: Config
    ledger: InventoryLedger
    gateway: DeviceGateway
    coordinator: OperationCoordinator

    def start(self):
        self.gateway.start()

    def shutdown(self):
        logger.info("[SYSTEM] 종료 중...")
        self.gateway.stop()
        self.coordinator.shutdown()
        self.ledger.close()


def create_ledger(config: LedgerConfig) -> InventoryLedger:
    if config.backend == "memory":
        logger.warning("[SYSTEM] 메모리 원장 사용 - 재시작 시 데이터 소실")
        return MemoryLedger()
    if config.backend == "postgres":
        # psycopg2는 postgres 백엔드에서만 필요
        from almacen.ledger.postgres_ledger import PostgresLedger
        return PostgresLedger(config.dsn, config.pool_size)
    raise ValueError(f"지원하지 않는 원장 백엔드: {config.backend}")


def create_system(config: Config,
                  ledger: Optional[InventoryLedger] = None,
                  mqtt_client: Optional[mqtt.Client] = None) -> WarehouseSystem:
    """
    전체 시스템 생성 (게이트웨이 연결은 start()에서 시작)

    Args:
        config: 전체 설정
        ledger: 원장 주입 (None이면 설정으로 생성)
        mqtt_client: paho 클라이언트 주입 (None이면 새로 생성)
    """
    site_policy = SitePolicy(config.warehouse.automated_site)
    if ledger is None:
        ledger = create_ledger(config.ledger)
    gateway = DeviceGateway(config.mqtt, site_policy, mqtt_client)
    coordinator = OperationCoordinator(config.warehouse, ledger, gateway, site_policy)
    return WarehouseSystem(config=config, ledger=ledger, gateway=gateway, coordinator=coordinator)
