"""
설정 파일 로더 모듈
YAML 설정을 읽어 dataclass로 변환하여 타입 안정성과 자동완성 지원
"""

import os
import yaml
from pathlib import Path
from dataclasses import dataclass
from typing import Optional
import logging

@dataclass
class MQTTConfig:
    """MQTT 브로커 관련 설정"""
    broker: str
    port: int
    username: str
    password: str
    client_id: str
    keepalive: int
    topic_prefix: str
    qos: int

    # 재연결
    reconnect_min_delay: int
    reconnect_max_delay: int

@dataclass
class WarehouseConfig:
    """창고/오퍼레이션 관련 설정"""
    automated_site: str
    default_site: str
    slot_count: int

    # 수량 기본값
    default_entrance_quantity: int
    default_exit_quantity: int

    palletizing_mode: str
    agv_arrival_timeout: float

@dataclass
class LedgerConfig:
    """재고 원장(DB) 관련 설정"""
    backend: str
    dsn: str
    pool_size: int

@dataclass
class APIConfig:
    """HTTP API 관련 설정"""
    host: str
    port: int
    admin_password: str

@dataclass
class SystemConfig:
    """시스템 전반 설정"""
    log_file: str
    log_level: str

@dataclass
class Config:
    """전체 설정 컨테이너"""
    mqtt: MQTTConfig
    warehouse: WarehouseConfig
    ledger: LedgerConfig
    api: APIConfig
    system: SystemConfig

class ConfigLoader:
    """YAML 설정 파일 로더"""

    def __init__(self, config_path: Optional[str] = None):
        if config_path is None:
            # 기본 경로: 현재 파일 기준으로 상대 경로 찾기
            current_file = Path(__file__).absolute()
            project_root = current_file.parent.parent  # almacen의 상위 디렉토리
            config_path = project_root / "config" / "settings.yaml"

        self.config_path = Path(config_path)

        # 경로 존재 확인
        if not self.config_path.exists():
            # 대체 경로 시도
            alternative_paths = [
                Path.cwd() / "config" / "settings.yaml",
                Path("config/settings.yaml"),
            ]

            for alt_path in alternative_paths:
                alt_path = alt_path.resolve()
                if alt_path.exists():
                    self.config_path = alt_path
                    break
            else:
                raise FileNotFoundError(
                    f"설정 파일을 찾을 수 없습니다.\n"
                    f"시도한 경로:\n"
                    f"  - {config_path}\n" +
                    "\n".join(f"  - {p.resolve()}" for p in alternative_paths)
                )

    def load(self) -> Config:
        """설정 파일을 로드하여 Config 객체 반환 (환경 변수 우선)"""
        with open(self.config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        env = os.environ

        # MQTT 설정
        mqtt_data = data['mqtt']
        mqtt_config = MQTTConfig(
            broker=env.get('MQTT_BROKER', mqtt_data['broker']),
            port=int(mqtt_data['port']),
            username=env.get('MQTT_USERNAME', mqtt_data.get('username') or ''),
            password=env.get('MQTT_PASSWORD', mqtt_data.get('password') or ''),
            client_id=mqtt_data['client_id'],
            keepalive=mqtt_data['keepalive'],
            topic_prefix=mqtt_data['topic_prefix'],
            qos=mqtt_data['qos'],
            reconnect_min_delay=mqtt_data['reconnect']['min_delay'],
            reconnect_max_delay=mqtt_data['reconnect']['max_delay']
        )

        # 창고 설정
        wh_data = data['warehouse']
        warehouse_config = WarehouseConfig(
            automated_site=wh_data['automated_site'],
            default_site=wh_data['default_site'],
            slot_count=wh_data['slot_count'],
            default_entrance_quantity=wh_data['default_quantity']['entrance'],
            default_exit_quantity=wh_data['default_quantity']['exit'],
            palletizing_mode=wh_data['palletizing_mode'],
            agv_arrival_timeout=float(wh_data['agv_arrival_timeout'])
        )

        # 원장 설정
        ledger_data = data['ledger']
        ledger_config = LedgerConfig(
            backend=ledger_data['backend'],
            dsn=env.get('DATABASE_URL', ledger_data['dsn']),
            pool_size=ledger_data['pool_size']
        )

        # API 설정
        api_data = data['api']
        api_config = APIConfig(
            host=api_data['host'],
            port=int(env.get('PORT', api_data['port'])),
            admin_password=env.get('ADMIN_PWD', api_data.get('admin_password') or '')
        )

        # 시스템 설정
        system_data = data['system']
        system_config = SystemConfig(
            log_file=system_data['log_file'],
            log_level=system_data['log_level']
        )

        return Config(
            mqtt=mqtt_config,
            warehouse=warehouse_config,
            ledger=ledger_config,
            api=api_config,
            system=system_config
        )

    def setup_logging(self, config: Config):
        """로깅 설정"""
        log_level = getattr(logging, config.system.log_level)

        # 로그 디렉토리 생성
        log_path = Path(config.system.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=log_level,
            format='%(asctime)s - [%(levelname)s][%(name)s] - %(message)s',
            handlers=[
                logging.FileHandler(config.system.log_file, encoding='utf-8'),
                logging.StreamHandler()
            ]
        )
