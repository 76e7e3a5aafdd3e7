#!/usr/bin/env python3
"""
창고 오퍼레이션 코디네이터
MQTT 설비 텔레메트리 + HTTP 운영자 요청 통합 서버
"""

import sys
import logging
import argparse
from pathlib import Path

import uvicorn

# 프로젝트 루트를 Python 경로에 추가
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from almacen.config_loader import ConfigLoader
from almacen.system import create_system
from almacen.api.app import create_app

def print_banner(config):
    """시스템 배너 출력"""
    print("\n" + "="*70)
    print("  창고 오퍼레이션 코디네이터")
    print(f"  자동화 창고: {config.warehouse.automated_site}  |  MQTT: {config.mqtt.broker}:{config.mqtt.port}")
    print("="*70)

def main():
    """
    메인 함수
    설정 로드 → 시스템 조립 → MQTT 연결 → HTTP 서버 실행
    """
    parser = argparse.ArgumentParser(description="창고 오퍼레이션 코디네이터")
    parser.add_argument("--config", default=None, help="설정 파일 경로 (기본: config/settings.yaml)")
    args = parser.parse_args()

    # 설정 로드
    try:
        config_loader = ConfigLoader(args.config)
        config = config_loader.load()
        config_loader.setup_logging(config)
    except Exception as e:
        print(f"❌ 설정 파일 로드 실패: {e}")
        print("config/settings.yaml 파일을 확인하세요.")
        return 1

    logger = logging.getLogger(__name__)

    print_banner(config)
    logger.info("[MAIN] 시스템 시작")

    try:
        system = create_system(config)
    except Exception as e:
        logger.error(f"[MAIN] 시스템 초기화 실패: {e}")
        return 1

    if not config.api.admin_password:
        logger.warning("[MAIN] ADMIN_PWD 미설정 - 인증이 필요한 요청은 모두 거부됨")

    app = create_app(system.coordinator, config.api.admin_password)

    system.start()
    try:
        # uvicorn이 SIGINT/SIGTERM을 처리하고 반환
        uvicorn.run(app, host=config.api.host, port=config.api.port)
    finally:
        system.shutdown()
        logger.info("[MAIN] 시스템 정상 종료")
    return 0

if __name__ == "__main__":
    sys.exit(main())
