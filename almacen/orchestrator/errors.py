"""
코디네이터 예외 정의
HTTP 어댑터는 각 예외의 status_code로 응답 코드를 결정
"""


class CoordinatorError(Exception):
    """코디네이터 예외 기본 클래스"""
    status_code = 500


class ValidationError(CoordinatorError):
    """필수 필드 누락 등 요청 검증 실패"""
    status_code = 400


class NotFoundError(CoordinatorError):
    """원장에 없는 제품/레코드"""
    status_code = 404


class ConflictError(CoordinatorError):
    status_code = 409


class NoCapacityError(ConflictError):
    """해당 창고에 빈 슬롯 없음"""
    status_code = 400


class NotStoredError(ConflictError):
    """레코드가 슬롯에 보관되어 있지 않음 (location 없음)"""
    status_code = 400


class OperationBlockedError(ConflictError):
    """비상 정지 상태에서 새 오퍼레이션 요청"""


class UnauthorizedError(CoordinatorError):
    status_code = 403


class InternalError(CoordinatorError):
    """원장 또는 게이트웨이 장애"""


class DispatchError(InternalError):
    """지시(directive) 발행 실패"""


class LedgerError(InternalError):
    """원장 읽기/쓰기 실패"""


class TimedOutError(CoordinatorError):
    """AGV 도착 대기 시간 초과"""
    status_code = 504


class PayloadDecodeError(ValueError):
    """수신 MQTT 메시지 페이로드 해석 실패"""

    def __init__(self, topic: str, reason: str):
        super().__init__(f"{topic}: {reason}")
        self.topic = topic
        self.reason = reason
