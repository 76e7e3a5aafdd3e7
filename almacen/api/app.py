"""
HTTP API (FastAPI)
운영자 요청을 코디네이터 호출로 변환하는 얇은 어댑터

요청 본문은 JSON, urlencoded 폼, multipart 폼 모두 허용
인증은 본문의 password 또는 Authorization: Bearer 토큰
"""

import hmac
import logging
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union

import pydantic
from fastapi import Depends, FastAPI, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from almacen.orchestrator.coordinator import OperationCoordinator
from almacen.orchestrator.errors import CoordinatorError, UnauthorizedError, ValidationError
from almacen.orchestrator.state import OperationKind

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

_bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# 요청 모델
# ============================================================================

class AuthenticatedRequest(BaseModel):
    password: Optional[str] = None


class ProductRequest(AuthenticatedRequest):
    """입고/출고 요청 (id는 QR에서 읽은 숫자 또는 문자열)"""
    id: Optional[Union[int, str]] = None
    modo: Optional[str] = None


class DeliveryRequest(AuthenticatedRequest):
    almacen: Optional[str] = None
    lectura: Optional[str] = None
    cantidad: Optional[Union[int, str]] = None


RequestModel = TypeVar("RequestModel", bound=AuthenticatedRequest)


async def read_fields(request: Request) -> Dict[str, Any]:
    """본문을 dict로 변환 (폼은 Starlette 폼 파서, 그 외는 JSON)"""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        try:
            form = await request.form()
        except UnicodeDecodeError:
            raise ValidationError("Invalid form body encoding")
        # 파일 업로드 필드는 무시
        return {key: value for key, value in form.items() if isinstance(value, str)}

    if not await request.body():
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    return data


def verify_password(candidate: Optional[str], admin_password: str):
    """
    관리자 비밀번호 확인

    Raises:
        UnauthorizedError: 관리자 비밀번호 미설정 또는 불일치
    """
    if not admin_password:
        logger.warning("[API] 관리자 비밀번호 미설정 - 인증 요청 거부")
        raise UnauthorizedError("Forbidden")
    if not isinstance(candidate, str) or not hmac.compare_digest(
            candidate.encode("utf-8"), admin_password.encode("utf-8")):
        raise UnauthorizedError("Forbidden")


def authenticated_body(model: Type[RequestModel], admin_password: str) -> Callable:
    """본문을 model로 검증하고 비밀번호를 확인하는 의존성 생성"""

    async def dependency(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Security(_bearer_scheme),
    ) -> RequestModel:
        fields = await read_fields(request)
        try:
            body = model.model_validate(fields)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid request body: {e.error_count()} invalid field(s)")

        candidate = credentials.credentials if credentials is not None else body.password
        try:
            verify_password(candidate, admin_password)
        except UnauthorizedError:
            logger.warning(f"[API] 인증 실패: {request.url.path}")
            raise
        return body

    return dependency


# ============================================================================
# 앱
# ============================================================================

def create_app(coordinator: OperationCoordinator, admin_password: str) -> FastAPI:
    app = FastAPI(
        title="Almacen Coordinator API",
        description="창고 오퍼레이션 코디네이터 REST API",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    product_body = authenticated_body(ProductRequest, admin_password)
    delivery_body = authenticated_body(DeliveryRequest, admin_password)
    auth_only = authenticated_body(AuthenticatedRequest, admin_password)

    @app.exception_handler(CoordinatorError)
    async def coordinator_error_handler(request: Request, exc: CoordinatorError):
        if exc.status_code >= 500:
            logger.error(f"[API] {request.url.path} 처리 실패: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"[API] {request.url.path} 예상치 못한 오류")
        return JSONResponse(status_code=500, content={"error": f"Error processing {request.url.path}"})

    @app.post("/api/qr-entrada")
    async def qr_entrada(body: ProductRequest = Depends(product_body)):
        logger.info(f"[API] 입고 요청: id={body.id}")
        result = await run_in_threadpool(coordinator.start_entrance, body.id, body.modo)
        return {
            "success": True,
            "location": result.position,
            "cantidad": result.quantity,
            "simulation": result.simulation,
            "message": f"Product assigned to location {result.position}",
        }

    async def _salida(body: ProductRequest, kind: OperationKind):
        logger.info(f"[API] {kind.value} 요청: id={body.id}")
        result = await run_in_threadpool(coordinator.start_exit, kind, body.id, body.modo)
        return {
            "success": True,
            "posicion": result.position,
            "cantidad": result.quantity,
            "almacen": result.site,
            "simulation": result.simulation,
        }

    @app.post("/api/salida-particulares")
    async def salida_particulares(body: ProductRequest = Depends(product_body)):
        return await _salida(body, OperationKind.SALIDA_PARTICULARES)

    @app.post("/api/salida-centro")
    async def salida_centro(body: ProductRequest = Depends(product_body)):
        return await _salida(body, OperationKind.SALIDA_CENTRO)

    @app.post("/api/reset-emergency")
    async def reset_emergency(_body: AuthenticatedRequest = Depends(auth_only)):
        await run_in_threadpool(coordinator.reset_emergency)
        return {"success": True, "message": "Emergency stop reset"}

    @app.get("/api/system-status")
    async def system_status():
        return coordinator.status_payload()

    @app.post("/api/enviar", status_code=201)
    async def enviar(body: DeliveryRequest = Depends(delivery_body)):
        record = await run_in_threadpool(
            coordinator.register_delivery, body.almacen, body.lectura, body.cantidad,
        )
        # 라벨 프린터가 QR로 인코딩할 내용
        qr_content = {"id": record.id, "lectura": record.reading_code, "cantidad": record.quantity}
        return {"success": True, "record": record.to_dict(), "qr": qr_content}

    @app.get("/api/repartos")
    async def repartos():
        records = await run_in_threadpool(coordinator.ledger.list_records)
        return [r.to_dict() for r in records]

    return app
