import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

import synchub.core.celery_app  # noqa: F401  注册 broker 配置，API 侧 .delay() 要用
from synchub.api.v1 import api_v1
from synchub.core.config import settings
from synchub.core.logging import configure_logging
from synchub.db.session import dispose_engine
from synchub.integrations.generic import IntegrationError
from synchub.services.errors import DomainError, InsufficientInventoryError, NotFoundError

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

# 从环境读取前端白名单（逗号分隔）。本地可配：
# BACKEND_CORS_ORIGINS=http://localhost:5173,https://app.local.test:5173
origins = [o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


# ========= 统一错误信封 {success: false, error, code?} =========
def _envelope(status_code: int, message: str, code: str | None = None, headers=None) -> JSONResponse:
    body = {"success": False, "error": message}
    if code:
        body["code"] = code
    return JSONResponse(status_code=status_code, content=body, headers=headers)


# starlette 基类：fastapi 的 HTTPException 和路由自身的 404 / 405 都走信封
@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    return _envelope(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return _envelope(422, f"{where}: {first.get('msg', 'invalid request')}" if where else "invalid request",
                     code="VALIDATION_ERROR")


@app.exception_handler(DomainError)
async def domain_error(request: Request, exc: DomainError):
    # ProviderNotConfigured 及其它业务错误：400
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, InsufficientInventoryError):
        status_code = 409
    else:
        status_code = 400
    return _envelope(status_code, exc.message, code=exc.code)


@app.exception_handler(IntegrationError)
async def integration_error(request: Request, exc: IntegrationError):
    # provider 侧失败：不把重试细节暴露给调用方
    logger.error("Integration error on %s %s: %s", request.method, request.url.path, exc)
    return _envelope(502, exc.message, code=exc.code)


@app.exception_handler(ValueError)
async def value_error(request: Request, exc: ValueError):
    return _envelope(400, str(exc), code="VALIDATION_ERROR")


app.include_router(api_v1, prefix=settings.API_PREFIX)


@app.on_event("shutdown")
def _shutdown() -> None:
    dispose_engine()


# 根路径健康探活（方便测试或 Docker 健康检查）
@app.get("/")
def root():
    return {
        "app": settings.PROJECT_NAME,
        "env": settings.ENVIRONMENT,
        "ok": True
    }
