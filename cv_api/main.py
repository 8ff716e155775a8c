"""FastAPI 应用入口（由每个 HTTP worker 加载）。"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import API_VERSION, APP_NAME, APP_VERSION, NODE_ENV, is_production
from .controllers.health import router as health_router
from .services.health_service import now_iso

logger = logging.getLogger(__name__)

API_PREFIX = f"/api/{API_VERSION}"


def available_endpoints() -> dict[str, str]:
    """返回对外公布的端点列表。"""

    return {
        "documentation": "/docs",
        "health": f"{API_PREFIX}/health",
        "liveness": f"{API_PREFIX}/health/live",
    }


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期：记录 worker 内 HTTP 服务的启停。"""

    logger.info("worker pid=%d HTTP 服务已就绪", os.getpid())
    try:
        yield
    finally:
        logger.info("worker pid=%d HTTP 服务已关闭", os.getpid())


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
app.include_router(health_router)


@app.get("/")
async def root() -> dict[str, Any]:
    endpoints = available_endpoints()
    return {
        "message": APP_NAME,
        "version": APP_VERSION,
        "environment": NODE_ENV,
        "documentation": endpoints["documentation"],
        "health": endpoints["health"],
        "endpoints": {"health": endpoints["health"], "liveness": endpoints["liveness"]},
        "timestamp": now_iso(),
    }


@app.get(API_PREFIX)
async def api_info() -> dict[str, Any]:
    endpoints = available_endpoints()
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "description": "API for managing CV website projects and contact messages",
        "documentation": endpoints.pop("documentation"),
        "endpoints": endpoints,
        "timestamp": now_iso(),
    }


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """未匹配路由返回统一 JSON，其余 HTTP 异常保留状态码。"""

    if exc.status_code == 404:
        logger.warning("404 - 路由不存在: %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": "Route not found",
                "message": f"The endpoint {request.method} {request.url.path} does not exist",
                "availableEndpoints": available_endpoints(),
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "message": str(exc.detail)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """兜底异常处理，生产环境不暴露错误详情。"""

    logger.error("请求处理异常 %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "message": "Something went wrong" if is_production() else str(exc),
        },
    )
