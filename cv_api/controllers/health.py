"""健康检查控制器（无需鉴权）。"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter

from cv_api.config import API_VERSION
from cv_api.services import health_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix=f"/api/{API_VERSION}/health", tags=["Health"])


@router.get("")
async def health() -> dict[str, Any]:
    """返回当前 worker 的健康状态。"""

    logger.info("GET /api/%s/health - 健康检查", API_VERSION)
    return health_service.build_health_status()


@router.get("/live")
async def live() -> dict[str, Any]:
    return health_service.build_liveness_status()
