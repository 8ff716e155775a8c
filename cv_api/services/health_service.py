"""健康检查数据组装。"""

from __future__ import annotations

from datetime import datetime, timezone
import os
import time
from typing import Any

from cv_api.config import APP_VERSION, NODE_ENV

_STARTED_AT = time.monotonic()


def format_uptime(seconds: float) -> str:
    """把秒数格式化为 `1d 2h 3m 4s`，省略前导的零值单位。"""

    total = max(int(seconds), 0)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if days or hours:
        parts.append(f"{hours}h")
    if days or hours or minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def uptime_seconds() -> float:
    return time.monotonic() - _STARTED_AT


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_health_status() -> dict[str, Any]:
    """返回当前 worker 的健康状态。"""

    return {
        "status": "healthy",
        "message": "CV API Microservice is running normally",
        "timestamp": now_iso(),
        "version": APP_VERSION,
        "uptime": format_uptime(uptime_seconds()),
        "environment": NODE_ENV,
        "processId": os.getpid(),
    }


def build_liveness_status() -> dict[str, Any]:
    """存活探针，只要进程能响应即视为存活。"""

    return {
        "status": "alive",
        "message": "Service is alive",
        "timestamp": now_iso(),
        "uptime": format_uptime(uptime_seconds()),
        "processId": os.getpid(),
    }
