"""应用配置（通过 .env 覆盖）。"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from dotenv import load_dotenv

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")

START_METHODS = ("spawn", "fork", "forkserver")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def _to_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    """安全解析整数环境变量。"""

    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_choice(value: str | None, choices: tuple[str, ...], default: str) -> str:
    """解析枚举型环境变量，非法值回退默认值。"""

    normalized = str(value or "").strip().lower()
    return normalized if normalized in choices else default


APP_NAME = os.getenv("APP_NAME", "CV API Microservice")
APP_VERSION = "1.0.0"
NODE_ENV = _to_choice(os.getenv("NODE_ENV") or os.getenv("APP_ENV"), ("development", "production"), "development")
API_VERSION = os.getenv("API_VERSION", "v1")
LOG_LEVEL = _to_choice(os.getenv("LOG_LEVEL"), LOG_LEVELS, "info").upper()

APP_PORT = _to_int(os.getenv("PORT"), 3001, minimum=1)
UVICORN_HOST = os.getenv("UVICORN_HOST", "0.0.0.0")
UVICORN_LOG_LEVEL = _to_choice(os.getenv("UVICORN_LOG_LEVEL"), (*LOG_LEVELS, "trace"), "info")

# 0 表示未显式指定，按运行环境推导
CLUSTER_WORKERS = _to_int(os.getenv("CLUSTER_WORKERS"), 0, minimum=0)
CLUSTER_DRAIN_TIMEOUT_MS = _to_int(os.getenv("CLUSTER_DRAIN_TIMEOUT_MS"), 10000, minimum=0)
CLUSTER_POLL_INTERVAL_MS = _to_int(os.getenv("CLUSTER_POLL_INTERVAL_MS"), 500, minimum=10)
CLUSTER_START_METHOD = _to_choice(os.getenv("CLUSTER_START_METHOD"), START_METHODS, "spawn")


def is_production(env: str | None = None) -> bool:
    """判断是否为生产环境。"""

    return (env or NODE_ENV) == "production"


def resolve_worker_count(env: str, override: int = 0, cpu_count: int | None = None) -> int:
    """按显式配置、运行环境、CPU 数推导 worker 数量。"""

    if override >= 1:
        return override
    if not is_production(env):
        return 1
    return max(cpu_count or 1, 1)


@dataclass(frozen=True, slots=True)
class ClusterConfig:
    """主控进程运行配置。"""

    worker_count: int
    drain_timeout_ms: int
    poll_interval_ms: int
    start_method: str
    environment: str
    host: str
    port: int


def load_cluster_config() -> ClusterConfig:
    """从全局配置读取集群启动参数。"""

    return ClusterConfig(
        worker_count=resolve_worker_count(NODE_ENV, CLUSTER_WORKERS, os.cpu_count()),
        drain_timeout_ms=CLUSTER_DRAIN_TIMEOUT_MS,
        poll_interval_ms=CLUSTER_POLL_INTERVAL_MS,
        start_method=CLUSTER_START_METHOD,
        environment=NODE_ENV,
        host=UVICORN_HOST,
        port=APP_PORT,
    )
