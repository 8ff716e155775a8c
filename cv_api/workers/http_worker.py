"""HTTP worker 进程入口。"""

from __future__ import annotations

import logging
import os
import socket

import uvicorn

from cv_api.config import APP_PORT, LOG_LEVEL, UVICORN_HOST, UVICORN_LOG_LEVEL

logger = logging.getLogger(__name__)


def build_uvicorn_config(host: str = UVICORN_HOST, port: int = APP_PORT) -> uvicorn.Config:
    """构建 worker 使用的 Uvicorn 配置。"""

    return uvicorn.Config(
        "cv_api.main:app",
        host=host,
        port=port,
        log_level=UVICORN_LOG_LEVEL,
    )


def run_http_worker(sock: socket.socket) -> None:
    """在主控进程共享的监听 socket 上运行 HTTP 服务，直到收到终止信号。"""

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logger.info("worker pid=%d 启动 HTTP 服务", os.getpid())

    server = uvicorn.Server(build_uvicorn_config())
    server.run(sockets=[sock])
