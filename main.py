"""项目主启动入口（主控进程编排 HTTP worker 集群）。"""

from __future__ import annotations

import functools
import logging
import os

from cv_api.config import LOG_LEVEL, load_cluster_config
from cv_api.services.cluster_supervisor import ClusterSupervisor
from cv_api.workers.http_worker import build_uvicorn_config, run_http_worker

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def main() -> int:
    """启动主控进程。"""

    config = load_cluster_config()
    logger.info(
        "启动参数: env=%s workers=%d drain_timeout_ms=%d start_method=%s port=%d",
        config.environment,
        config.worker_count,
        config.drain_timeout_ms,
        config.start_method,
        config.port,
    )

    # 监听 socket 由主控进程创建，全部 worker 共享
    sock = build_uvicorn_config(config.host, config.port).bind_socket()
    supervisor = ClusterSupervisor.from_config(config, functools.partial(run_http_worker, sock))
    try:
        exit_code = supervisor.run()
    finally:
        sock.close()

    unreaped = supervisor.unreaped_workers
    if unreaped:
        # multiprocessing 退出钩子会无超时地 join 子进程，这里直接退出
        logger.error("存在无法回收的 worker pids=%s，跳过退出钩子", [handle.pid for handle in unreaped])
        logging.shutdown()
        os._exit(exit_code)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
