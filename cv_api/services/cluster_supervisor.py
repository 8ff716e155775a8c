"""HTTP worker 集群编排服务（主控进程）。

主控进程只负责进程生命周期：按目标数量拉起 worker、worker 异常退出时补位、
收到终止信号后排空并在超时后强制结束。全部状态变更都在单线程控制循环中完成，
信号处理函数只负责投递事件。
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
import functools
import logging
import multiprocessing
from multiprocessing.process import BaseProcess
import signal
import time
from typing import Callable, Protocol

from cv_api.config import ClusterConfig

logger = logging.getLogger(__name__)

WorkerEntryPoint = Callable[[], object]

REAP_TIMEOUT_SECONDS = 1.0


class SupervisorStartupError(RuntimeError):
    """启动阶段无法创建 worker。"""


class SupervisorPhase(str, Enum):
    """主控进程生命周期阶段。"""

    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class WorkerHandle(Protocol):
    """受管 worker 进程句柄。"""

    @property
    def pid(self) -> int: ...

    @property
    def exit_code(self) -> int | None: ...

    def is_alive(self) -> bool: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    def join(self, timeout: float | None = None) -> None: ...


class ProcessWorkerHandle:
    """基于 multiprocessing.Process 的 worker 句柄。"""

    def __init__(self, process: BaseProcess) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return int(self._process.pid or 0)

    @property
    def exit_code(self) -> int | None:
        return self._process.exitcode

    def is_alive(self) -> bool:
        return self._process.is_alive()

    def terminate(self) -> None:
        self._process.terminate()

    def kill(self) -> None:
        self._process.kill()

    def join(self, timeout: float | None = None) -> None:
        self._process.join(timeout)


def _bootstrap_worker(entry_point: WorkerEntryPoint) -> None:
    """子进程入口：恢复默认信号处理后执行 worker。"""

    # fork 模式下子进程会继承主控进程的信号处理函数
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    signal.signal(signal.SIGINT, signal.SIG_DFL)
    entry_point()


class ProcessSpawner:
    """使用 multiprocessing 拉起 worker 进程。"""

    def __init__(self, start_method: str = "spawn") -> None:
        self._context = multiprocessing.get_context(start_method)

    def spawn(self, entry_point: WorkerEntryPoint) -> WorkerHandle:
        process = self._context.Process(
            target=functools.partial(_bootstrap_worker, entry_point),
            name="cv-api-worker",
        )
        process.start()
        return ProcessWorkerHandle(process)


class Spawner(Protocol):
    def spawn(self, entry_point: WorkerEntryPoint) -> WorkerHandle: ...


@dataclass(frozen=True, slots=True)
class WorkerExited:
    """某个 worker 已退出。"""

    pid: int
    exit_code: int | None
    signal_name: str | None


@dataclass(frozen=True, slots=True)
class ShutdownRequested:
    """收到终止请求。"""

    signal_name: str
    drain_timeout_ms: int | None = None


@dataclass(frozen=True, slots=True)
class DrainTimedOut:
    """排空等待已超时。"""


SupervisorEvent = WorkerExited | ShutdownRequested | DrainTimedOut


@dataclass(slots=True)
class SupervisorState:
    """主控进程状态表，仅由控制循环修改。"""

    target_count: int
    phase: SupervisorPhase = SupervisorPhase.RUNNING
    workers: dict[int, WorkerHandle] = field(default_factory=dict)
    exited_pids: set[int] = field(default_factory=set)
    killed_pids: set[int] = field(default_factory=set)
    drain_deadline: float | None = None
    restarts: int = 0

    @property
    def live_count(self) -> int:
        return len(self.workers)

    def reset(self) -> None:
        """恢复为初始 running 状态（保留目标数量）。"""

        self.phase = SupervisorPhase.RUNNING
        self.workers.clear()
        self.exited_pids.clear()
        self.killed_pids.clear()
        self.drain_deadline = None
        self.restarts = 0


def describe_exit(exit_code: int | None) -> tuple[int | None, str | None]:
    """拆分退出码与终止信号，负数退出码表示被信号结束。"""

    if exit_code is None or exit_code >= 0:
        return exit_code, None
    try:
        return None, signal.Signals(-exit_code).name
    except ValueError:
        return None, str(-exit_code)


class ClusterSupervisor:
    """负责拉起并守护 HTTP worker 进程池。"""

    def __init__(
        self,
        entry_point: WorkerEntryPoint,
        *,
        target_count: int,
        drain_timeout_ms: int = 10000,
        poll_interval_ms: int = 500,
        spawner: Spawner | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if target_count < 1:
            raise ValueError("target_count 必须 >= 1")
        if drain_timeout_ms < 0:
            raise ValueError("drain_timeout_ms 不能为负数")

        self.state = SupervisorState(target_count=target_count)
        self.drain_timeout_ms = drain_timeout_ms
        self.poll_interval = max(poll_interval_ms, 1) / 1000
        self._entry_point = entry_point
        self._spawner: Spawner = spawner or ProcessSpawner()
        self._clock = clock
        self._sleep = sleep
        self._events: deque[SupervisorEvent] = deque()

    @classmethod
    def from_config(cls, config: ClusterConfig, entry_point: WorkerEntryPoint) -> ClusterSupervisor:
        """按集群配置构建主控进程。"""

        return cls(
            entry_point,
            target_count=config.worker_count,
            drain_timeout_ms=config.drain_timeout_ms,
            poll_interval_ms=config.poll_interval_ms,
            spawner=ProcessSpawner(config.start_method),
        )

    @property
    def phase(self) -> SupervisorPhase:
        return self.state.phase

    @property
    def workers(self) -> list[WorkerHandle]:
        """返回当前存活的 worker 句柄。"""

        return list(self.state.workers.values())

    @property
    def unreaped_workers(self) -> list[WorkerHandle]:
        """停止后仍未回收的 worker（SIGKILL 后依旧存活）。"""

        if self.state.phase is not SupervisorPhase.STOPPED:
            return []
        return [handle for handle in self.state.workers.values() if handle.is_alive()]

    def _spawn_worker(self) -> WorkerHandle:
        handle = self._spawner.spawn(self._entry_point)
        self.state.workers[handle.pid] = handle
        return handle

    def start(self) -> None:
        """按目标数量拉起全部 worker，任一失败即视为启动失败。"""

        logger.info("主控进程启动 target_workers=%d", self.state.target_count)
        for index in range(self.state.target_count):
            try:
                handle = self._spawn_worker()
            except Exception as exc:
                raise SupervisorStartupError(f"第 {index + 1} 个 worker 启动失败: {exc}") from exc
            logger.info("worker 已启动 index=%d pid=%d", index, handle.pid)

    def submit(self, event: SupervisorEvent) -> None:
        """投递事件，由控制循环按顺序处理。"""

        self._events.append(event)

    def dispatch(self, event: SupervisorEvent) -> None:
        """执行单个事件的状态迁移，异常只记录不外抛。"""

        try:
            if isinstance(event, WorkerExited):
                self._on_worker_exited(event)
            elif isinstance(event, ShutdownRequested):
                self._on_shutdown_requested(event)
            elif isinstance(event, DrainTimedOut):
                self._on_drain_timed_out()
        except Exception:
            logger.exception("处理集群事件失败 event=%r", event)

    def on_worker_exit(self, handle: WorkerHandle, exit_code: int | None, signal_name: str | None) -> None:
        """worker 退出回调。"""

        self.dispatch(WorkerExited(pid=handle.pid, exit_code=exit_code, signal_name=signal_name))

    def shutdown(self, signal_name: str = "SIGTERM", drain_timeout_ms: int | None = None) -> None:
        """发起优雅停机，重复调用不会重复发送信号。"""

        self.dispatch(ShutdownRequested(signal_name=signal_name, drain_timeout_ms=drain_timeout_ms))

    def _on_worker_exited(self, event: WorkerExited) -> None:
        handle = self.state.workers.pop(event.pid, None)
        if handle is None:
            logger.debug("忽略未知或重复的退出事件 pid=%d", event.pid)
            return
        self.state.exited_pids.add(event.pid)

        if self.state.phase is not SupervisorPhase.RUNNING:
            logger.info(
                "worker 停机期间退出 pid=%d code=%s signal=%s",
                event.pid,
                event.exit_code,
                event.signal_name,
            )
            if self.state.phase is SupervisorPhase.DRAINING and not self.state.workers:
                self._mark_stopped()
            return

        logger.error(
            "worker 异常退出 pid=%d code=%s signal=%s",
            event.pid,
            event.exit_code,
            event.signal_name,
        )
        replacement = self._spawn_worker()
        self.state.restarts += 1
        logger.info("已启动替换 worker pid=%d replaced=%d", replacement.pid, event.pid)

    def _on_shutdown_requested(self, event: ShutdownRequested) -> None:
        if self.state.phase is not SupervisorPhase.RUNNING:
            logger.info("已处于 %s 阶段，忽略重复的 %s", self.state.phase.value, event.signal_name)
            return

        timeout_ms = self.drain_timeout_ms if event.drain_timeout_ms is None else event.drain_timeout_ms
        self.state.phase = SupervisorPhase.DRAINING
        self.state.drain_deadline = self._clock() + timeout_ms / 1000
        logger.info(
            "主控进程收到 %s，停止 %d 个 worker，排空超时 %d ms",
            event.signal_name,
            self.state.live_count,
            timeout_ms,
        )

        for handle in list(self.state.workers.values()):
            try:
                handle.terminate()
            except Exception:
                logger.exception("发送 SIGTERM 失败 pid=%d", handle.pid)

        if not self.state.workers:
            self._mark_stopped()

    def _on_drain_timed_out(self) -> None:
        if self.state.phase is not SupervisorPhase.DRAINING:
            return

        for handle in list(self.state.workers.values()):
            if handle.pid in self.state.killed_pids:
                continue
            logger.warning("worker 未在排空超时内退出，强制结束 pid=%d", handle.pid)
            self.state.killed_pids.add(handle.pid)
            try:
                handle.kill()
            except Exception:
                logger.exception("发送 SIGKILL 失败 pid=%d", handle.pid)

        for pid, handle in list(self.state.workers.items()):
            handle.join(REAP_TIMEOUT_SECONDS)
            if not handle.is_alive():
                self.state.workers.pop(pid, None)
                self.state.exited_pids.add(pid)
            else:
                logger.error("worker 在 SIGKILL 后仍未退出，放弃回收 pid=%d", pid)
        self._mark_stopped()

    def _mark_stopped(self) -> None:
        self.state.phase = SupervisorPhase.STOPPED
        self.state.drain_deadline = None
        logger.info("全部 worker 已退出，主控进程停止 restarts=%d", self.state.restarts)

    def _poll_workers(self) -> None:
        """轮询 worker 状态，把退出转换为事件。"""

        for handle in list(self.state.workers.values()):
            exit_code = handle.exit_code
            if exit_code is None:
                continue
            code, signal_name = describe_exit(exit_code)
            self.dispatch(WorkerExited(pid=handle.pid, exit_code=code, signal_name=signal_name))

    def _replenish(self) -> None:
        """补齐因替换失败留下的缺口。"""

        missing = self.state.target_count - self.state.live_count
        for _ in range(missing):
            try:
                handle = self._spawn_worker()
            except Exception:
                logger.exception("补位 worker 启动失败，下个周期重试")
                return
            self.state.restarts += 1
            logger.info("已补位 worker pid=%d", handle.pid)

    def tick(self) -> None:
        """执行一轮控制循环。"""

        while self._events:
            self.dispatch(self._events.popleft())

        self._poll_workers()

        deadline = self.state.drain_deadline
        if self.state.phase is SupervisorPhase.DRAINING and deadline is not None and self._clock() >= deadline:
            self.dispatch(DrainTimedOut())

        if self.state.phase is SupervisorPhase.RUNNING:
            self._replenish()

    def _register_signal_handlers(self) -> None:
        """注册终止信号处理。"""

        def _handle_signal(signum: int, _frame: object) -> None:
            self.submit(ShutdownRequested(signal_name=signal.Signals(signum).name))

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

    def _run_until_stopped(self) -> None:
        while self.state.phase is not SupervisorPhase.STOPPED:
            self.tick()
            if self.state.phase is not SupervisorPhase.STOPPED:
                self._sleep(self.poll_interval)

    def run(self) -> int:
        """启动并守护全部 worker，返回退出码。"""

        self._register_signal_handlers()
        try:
            self.start()
        except SupervisorStartupError:
            logger.exception("worker 启动失败，主控进程退出")
            self.shutdown("startup-failure")
            self._run_until_stopped()
            return 1

        self._run_until_stopped()
        return 0
