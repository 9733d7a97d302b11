"""构建调度器 — 有界工作线程池

每个构建单元（一个定义 × 一个架构）是独立任务，
各自持有 ExecutionGuard，可被单独取消。
同步批量用 run_all（结果与输入顺序一致），异步提交用 submit。
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from buildpkg.core.guard import ExecutionGuard

logger = logging.getLogger(__name__)

# 构建单元：接收守卫，返回任意结果
BuildUnit = Callable[[ExecutionGuard], Any]


@dataclass
class BuildHandle:
    """已提交构建的句柄"""

    build_id: str
    label: str
    future: Future
    guard: ExecutionGuard = field(default_factory=ExecutionGuard)

    @property
    def state(self) -> str:
        if self.future.cancelled():
            return "cancelled"
        if self.future.running():
            return "running"
        if self.future.done():
            return "done"
        return "pending"


class BuildScheduler:
    """可配置并行度的构建调度器

    已结束的句柄最多保留 keep_finished 个（0 为不限），超出后按结束顺序淘汰最早的。
    """

    def __init__(self, max_workers: int = 1, *, keep_finished: int = 200) -> None:
        self.max_workers = max(1, max_workers)
        self.keep_finished = max(0, keep_finished)
        self._executor: ThreadPoolExecutor | None = None
        self._handles: dict[str, BuildHandle] = {}
        self._finished: deque[str] = deque()
        self._lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="buildpkg",
                )
            return self._executor

    def run_all(self, units: list[tuple[str, BuildUnit]]) -> list[Any]:
        """并行执行所有构建单元，返回结果与输入顺序一致"""
        if self.max_workers == 1 or len(units) <= 1:
            results: list[Any] = []
            for label, unit in units:
                logger.info("执行: %s", label)
                results.append(unit(ExecutionGuard()))
            return results

        handles = [self.submit(unit, label=label) for label, unit in units]
        results = []
        for handle in handles:
            results.append(handle.future.result())
            logger.info("完成: %s", handle.label)
        return results

    def submit(self, unit: BuildUnit, *, label: str = "") -> BuildHandle:
        """异步提交构建单元，立即返回句柄"""
        guard = ExecutionGuard()
        build_id = uuid.uuid4().hex[:12]
        future = self._pool().submit(unit, guard)
        handle = BuildHandle(build_id=build_id, label=label or build_id, future=future, guard=guard)
        with self._lock:
            self._handles[build_id] = handle
        future.add_done_callback(lambda _f: self._retire(build_id))
        logger.info("已提交构建: %s (%s)", handle.label, build_id)
        return handle

    def _retire(self, build_id: str) -> None:
        if not self.keep_finished:
            return
        with self._lock:
            if build_id not in self._handles:
                return
            self._finished.append(build_id)
            while len(self._finished) > self.keep_finished:
                evicted = self._finished.popleft()
                self._handles.pop(evicted, None)
                logger.debug("淘汰已结束的构建句柄: %s", evicted)

    def get(self, build_id: str) -> BuildHandle | None:
        with self._lock:
            return self._handles.get(build_id)

    def handles(self) -> list[BuildHandle]:
        with self._lock:
            return list(self._handles.values())

    def cancel(self, build_id: str) -> bool:
        """请求取消：只置位守卫

        运行中的构建在下一次检查时终止；未开始的构建不从队列撤销，
        轮到它时由构建单元自己检查守卫并以取消失败结束，结果总是可取的。
        """
        handle = self.get(build_id)
        if handle is None or handle.future.done():
            return False
        handle.guard.cancel()
        logger.info("已请求取消构建: %s", handle.label)
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
            pending = list(self._handles.values())
        if not wait:
            for handle in pending:
                handle.guard.cancel()
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=not wait)
