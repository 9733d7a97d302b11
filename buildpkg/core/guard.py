"""构建执行守卫 — 取消信号 + 阶段截止时间

同一构建单元的沙箱、宿主 API、子进程调用共享一个 ExecutionGuard：
- 编排器在每个阶段开始时设置截止时间
- Lua 指令钩子、下载循环、子进程轮询都调用 check()
- 调度器通过 cancel() 从其他线程请求取消
- 致命错误（越权）经 fail() 记录后一直生效，脚本无法用 pcall 吞掉
"""

from __future__ import annotations

import threading
import time

from buildpkg.core.exceptions import BuildCancelledError, EngineError, ScriptTimeoutError


class ExecutionGuard:
    """单个构建单元的取消 / 超时控制"""

    def __init__(self, event: threading.Event | None = None) -> None:
        self._event = event or threading.Event()
        self.phase = ""
        self.deadline: float | None = None
        self.timeout: float = 0
        self._failure: EngineError | None = None

    @property
    def event(self) -> threading.Event:
        return self._event

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    @property
    def failure(self) -> EngineError | None:
        return self._failure

    def fail(self, error: EngineError) -> None:
        """记录致命错误，之后每次 check() 都重新抛出（只保留第一个）"""
        if self._failure is None:
            self._failure = error

    def start_phase(self, phase: str, timeout: float = 0) -> None:
        """进入阶段，timeout<=0 表示不限时"""
        self.phase = phase
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout if timeout > 0 else None

    def end_phase(self) -> None:
        self.deadline = None
        self.timeout = 0

    def remaining(self) -> float | None:
        """当前阶段剩余秒数，不限时返回 None"""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check(self) -> None:
        """已记录致命错误时重新抛出；已取消抛 BuildCancelledError，已超时抛 ScriptTimeoutError"""
        if self._failure is not None:
            raise self._failure
        if self._event.is_set():
            raise BuildCancelledError(f"构建已取消 (阶段 {self.phase or '-'})")
        left = self.remaining()
        if left is not None and left <= 0:
            raise ScriptTimeoutError(
                f"阶段 {self.phase or '-'} 超过时间预算 {self.timeout:g} 秒"
            )

    def bounded(self, timeout: float) -> float:
        """把单次阻塞调用的超时收敛到阶段剩余时间内"""
        self.check()
        left = self.remaining()
        if left is None:
            return timeout
        return max(0.01, min(timeout, left)) if timeout > 0 else max(0.01, left)

    def sleep(self, seconds: float) -> None:
        """可被取消打断的等待"""
        left = self.remaining()
        if left is not None:
            seconds = min(seconds, max(0.0, left))
        self._event.wait(seconds)
        self.check()
