"""子进程执行工具

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
LocalExecutor 以轮询方式等待子进程，期间响应取消信号和超时，
两者都会先 kill 子进程再抛出异常，不遗留孤儿进程。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Protocol

from buildpkg.core.exceptions import BuildCancelledError

logger = logging.getLogger(__name__)

# 等待子进程时检查取消信号的间隔（秒）
_POLL_INTERVAL = 0.2


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        """执行命令并返回结果

        Raises:
            subprocess.TimeoutExpired: 超过 timeout 秒
            BuildCancelledError: cancel 被置位
        """
        ...


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

class LocalExecutor:
    """本地命令执行器（默认实现）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        deadline = time.monotonic() + timeout if timeout else None
        proc = subprocess.Popen(
            args, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            text=True, cwd=cwd, env=env,
        )
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    self._kill(proc)
                    raise BuildCancelledError(f"命令已取消: {args[0]}") from None
                if deadline is not None and time.monotonic() > deadline:
                    self._kill(proc)
                    raise subprocess.TimeoutExpired(args, timeout or 0) from None
        return CommandResult(returncode=proc.returncode, stdout=stdout, stderr=stderr)

    @staticmethod
    def _kill(proc: subprocess.Popen[str]) -> None:
        proc.kill()
        proc.communicate()
        logger.debug("已终止子进程 pid=%d", proc.pid)


# =========================================================================
# 全局默认执行器（可替换）
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor
