"""Git 仓库操作 — clone / load 以及 tag、revision 查询

所有 git 调用经 CommandExecutor 执行，受阶段超时和取消信号约束。
clone 的网络类失败按 NetworkError 处理并做有界重试，
其余失败（非法仓库、不存在的 tag）抛 GitError。
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path

from buildpkg.core.exceptions import GitError, NetworkError, NetworkTimeoutError
from buildpkg.core.guard import ExecutionGuard
from buildpkg.utils.net import validate_url_scheme
from buildpkg.utils.shell import CommandExecutor, CommandResult, get_executor

logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_./@+\-]*$")
_NETWORK_HINTS = (
    "could not resolve host",
    "unable to access",
    "connection refused",
    "connection timed out",
    "could not read from remote repository",
    "operation timed out",
    "early eof",
)


def _check_ref(ref: str) -> str:
    if not isinstance(ref, str) or not _SAFE_REF_RE.match(ref) or ".." in ref:
        raise GitError(f"tag 名称不合法: {ref!r}")
    return ref


def repo_name_from_url(url: str) -> str:
    """从 URL 推导默认检出目录名: https://x/y/vrdpkg.git -> vrdpkg"""
    tail = url.rstrip("/").replace(":", "/").split("/")[-1]
    name = tail.removesuffix(".git")
    if not name or name in (".", ".."):
        raise GitError(f"无法从 URL 推导目录名: {url}")
    return name


class GitClient:
    """git 命令封装"""

    def __init__(
        self,
        *,
        executor: CommandExecutor | None = None,
        guard: ExecutionGuard | None = None,
        schemes: tuple[str, ...] | list[str] = ("http", "https", "git", "ssh"),
        allow_file: bool = False,
        timeout: float = 600,
        retries: int = 0,
        backoff: float = 1.0,
    ) -> None:
        self._executor = executor or get_executor()
        self.guard = guard or ExecutionGuard()
        self.schemes = tuple(schemes)
        self.allow_file = allow_file
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    def run(self, args: list[str], *, cwd: Path | None = None) -> CommandResult:
        """执行 git 子命令；超时时区分阶段超时与单次命令超时"""
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}
        timeout = self.guard.bounded(self.timeout)
        try:
            return self._executor.execute(
                ["git", *args], cwd=str(cwd) if cwd else ".",
                env=env, timeout=timeout, cancel=self.guard.event,
            )
        except subprocess.TimeoutExpired as e:
            self.guard.check()
            raise NetworkTimeoutError(f"git {args[0]} 超时 ({timeout:g} 秒)") from e
        except FileNotFoundError as e:
            raise GitError("未找到 git 可执行文件") from e

    def clone(self, url: str, dest: Path) -> RepoHandle:
        validate_url_scheme(url, self.schemes, allow_file=self.allow_file, context="git.clone")
        if dest.exists() and any(dest.iterdir()):
            raise GitError(f"克隆目标已存在且非空: {dest}")
        dest.parent.mkdir(parents=True, exist_ok=True)

        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            logger.info("  克隆仓库: %s -> %s", url, dest)
            r = self.run(["clone", "--quiet", "--", url, str(dest)])
            if r.success:
                return RepoHandle(dest, self)
            shutil.rmtree(dest, ignore_errors=True)
            stderr = r.stderr.strip()
            if not any(h in stderr.lower() for h in _NETWORK_HINTS):
                raise GitError(f"git clone 失败 (rc={r.returncode}): {stderr[:300]}")
            if attempt == attempts:
                raise NetworkError(f"git clone 失败: {url}: {stderr[:300]}")
            delay = self.backoff * (2 ** (attempt - 1))
            logger.warning("  克隆失败 (%d/%d)，%.1f 秒后重试: %s", attempt, attempts, delay, stderr[:200])
            self.guard.sleep(delay)
        raise AssertionError("unreachable")

    def load(self, path: Path) -> RepoHandle:
        """打开已有检出，path 必须是工作树根目录"""
        if not path.is_dir():
            raise GitError(f"目录不存在: {path}")
        r = self.run(["rev-parse", "--show-toplevel"], cwd=path)
        if not r.success or Path(r.stdout.strip()).resolve() != path.resolve():
            raise GitError(f"不是 git 仓库根目录: {path}")
        return RepoHandle(path, self)


class RepoHandle:
    """已克隆或已加载的仓库"""

    def __init__(self, path: Path, client: GitClient) -> None:
        self.path = path
        self._client = client

    def __repr__(self) -> str:
        return f"RepoHandle({str(self.path)!r})"

    def get_tags(self) -> list[str]:
        """按版本号从新到旧排序的 tag 列表，无 tag 时为空列表"""
        r = self._client.run(["tag", "--list", "--sort=-v:refname"], cwd=self.path)
        if not r.success:
            raise GitError(f"读取 tag 失败: {r.stderr.strip()[:300]}")
        return [line.strip() for line in r.stdout.splitlines() if line.strip()]

    def get_revision(self, tag: str) -> str:
        """tag 指向的提交哈希"""
        _check_ref(tag)
        r = self._client.run(
            ["rev-parse", "--verify", "--quiet", f"refs/tags/{tag}^{{commit}}"],
            cwd=self.path,
        )
        if not r.success or not r.stdout.strip():
            raise GitError(f"tag 不存在: {tag}")
        return r.stdout.strip()

    def commits_since(self, tag: str) -> int:
        """tag 到 HEAD 之间的提交数"""
        revision = self.get_revision(tag)
        r = self._client.run(["rev-list", "--count", f"{revision}..HEAD"], cwd=self.path)
        if not r.success:
            raise GitError(f"统计提交数失败: {r.stderr.strip()[:300]}")
        return int(r.stdout.strip() or 0)
