"""宿主 API — 脚本通往外部世界的唯一通道

HostApi 绑定到一个 BuildContext，组合四个组件:
  ContentFetcher / GitClient  → 网络获取
  integrity                   → 摘要计算与校验
  ArchiveUnpacker             → 解包
  FilesystemStager            → copy / link
以及 JSON 解码、正则匹配两个纯函数工具。

每个涉及文件系统的调用都先经 PathGuard 解析路径，各操作的基准目录与可达范围:

  操作                         基准      可达
  download / git.clone         SRC_DIR   SRC_DIR
  file_load / file_save        SRC_DIR   SRC_DIR, PKG_DIR
  sha256sum_file / sha256_verify
  unpack_tarball / git.load
  copy 源                      SRC_DIR   SRC_DIR, PKG_DIR
  copy 目标                    PKG_DIR   SRC_DIR, PKG_DIR
  link 目标路径                PKG_DIR   PKG_DIR
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from buildpkg.core.config import Config, get_config
from buildpkg.core.exceptions import FormatError, HostIOError, PatternError
from buildpkg.core.guard import ExecutionGuard
from buildpkg.core.models import BuildContext
from buildpkg.host.cache import DownloadCache
from buildpkg.host.fetcher import ContentFetcher
from buildpkg.host.git import GitClient, RepoHandle, repo_name_from_url
from buildpkg.host.integrity import sha256_bytes, sha256_file, verify_file
from buildpkg.host.paths import PKG, SRC, PathGuard
from buildpkg.host.stager import FilesystemStager
from buildpkg.host.unpacker import ArchiveUnpacker
from buildpkg.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

_BOTH = (SRC, PKG)


# =========================================================================
# 纯函数工具（无需构建上下文）
# =========================================================================

def regex_match(text: str, pattern: str) -> list[str]:
    """返回首个匹配的全部捕获组；未参与匹配的组为 ""

    无捕获组时返回 [整个匹配]，无匹配时返回空列表。
    """
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise PatternError(f"正则表达式无效 {pattern!r}: {e}") from e
    m = compiled.search(text)
    if m is None:
        return []
    if compiled.groups == 0:
        return [m.group(0)]
    return [g if g is not None else "" for g in m.groups()]


def _reject_constant(name: str) -> Any:
    raise FormatError(f"JSON 不允许 {name}")


def json_decode(text: str) -> Any:
    """解码标准 JSON，null 解码为 None"""
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise FormatError(f"JSON 格式错误: {e}") from e


def sha256sum_string(text: str | bytes) -> str:
    return sha256_bytes(text)


# =========================================================================
# 绑定到构建上下文的宿主 API
# =========================================================================

class HostApi:
    """单个构建上下文的宿主能力集合"""

    def __init__(
        self,
        context: BuildContext,
        *,
        config: Config | None = None,
        cache: DownloadCache | None = None,
        guard: ExecutionGuard | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        cfg = config or get_config()
        self.context = context
        self.guard = guard or ExecutionGuard()
        self.paths = PathGuard(context.src_dir, context.pkg_dir)
        self.fetcher = ContentFetcher(
            timeout=cfg.download_timeout,
            retries=cfg.download_retries,
            backoff=cfg.retry_backoff,
            schemes=cfg.url_schemes,
            allow_file=cfg.allow_file_urls,
            cache=cache,
            guard=self.guard,
        )
        self.git = GitClient(
            executor=executor,
            guard=self.guard,
            schemes=cfg.git_url_schemes,
            allow_file=cfg.allow_file_urls,
            timeout=cfg.git_timeout,
            retries=cfg.download_retries,
            backoff=cfg.retry_backoff,
        )
        self.unpacker = ArchiveUnpacker(self.guard)
        self.stager = FilesystemStager(link_overwrite=cfg.link_overwrite)

    # ---- 网络 ----

    def download(self, source_url: str, destination: str, sha256: str | None = None) -> str:
        self.guard.check()
        dest = self.paths.resolve(destination, base=SRC, allowed=(SRC,))
        self.fetcher.fetch(source_url, dest, sha256=sha256 or "")
        return str(dest)

    def git_clone(self, url: str, destination: str | None = None) -> RepoHandle:
        self.guard.check()
        target = destination or repo_name_from_url(url)
        dest = self.paths.resolve(target, base=SRC, allowed=(SRC,))
        return self.git.clone(url, dest)

    def git_load(self, path: str) -> RepoHandle:
        self.guard.check()
        return self.git.load(self.paths.resolve(path, base=SRC, allowed=_BOTH))

    # ---- 文件 ----

    def file_load(self, path: str) -> str:
        self.guard.check()
        p = self.paths.resolve(path, base=SRC, allowed=_BOTH)
        try:
            return p.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise HostIOError(f"文件不是有效的 UTF-8 文本: {path}") from e
        except OSError as e:
            raise HostIOError(f"读取文件失败 {path}: {e.strerror or e}") from e

    def file_save(self, path: str, contents: str | bytes) -> None:
        self.guard.check()
        p = self.paths.resolve(path, base=SRC, allowed=_BOTH)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(contents, bytes):
                p.write_bytes(contents)
            else:
                p.write_text(contents, encoding="utf-8")
        except OSError as e:
            raise HostIOError(f"写入文件失败 {path}: {e.strerror or e}") from e

    # ---- 完整性 ----

    def sha256sum_file(self, path: str) -> str:
        self.guard.check()
        return sha256_file(self.paths.resolve(path, base=SRC, allowed=_BOTH))

    def sha256_verify(self, path: str, expected: str) -> str:
        self.guard.check()
        return verify_file(self.paths.resolve(path, base=SRC, allowed=_BOTH), expected)

    # ---- 解包 / 暂存 ----

    def unpack_tarball(self, archive_path: str, dest_path: str) -> None:
        self.guard.check()
        archive = self.paths.resolve(archive_path, base=SRC, allowed=_BOTH)
        dest = self.paths.resolve(dest_path, base=SRC, allowed=_BOTH)
        self.unpacker.unpack(archive, dest)

    def copy(self, source: str, destination: str) -> None:
        self.guard.check()
        src = self.paths.resolve(source, base=SRC, allowed=_BOTH)
        dest = self.paths.resolve(destination, base=PKG, allowed=_BOTH)
        self.stager.copy(src, dest, confine=self._confine_copy_target)

    def _confine_copy_target(self, target: Path) -> Path:
        return self.paths.resolve(str(target), base=PKG, allowed=_BOTH)

    def link(self, target: str, destination: str) -> None:
        self.guard.check()
        dest = self.paths.resolve(destination, base=PKG, allowed=(PKG,), follow_final=False)
        self.stager.link(self.paths.check_link_target(target, dest), dest)
