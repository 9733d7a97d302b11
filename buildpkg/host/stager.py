"""文件暂存 — 在工作区与 PKG_DIR 之间复制、创建符号链接

调用方（HostApi）负责路径约束，这里只处理已校验的真实路径。
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable

from buildpkg.core.exceptions import HostIOError

logger = logging.getLogger(__name__)


class FilesystemStager:
    """copy / link 实现"""

    def __init__(self, *, link_overwrite: bool = False) -> None:
        self.link_overwrite = link_overwrite

    def copy(
        self,
        src: Path,
        dest: Path,
        *,
        confine: Callable[[Path], Path] | None = None,
    ) -> None:
        """复制文件或目录到 dest（精确目标路径），保留权限位

        目录内的符号链接按链接本身复制，不跟随。
        confine 对每个将要写入的目标路径做校验（越界时抛异常），
        合并进已有目录时，目标树中预先存在的符号链接也会被它拦下。
        """
        if not os.path.lexists(src):
            raise HostIOError(f"复制源不存在: {src}")
        check = confine or (lambda p: p)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if src.is_dir():
                self._copy_tree(src, dest, check)
            else:
                target = check(dest)
                if target.is_dir():
                    raise HostIOError(f"复制目标是已存在的目录: {dest}")
                shutil.copy2(src, target)
        except OSError as e:
            raise HostIOError(f"复制失败 {src} -> {dest}: {e}") from e
        logger.debug("  复制: %s -> %s", src, dest)

    def _copy_tree(self, src: Path, dest: Path, check: Callable[[Path], Path]) -> None:
        target = check(dest)
        if target.is_symlink():
            raise HostIOError(f"拒绝合并进符号链接目录: {dest}")
        target.mkdir(exist_ok=True)
        with os.scandir(src) as entries:
            for entry in sorted(entries, key=lambda e: e.name):
                child = target / entry.name
                if entry.is_symlink():
                    if os.path.lexists(child):
                        raise HostIOError(f"复制目标已存在: {child}")
                    os.symlink(os.readlink(entry.path), child)
                elif entry.is_dir():
                    self._copy_tree(Path(entry.path), child, check)
                else:
                    shutil.copy2(entry.path, check(child))
        shutil.copystat(src, target)

    def link(self, target: str, dest: Path) -> None:
        """在 dest 处创建指向 target 的符号链接

        dest 已存在时失败，除非配置了 link_overwrite（仍不会替换真实目录）。
        """
        if os.path.lexists(dest):
            if not self.link_overwrite:
                raise HostIOError(f"链接目标已存在: {dest}")
            if dest.is_dir() and not dest.is_symlink():
                raise HostIOError(f"拒绝用符号链接覆盖目录: {dest}")
            dest.unlink()
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(target, dest)
        except OSError as e:
            raise HostIOError(f"创建符号链接失败 {dest} -> {target}: {e}") from e
        logger.debug("  链接: %s -> %s", dest, target)
