"""路径约束 — 所有文件系统类宿主调用的唯一入口

解析规则:
1. 位于工作区根目录（SRC_DIR / PKG_DIR）内的绝对路径按原样使用，
   但必须属于该操作允许的根，否则拒绝
2. 其余路径（相对路径或以 "/" 开头的安装根路径）以操作的基准目录为根，
   例如 download(url, "/index.json") -> SRC_DIR/index.json，
   copy(x, "/usr/bin/zig") 的目标 -> PKG_DIR/usr/bin/zig
3. 规范化后做词法包含检查（拦截 ".." 穿越），
   再做 realpath 检查（拦截经由符号链接的逃逸）

越界一律抛 CapabilityError，不做静默修正。
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from buildpkg.core.exceptions import CapabilityError

SRC = "src"
PKG = "pkg"


def _within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class PathGuard:
    """把脚本给出的路径解析为工作区内的真实路径"""

    def __init__(self, src_dir: str | Path, pkg_dir: str | Path) -> None:
        self._roots = {
            SRC: os.path.realpath(src_dir),
            PKG: os.path.realpath(pkg_dir),
        }

    def root(self, name: str) -> Path:
        return Path(self._roots[name])

    def resolve(
        self,
        path: str,
        *,
        base: str = SRC,
        allowed: Iterable[str] = (SRC,),
        follow_final: bool = True,
    ) -> Path:
        """解析并校验路径

        参数:
            path: 脚本传入的路径
            base: 非工作区绝对路径的基准根
            allowed: 允许落入的根
            follow_final: False 时只对父目录做 realpath（用于创建符号链接）
        """
        if not isinstance(path, str) or not path:
            raise CapabilityError("路径不能为空")
        if "\x00" in path:
            raise CapabilityError(f"路径包含非法字符: {path!r}")

        allowed_roots = [self._roots[a] for a in allowed]
        candidate = ""
        if os.path.isabs(path):
            normalized = os.path.normpath(path)
            owner = next((r for r in self._roots.values() if _within(normalized, r)), None)
            if owner is not None:
                if owner not in allowed_roots:
                    raise CapabilityError(f"该操作不允许访问此目录: {path}")
                candidate = normalized
        if not candidate:
            candidate = os.path.normpath(
                os.path.join(self._roots[base], path.lstrip("/"))
            )

        if not any(_within(candidate, r) for r in allowed_roots):
            raise CapabilityError(f"路径越界: {path}")

        if follow_final:
            real = os.path.realpath(candidate)
        else:
            real = os.path.join(
                os.path.realpath(os.path.dirname(candidate)),
                os.path.basename(candidate),
            )
        if not any(_within(real, r) for r in allowed_roots):
            raise CapabilityError(f"路径经符号链接逃逸出工作区: {path}")
        return Path(candidate)

    def check_link_target(self, target: str, link_path: Path) -> str:
        """校验符号链接的目标文本

        绝对目标是安装根内路径，原样保存；
        相对目标按链接所在目录展开后不得离开 PKG_DIR。
        """
        if not isinstance(target, str) or not target or "\x00" in target:
            raise CapabilityError(f"符号链接目标不合法: {target!r}")
        if os.path.isabs(target):
            return target
        expanded = os.path.normpath(os.path.join(os.path.dirname(link_path), target))
        if not _within(expanded, self._roots[PKG]):
            raise CapabilityError(f"符号链接目标越界: {target}")
        return target
