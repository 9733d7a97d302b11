"""工作空间管理 - 为每个构建单元分配独立的 SRC_DIR / PKG_DIR

职责：
- 分配互不重叠的构建目录: <root>/<package>/<arch>-<id>/{src,pkg}
- 构建结束后按策略释放
- 列出和清理本地工作目录
"""

from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workspace:
    """单个构建单元的目录"""

    root: Path
    src_dir: Path
    pkg_dir: Path


class WorkspaceManager:
    """工作空间管理器"""

    def __init__(self, workspace_root: str = "") -> None:
        if not workspace_root:
            from buildpkg.core.config import get_config
            workspace_root = get_config().workspace_dir
        self.workspace_root = Path(workspace_root)

    def allocate(self, package: str, arch: str) -> Workspace:
        """创建新的构建目录，路径已解析为真实绝对路径"""
        base = (self.workspace_root / package).resolve()
        root = base / f"{arch}-{uuid.uuid4().hex[:8]}"
        src, pkg = root / "src", root / "pkg"
        src.mkdir(parents=True)
        pkg.mkdir()
        logger.debug("分配工作空间: %s", root)
        return Workspace(root=root, src_dir=src, pkg_dir=pkg)

    def release(self, workspace: Workspace) -> None:
        shutil.rmtree(workspace.root, ignore_errors=True)
        logger.debug("已释放工作空间: %s", workspace.root)

    def list_workspaces(self) -> list[dict[str, str]]:
        """列出本地保留的构建目录"""
        result: list[dict[str, str]] = []
        if not self.workspace_root.exists():
            return result
        for pkg_dir in sorted(self.workspace_root.iterdir()):
            if not pkg_dir.is_dir():
                continue
            for build_dir in sorted(pkg_dir.iterdir()):
                if not build_dir.is_dir():
                    continue
                arch, _, build_id = build_dir.name.rpartition("-")
                staged = build_dir / "pkg"
                result.append({
                    "package": pkg_dir.name,
                    "arch": arch,
                    "build": build_id,
                    "path": str(build_dir),
                    "staged": "yes" if staged.is_dir() and any(staged.iterdir()) else "no",
                })
        return result

    def clean(self, name: str) -> int:
        """清理某个包的全部构建目录，返回清理的目录数"""
        pkg_dir = self.workspace_root / name
        if not pkg_dir.is_dir() or pkg_dir.resolve().parent != self.workspace_root.resolve():
            return 0
        count = 0
        for child in pkg_dir.iterdir():
            if child.is_dir():
                shutil.rmtree(child, ignore_errors=True)
                count += 1
        logger.info("已清理 %s 的 %d 个工作目录", name, count)
        return count
