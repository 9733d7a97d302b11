"""核心数据模型

数据类:
- Phase: 生命周期阶段（固定顺序）
- BuildContext: 单次构建、单个架构的可变上下文
- PackageRecord: Packaged 终态时交给包数据库的结构化记录
"""

from __future__ import annotations

import os
import platform
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Phase(str, Enum):
    """生命周期阶段，LOAD 表示尚未进入任何钩子的定义加载阶段"""

    LOAD = "LOAD"
    SOURCES = "SOURCES"
    VERSION = "VERSION"
    PREPARE = "PREPARE"
    BUILD = "BUILD"
    PACKAGE = "PACKAGE"


# 钩子执行顺序
LIFECYCLE: tuple[Phase, ...] = (
    Phase.SOURCES, Phase.VERSION, Phase.PREPARE, Phase.BUILD, Phase.PACKAGE,
)
HOOK_NAMES: tuple[str, ...] = tuple(p.value for p in LIFECYCLE)

# 注入到脚本环境的只读上下文变量
CONTEXT_GLOBALS: tuple[str, ...] = ("ARCH", "SRC_DIR", "PKG_DIR", "PKG_VERSION")

DEFAULT_VERSION = "0.0.0"

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8": "aarch64",
}


def normalize_arch(machine: str) -> str:
    """把 platform.machine() 的各种写法统一为 x86_64 / aarch64 等"""
    m = machine.strip().lower()
    return _ARCH_ALIASES.get(m, m)


def host_arch() -> str:
    """当前宿主机架构"""
    return normalize_arch(platform.machine())


@dataclass
class BuildContext:
    """单次构建的上下文

    SRC_DIR / PKG_DIR 由引擎分配，始终为绝对路径且互不嵌套。
    version 在 VERSION 阶段之后写入一次，随后以 PKG_VERSION 只读暴露给脚本。
    """

    arch: str
    src_dir: Path
    pkg_dir: Path
    version: str | None = None

    def __post_init__(self) -> None:
        self.src_dir = Path(self.src_dir)
        self.pkg_dir = Path(self.pkg_dir)
        for label, p in (("SRC_DIR", self.src_dir), ("PKG_DIR", self.pkg_dir)):
            if not p.is_absolute():
                raise ValueError(f"{label} 必须为绝对路径: {p}")
        src, pkg = os.path.normpath(self.src_dir), os.path.normpath(self.pkg_dir)
        if os.path.commonpath([src, pkg]) in (src, pkg):
            raise ValueError(f"SRC_DIR 与 PKG_DIR 不能重叠: {src} / {pkg}")

    def script_globals(self) -> dict[str, str | None]:
        return {
            "ARCH": self.arch,
            "SRC_DIR": str(self.src_dir),
            "PKG_DIR": str(self.pkg_dir),
            "PKG_VERSION": self.version,
        }


@dataclass(frozen=True)
class PackageRecord:
    """交给外部已安装包登记表的记录，文件清单以 PKG_DIR 为根"""

    name: str
    version: str
    arch: str
    provides: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    pkg_dir: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["provides"] = list(self.provides)
        d["files"] = list(self.files)
        return d
