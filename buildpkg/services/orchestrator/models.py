"""编排器数据模型

数据类：
- BuildRequest: 一个构建单元的请求（一个定义 × 一个架构）
- BuildOutcome: 终态报告（Packaged / Resolved / Failed）
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from buildpkg.core.exceptions import EngineError
from buildpkg.core.models import PackageRecord, Phase


class BuildMode(str, Enum):
    """FULL 走完整生命周期；VERSION_ONLY 只解析版本（更新检查 / dry-run）"""

    FULL = "full"
    VERSION_ONLY = "version"


class BuildStatus(str, Enum):
    PACKAGED = "packaged"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class BuildRequest:
    """构建请求 — source 为空时从 definition 路径读取"""

    definition: Path
    arch: str = ""
    mode: BuildMode = BuildMode.FULL
    require_version: bool = False
    with_sources: bool = False
    keep_failed: bool | None = None
    source: str = ""

    @property
    def chunk_name(self) -> str:
        return f"{self.definition.parent.name}/{self.definition.name}"


@dataclass
class BuildOutcome:
    """构建终态报告"""

    name: str
    arch: str
    status: BuildStatus = BuildStatus.FAILED
    phase: Phase | None = None
    error: EngineError | None = None
    version: str = ""
    record: PackageRecord | None = None
    src_dir: str = ""
    pkg_dir: str = ""
    duration: float = 0.0
    steps: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status != BuildStatus.FAILED

    def failure_report(self) -> str:
        """name/arch/phase/code: message 形式的一行失败报告"""
        if self.success or self.error is None:
            return ""
        phase = self.phase.value if self.phase else "-"
        return f"{self.name}/{self.arch or '-'}/{phase}/{self.error.code}: {self.error}"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "arch": self.arch,
            "status": self.status.value,
            "version": self.version,
            "duration": round(self.duration, 3),
            "src_dir": self.src_dir,
            "pkg_dir": self.pkg_dir,
            "steps": self.steps,
        }
        if self.phase is not None:
            d["phase"] = self.phase.value
        if self.error is not None:
            d["error"] = {"code": self.error.code, "message": str(self.error)}
            trace = getattr(self.error, "trace", "")
            if trace:
                d["error"]["trace"] = trace
        if self.record is not None:
            d["record"] = self.record.to_dict()
        return d
