"""构建服务 — 定义发现 / 架构扇出 / 提交与跟踪

一个构建目标可以是包含 buildpkg.lua 的目录，也可以直接是定义文件路径。
arch 为 "all" 时按定义声明的架构扇出为多个独立构建单元，
各单元在调度器的有界线程池中并行执行，结果与声明顺序一致。
"""

from __future__ import annotations

import functools
import logging
import re
from pathlib import Path
from typing import Any

from buildpkg.core.definition import PackageInfo
from buildpkg.core.exceptions import (
    ArchitectureMismatchError,
    DefinitionNotFoundError,
    EngineError,
)
from buildpkg.core.models import host_arch, normalize_arch
from buildpkg.core.scheduler import BuildScheduler
from buildpkg.services.orchestrator import (
    BuildMode,
    BuildOrchestrator,
    BuildOutcome,
    BuildRequest,
)
from buildpkg.services.orchestrator.orchestrator import read_definition

logger = logging.getLogger(__name__)

DEFINITION_FILE = "buildpkg.lua"
ALL_ARCH = "all"

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+\-]*$")


def resolve_definition(target: str | Path) -> Path:
    """目录取其中的 buildpkg.lua，文件直接使用"""
    path = Path(target)
    if path.is_dir():
        path = path / DEFINITION_FILE
    if not path.is_file():
        raise DefinitionNotFoundError(f"找不到包定义: {target}")
    return path.resolve()


class BuildService:
    """构建入口（CLI 与 Web 共用）"""

    def __init__(
        self,
        orchestrator: BuildOrchestrator | None = None,
        scheduler: BuildScheduler | None = None,
        definitions_dir: str = "",
    ) -> None:
        self.orchestrator = orchestrator or BuildOrchestrator()
        config = self.orchestrator.config
        self.scheduler = scheduler or BuildScheduler(config.max_workers, keep_finished=config.build_history)
        self.definitions_dir = Path(definitions_dir or self.orchestrator.config.definitions_dir)

    # ---- 定义 ----

    def inspect(self, target: str | Path) -> PackageInfo:
        """只加载元数据，不执行任何钩子"""
        definition = resolve_definition(target)
        source = read_definition(definition)
        chunk = f"{definition.parent.name}/{definition.name}"
        return self.orchestrator.inspect(source, chunk).info

    def package_path(self, name: str) -> Path:
        """definitions_dir 下按包名定位定义（Web 入口只允许这种方式）"""
        if not name or not _NAME_RE.match(name):
            raise DefinitionNotFoundError(f"无效的包名: {name!r}")
        return resolve_definition(self.definitions_dir / name)

    def list_packages(self) -> list[dict[str, Any]]:
        """列出 definitions_dir 下的所有包定义"""
        packages: list[dict[str, Any]] = []
        if not self.definitions_dir.is_dir():
            return packages
        for child in sorted(self.definitions_dir.iterdir()):
            if not (child / DEFINITION_FILE).is_file():
                continue
            try:
                info = self.inspect(child)
            except EngineError as e:
                logger.warning("包定义无效 %s: %s", child.name, e)
                packages.append({"name": child.name, "error": {"code": e.code, "message": str(e)}})
                continue
            packages.append({
                "name": info.name,
                "description": info.description,
                "arch": list(info.arch),
                "dev": info.dev,
            })
        return packages

    def plan(self, info: PackageInfo, arch: str = "") -> list[str]:
        """展开请求的架构：空为本机架构，all 为声明的全部架构"""
        if arch == ALL_ARCH:
            if not info.arch:
                raise ArchitectureMismatchError(f"{info.name} 未声明任何架构")
            return list(info.arch)
        return [normalize_arch(arch) if arch else host_arch()]

    def _requests(
        self, target: str | Path, arch: str, **options: Any,
    ) -> tuple[str, list[BuildRequest]]:
        definition = resolve_definition(target)
        source = read_definition(definition)
        if arch == ALL_ARCH:
            info = self.orchestrator.inspect(source, f"{definition.parent.name}/{definition.name}").info
            name, archs = info.name, self.plan(info, arch)
        else:
            name, archs = definition.parent.name, [normalize_arch(arch) if arch else ""]
        requests = [
            BuildRequest(definition=definition, arch=a, source=source, **options)
            for a in archs
        ]
        return name, requests

    # ---- 同步执行 ----

    def build(
        self,
        target: str | Path,
        *,
        arch: str = "",
        require_version: bool = False,
        keep_failed: bool | None = None,
    ) -> list[BuildOutcome]:
        """完整构建，返回每个架构的终态报告"""
        name, requests = self._requests(
            target, arch, require_version=require_version, keep_failed=keep_failed,
        )
        units = [
            (f"{name}/{req.arch or host_arch()}", functools.partial(self.orchestrator.run, req))
            for req in requests
        ]
        outcomes: list[BuildOutcome] = self.scheduler.run_all(units)
        failed = sum(1 for o in outcomes if not o.success)
        logger.info("构建完成: %s (成功 %d, 失败 %d)", name, len(outcomes) - failed, failed)
        return outcomes

    def resolve_version(
        self,
        target: str | Path,
        *,
        arch: str = "",
        with_sources: bool = False,
        require_version: bool = False,
    ) -> BuildOutcome:
        """仅版本模式：执行 VERSION（可选先执行 SOURCES）"""
        _, requests = self._requests(
            target, arch, mode=BuildMode.VERSION_ONLY,
            with_sources=with_sources, require_version=require_version,
        )
        return self.orchestrator.run(requests[0])

    # ---- 异步提交（Web） ----

    def submit(self, name: str, *, arch: str = "", version_only: bool = False) -> list[dict[str, str]]:
        """按包名提交构建，立即返回各单元的 build id"""
        mode = BuildMode.VERSION_ONLY if version_only else BuildMode.FULL
        label, requests = self._requests(self.package_path(name), arch, mode=mode)
        submitted: list[dict[str, str]] = []
        for req in requests:
            handle = self.scheduler.submit(
                functools.partial(self.orchestrator.run, req),
                label=f"{label}/{req.arch or host_arch()}",
            )
            submitted.append({"id": handle.build_id, "label": handle.label})
        return submitted

    def status(self, build_id: str) -> dict[str, Any] | None:
        handle = self.scheduler.get(build_id)
        if handle is None:
            return None
        data: dict[str, Any] = {"id": handle.build_id, "label": handle.label, "state": handle.state}
        if handle.state == "done":
            data["result"] = handle.future.result().to_dict()
        return data

    def list_builds(self) -> list[dict[str, Any]]:
        return [
            {"id": h.build_id, "label": h.label, "state": h.state}
            for h in self.scheduler.handles()
        ]

    def cancel(self, build_id: str) -> bool:
        return self.scheduler.cancel(build_id)
