"""构建编排器 - 驱动单个构建单元走完生命周期状态机

终态：
- Packaged: 全部阶段成功，PKG_DIR 非空，PackageRecord 已发布
- Resolved: 仅版本模式下成功解析版本
- Failed(phase, error): 任一阶段失败；不自动重试

保证：
- 架构不在定义声明中时，在调用任何钩子之前拒绝
- 每个构建单元使用全新的工作空间与全新的沙箱
- 取消总是清理工作空间；其他失败按 keep_failed_workspace 保留或清理
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from buildpkg.core.config import Config, get_config
from buildpkg.core.exceptions import (
    ArchitectureMismatchError,
    BuildCancelledError,
    EngineError,
    HostIOError,
    ScriptRuntimeError,
)
from buildpkg.core.guard import ExecutionGuard
from buildpkg.core.models import DEFAULT_VERSION, BuildContext, Phase, host_arch
from buildpkg.host.api import HostApi
from buildpkg.host.cache import DownloadCache
from buildpkg.sandbox.runtime import LoadedDefinition, ScriptSandbox
from buildpkg.services.orchestrator.models import (
    BuildMode,
    BuildOutcome,
    BuildRequest,
    BuildStatus,
)
from buildpkg.services.orchestrator.phases import LifecyclePhases, plan_phases
from buildpkg.services.publisher import RecordPublisher
from buildpkg.services.workspace import Workspace, WorkspaceManager
from buildpkg.utils.logger import build_logger
from buildpkg.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


def read_definition(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise HostIOError(f"无法读取包定义 {path}: {e}") from e


class BuildOrchestrator:
    """生命周期状态机"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        workspace: WorkspaceManager | None = None,
        cache: DownloadCache | None = None,
        publisher: RecordPublisher | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.config = config or get_config()
        self.workspace = workspace or WorkspaceManager(self.config.workspace_dir)
        self.cache = cache or DownloadCache(self.config.cache_dir)
        self.publisher = publisher or RecordPublisher(
            records_file=self.config.records_file,
            write_metadata=self.config.write_metadata,
        )
        self.executor = executor

    def _sandbox(self, host: HostApi | None, guard: ExecutionGuard | None, label: str) -> ScriptSandbox:
        return ScriptSandbox(
            host=host,
            guard=guard,
            max_memory=self.config.script_max_memory,
            trace_limit=self.config.trace_limit,
            label=label,
        )

    def inspect(self, source: str, chunk_name: str = "buildpkg.lua") -> LoadedDefinition:
        """只读取元数据的加载（无构建上下文）"""
        sandbox = self._sandbox(None, None, chunk_name)
        return sandbox.load(source, chunk_name=chunk_name, timeout=self.config.hook_timeout)

    def run(self, request: BuildRequest, guard: ExecutionGuard | None = None) -> BuildOutcome:
        """执行一个构建单元，总是返回终态报告而不是抛异常"""
        guard = guard or ExecutionGuard()
        start = time.monotonic()
        outcome = BuildOutcome(name=request.definition.parent.name, arch=request.arch)

        try:
            source = request.source or read_definition(request.definition)
            info = self.inspect(source, request.chunk_name).info
            outcome.name = info.name
            outcome.arch = request.arch or host_arch()
            if not info.supports(outcome.arch):
                declared = ", ".join(info.arch) or "无"
                raise ArchitectureMismatchError(
                    f"{info.name} 不支持架构 {outcome.arch}（声明: {declared}）"
                )
            guard.check()
        except EngineError as e:
            return self._fail(outcome, Phase.LOAD, e, start)

        try:
            ws = self.workspace.allocate(info.name, outcome.arch)
        except OSError as e:
            return self._fail(outcome, Phase.LOAD, HostIOError(f"无法分配工作空间: {e}"), start)
        outcome.src_dir, outcome.pkg_dir = str(ws.src_dir), str(ws.pkg_dir)
        context = BuildContext(
            arch=outcome.arch, src_dir=ws.src_dir, pkg_dir=ws.pkg_dir,
            version=info.version or None,
        )
        log = build_logger(__name__, info.name, outcome.arch)
        log.info("开始构建 (模式: %s, 工作空间: %s)", request.mode.value, ws.root)

        phase = Phase.LOAD
        try:
            host = HostApi(
                context, config=self.config, cache=self.cache,
                guard=guard, executor=self.executor,
            )
            sandbox = self._sandbox(host, guard, f"{info.name}/{outcome.arch}")
            sandbox.load(source, chunk_name=request.chunk_name, timeout=self.config.hook_timeout)
            phases = LifecyclePhases(
                sandbox, context, outcome,
                hook_timeout=self.config.hook_timeout, log=log,
            )
            for phase in plan_phases(request.mode, request.with_sources):
                guard.check()
                phases.run(phase)
                if phase is Phase.VERSION and request.require_version:
                    phases.require_version()

            outcome.version = context.version or DEFAULT_VERSION
            if request.mode is BuildMode.FULL:
                outcome.record = self.publisher.publish(info, outcome.version, outcome.arch, ws.pkg_dir)
                outcome.status = BuildStatus.PACKAGED
            else:
                outcome.status = BuildStatus.RESOLVED
            log.info("构建结束: %s %s", outcome.status.value, outcome.version)
        except EngineError as e:
            self._fail(outcome, phase, e, start)
        except Exception as e:  # noqa: BLE001
            log.exception("[%s] 引擎内部错误", phase.value)
            self._fail(outcome, phase, ScriptRuntimeError(f"引擎内部错误: {e}"), start)
        finally:
            outcome.duration = time.monotonic() - start
            self._dispose(request, outcome, ws)
        return outcome

    def _fail(self, outcome: BuildOutcome, phase: Phase, error: EngineError, start: float) -> BuildOutcome:
        outcome.status = BuildStatus.FAILED
        outcome.phase = phase
        outcome.error = error
        outcome.duration = time.monotonic() - start
        outcome.steps.append({"step": phase.value, "status": "failed", "error": error.code})
        logger.error("构建失败 %s", outcome.failure_report())
        return outcome

    def _dispose(self, request: BuildRequest, outcome: BuildOutcome, ws: Workspace) -> None:
        """按策略保留或清理工作空间"""
        if outcome.status is BuildStatus.FAILED:
            keep = self.config.keep_failed_workspace if request.keep_failed is None else request.keep_failed
            if isinstance(outcome.error, BuildCancelledError) or not keep:
                self.workspace.release(ws)
            else:
                logger.info("保留失败的工作空间用于调试: %s", ws.root)
            return
        if request.mode is BuildMode.VERSION_ONLY or self.config.clean_after_build:
            self.workspace.release(ws)
