"""生命周期阶段实现

阶段顺序（固定）：
1. SOURCES - 获取源码
2. VERSION - 解析版本号（至多调用一次，结果写入 BuildContext）
3. PREPARE - 填充 SRC_DIR（下载 / 解包 / 校验）
4. BUILD   - 编译
5. PACKAGE - 填充 PKG_DIR，结束后校验非空

引擎无法判断 PREPARE/BUILD 是否"做对了"，只校验可检查的后置条件。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from buildpkg.core.exceptions import DefinitionError, EmptyPackageError
from buildpkg.core.models import LIFECYCLE, BuildContext, Phase
from buildpkg.services.orchestrator.models import BuildMode
from buildpkg.services.publisher import is_empty
from buildpkg.utils.logger import BuildLogAdapter, build_logger

if TYPE_CHECKING:
    from buildpkg.sandbox.runtime import HookResult, ScriptSandbox
    from buildpkg.services.orchestrator.models import BuildOutcome


def plan_phases(mode: BuildMode, with_sources: bool = False) -> tuple[Phase, ...]:
    """按构建模式给出要执行的阶段序列"""
    if mode is BuildMode.VERSION_ONLY:
        return (Phase.SOURCES, Phase.VERSION) if with_sources else (Phase.VERSION,)
    return LIFECYCLE


class LifecyclePhases:
    """单个构建单元的阶段集合"""

    def __init__(
        self,
        sandbox: ScriptSandbox,
        context: BuildContext,
        outcome: BuildOutcome,
        *,
        hook_timeout: float = 0,
        log: BuildLogAdapter | None = None,
    ) -> None:
        self.sandbox = sandbox
        self.context = context
        self.outcome = outcome
        self.hook_timeout = hook_timeout
        self.log = log or build_logger(__name__)
        self._version_done = False

    def run(self, phase: Phase) -> None:
        """执行一个阶段，失败时抛出 EngineError"""
        if phase is Phase.VERSION and self._version_done:
            return
        log = self.log.with_phase(phase.value)
        log.info("[%s] 开始", phase.value)
        result = self.sandbox.invoke(phase.value, self.context, timeout=self.hook_timeout)
        if phase is Phase.VERSION:
            self._after_version(result)
        elif phase is Phase.PACKAGE:
            self._after_package()

        step = {
            "step": phase.value,
            "status": "done" if result.executed else "skipped",
            "duration": round(result.duration, 3),
        }
        if phase is Phase.VERSION and self.context.version:
            step["version"] = self.context.version
        self.outcome.steps.append(step)
        if result.executed:
            log.info("[%s] 完成 (%.2f秒)", phase.value, result.duration)
        else:
            log.info("[%s] 未定义，跳过", phase.value)

    def _after_version(self, result: HookResult) -> None:
        self._version_done = True
        if not result.executed:
            return
        value = result.value
        if value is None:
            self.log.warning("[VERSION] 钩子未返回版本号")
            return
        if not isinstance(value, str) or not value.strip():
            raise DefinitionError(f"VERSION 必须返回非空字符串，实际为 {value!r}")
        self.context.version = value.strip()

    def _after_package(self) -> None:
        if is_empty(self.context.pkg_dir):
            raise EmptyPackageError("PACKAGE 完成后 PKG_DIR 为空")

    def require_version(self) -> None:
        """调用方要求版本号时，缺失即失败"""
        if not self.context.version:
            raise DefinitionError("未能解析出版本号（VERSION 钩子缺失或返回空值）")
