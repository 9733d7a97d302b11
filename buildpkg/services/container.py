"""服务容器 — 统一依赖注入

同一容器内的实例共享状态：下载缓存、工作线程池、已提交构建的句柄。
CLI 和 Web 层均通过 get_container() 获取服务，而非直接构造。

依赖关系图（→ 表示依赖）:
  builds       → orchestrator, scheduler
  orchestrator → workspace, cache, publisher

用法:
    container = ServiceContainer()
    svc = container.builds               # 懒加载

    cfg = Config.from_file("my_config.yml")
    container = ServiceContainer(config=cfg)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from buildpkg.core.config import Config
    from buildpkg.core.scheduler import BuildScheduler
    from buildpkg.host.cache import DownloadCache
    from buildpkg.services.build_service import BuildService
    from buildpkg.services.orchestrator import BuildOrchestrator
    from buildpkg.services.publisher import RecordPublisher
    from buildpkg.services.workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from buildpkg.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def workspace(self) -> WorkspaceManager:
        if "workspace" not in self._instances:
            from buildpkg.services.workspace import WorkspaceManager
            self._instances["workspace"] = WorkspaceManager(self._config.workspace_dir)
        return self._instances["workspace"]  # type: ignore[return-value]

    @property
    def cache(self) -> DownloadCache:
        if "cache" not in self._instances:
            from buildpkg.host.cache import DownloadCache
            self._instances["cache"] = DownloadCache(self._config.cache_dir)
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def publisher(self) -> RecordPublisher:
        if "publisher" not in self._instances:
            from buildpkg.services.publisher import RecordPublisher
            self._instances["publisher"] = RecordPublisher(
                records_file=self._config.records_file,
                write_metadata=self._config.write_metadata,
            )
        return self._instances["publisher"]  # type: ignore[return-value]

    @property
    def scheduler(self) -> BuildScheduler:
        if "scheduler" not in self._instances:
            from buildpkg.core.scheduler import BuildScheduler
            self._instances["scheduler"] = BuildScheduler(
                self._config.max_workers, keep_finished=self._config.build_history,
            )
        return self._instances["scheduler"]  # type: ignore[return-value]

    @property
    def orchestrator(self) -> BuildOrchestrator:
        if "orchestrator" not in self._instances:
            from buildpkg.services.orchestrator import BuildOrchestrator
            self._instances["orchestrator"] = BuildOrchestrator(
                self._config,
                workspace=self.workspace,
                cache=self.cache,
                publisher=self.publisher,
            )
        return self._instances["orchestrator"]  # type: ignore[return-value]

    @property
    def builds(self) -> BuildService:
        if "builds" not in self._instances:
            from buildpkg.services.build_service import BuildService
            self._instances["builds"] = BuildService(
                orchestrator=self.orchestrator,
                scheduler=self.scheduler,
                definitions_dir=self._config.definitions_dir,
            )
        return self._instances["builds"]  # type: ignore[return-value]

    def close(self) -> None:
        """停止线程池，取消尚未完成的构建"""
        scheduler = self._instances.pop("scheduler", None)
        if scheduler is not None:
            scheduler.shutdown(wait=False)  # type: ignore[attr-defined]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        if _global is not None:
            _global.close()
        _global = None
