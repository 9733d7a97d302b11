"""ServiceContainer 单元测试"""

from __future__ import annotations

import dataclasses

import pytest

from buildpkg.core.config import Config
from buildpkg.services.container import (
    ServiceContainer,
    get_container,
    reset_container,
)


@pytest.fixture(autouse=True)
def _setup_config(config: Config) -> None:
    """使用 conftest 中的独立配置"""


class TestServiceContainer:
    def test_lazy_loading(self) -> None:
        c = ServiceContainer()
        assert len(c._instances) == 0
        _ = c.cache
        assert "cache" in c._instances

    def test_shared_instances(self) -> None:
        c = ServiceContainer()
        assert c.workspace is c.workspace
        assert c.scheduler is c.scheduler

    def test_orchestrator_shares_components(self) -> None:
        c = ServiceContainer()
        orch = c.orchestrator
        assert orch.workspace is c.workspace
        assert orch.cache is c.cache
        assert orch.publisher is c.publisher

    def test_builds_gets_orchestrator_and_scheduler(self) -> None:
        c = ServiceContainer()
        svc = c.builds
        assert svc.orchestrator is c.orchestrator
        assert svc.scheduler is c.scheduler

    def test_uses_given_config(self, config: Config, tmp_path) -> None:
        cfg = dataclasses.replace(config, workspace_dir=str(tmp_path / "other"))
        c = ServiceContainer(config=cfg)
        assert c.config is cfg
        assert c.workspace.workspace_root == tmp_path / "other"

    def test_close_drops_scheduler(self) -> None:
        c = ServiceContainer()
        first = c.scheduler
        c.close()
        assert c.scheduler is not first


class TestGetContainer:
    def test_singleton(self) -> None:
        assert get_container() is get_container()

    def test_reset(self) -> None:
        c1 = get_container()
        reset_container()
        assert get_container() is not c1

    def test_follows_global_config(self, config: Config) -> None:
        assert get_container().config is config
