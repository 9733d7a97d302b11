"""buildpkg 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import dataclasses
import os
from typing import Any

import click

from buildpkg import __version__
from buildpkg.services.container import ServiceContainer, get_container, reset_container
from buildpkg.utils.logger import setup_logging


def _svc(**overrides: Any) -> ServiceContainer:
    """获取服务容器；带配置覆盖时构造一个独立容器"""
    container = get_container()
    if not overrides:
        return container
    return ServiceContainer(config=dataclasses.replace(container.config, **overrides))


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None, envvar="BUILDPKG_CONFIG", help="配置文件路径")
def main(config_path: str | None) -> None:
    """buildpkg - 包定义构建脚本执行引擎"""
    setup_logging(
        level=os.getenv("BUILDPKG_LOG_LEVEL", "INFO"),
        json_output=os.getenv("BUILDPKG_LOG_JSON", "") == "1",
    )
    if config_path:
        from buildpkg.core.config import init_config
        init_config(config_path)
        reset_container()


# 注册各领域子命令
from buildpkg.cli.cmd_build import register as _reg_build  # noqa: E402
from buildpkg.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_build(main)
_reg_misc(main)
