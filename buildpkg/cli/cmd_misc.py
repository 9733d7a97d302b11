"""CLI — 杂项命令（工作空间、Web 服务、下载缓存）"""

from __future__ import annotations

import click

from buildpkg.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(workspace_group)
    group.add_command(cache_group)
    group.add_command(serve)


# ---- 工作空间 ----

@click.group(name="workspace")
def workspace_group() -> None:
    """构建工作空间管理"""


@workspace_group.command(name="list")
def workspace_list() -> None:
    """列出保留在本地的构建目录"""
    items = _svc().workspace.list_workspaces()
    if not items:
        click.echo("没有保留的工作空间。")
        return
    for w in items:
        click.echo(f"  {w['package']:20s} {w['arch']:10s} {w['build']:10s} staged={w['staged']:3s} {w['path']}")


@workspace_group.command(name="clean")
@click.argument("name")
def workspace_clean(name: str) -> None:
    """清理某个包的全部构建目录"""
    count = _svc().workspace.clean(name)
    click.echo(f"已清理 {name} 的 {count} 个工作目录")


# ---- 下载缓存 ----

@click.group(name="cache")
def cache_group() -> None:
    """下载缓存管理"""


@cache_group.command(name="clear")
def cache_clear() -> None:
    """清空按摘要存放的下载缓存"""
    count = _svc().cache.clear()
    click.echo(f"已删除 {count} 个缓存文件")


# ---- Web 服务 ----

@click.command()
@click.option("--port", default=8888, help="监听端口")
@click.option("--host", default="127.0.0.1", help="监听地址")
def serve(port: int, host: str) -> None:
    """启动构建 Web API"""
    from buildpkg.web.app import run_server
    run_server(port=port, host=host)
