"""CLI — 构建命令（build / version / info）"""

from __future__ import annotations

import json
import sys
from typing import Any

import click

from buildpkg.cli import _svc
from buildpkg.core.exceptions import EngineError
from buildpkg.services.build_service import ALL_ARCH
from buildpkg.services.orchestrator import BuildOutcome


def register(group: click.Group) -> None:
    group.add_command(build)
    group.add_command(version)
    group.add_command(info)


def _abort(e: EngineError) -> None:
    click.echo(f"错误 [{e.code}]: {e}", err=True)
    sys.exit(1)


def _echo_outcome(outcome: BuildOutcome) -> None:
    if not outcome.success:
        click.echo(f"构建失败: {outcome.failure_report()}", err=True)
        trace = getattr(outcome.error, "trace", "")
        if trace:
            click.echo(trace, err=True)
        return
    line = f"  [{outcome.status.value}] {outcome.name} {outcome.version} ({outcome.arch})"
    if outcome.record is not None:
        line += f"  {len(outcome.record.files)} 个文件 -> {outcome.pkg_dir}"
    click.echo(line)


@click.command()
@click.argument("project", default=".")
@click.option("--arch", "-a", default="", help="目标架构（默认本机架构）")
@click.option("--all-arch", is_flag=True, help="为定义声明的全部架构构建")
@click.option("--require-version", is_flag=True, help="无法解析版本号时视为失败")
@click.option("--keep-failed", is_flag=True, help="保留失败构建的工作空间")
@click.option("--clean", is_flag=True, help="成功后清理工作空间")
@click.option("--record-file", default="", help="追加 PackageRecord (JSON Lines) 的文件")
def build(
    project: str, arch: str, all_arch: bool, require_version: bool,
    keep_failed: bool, clean: bool, record_file: str,
) -> None:
    """执行包定义的完整生命周期"""
    if arch and all_arch:
        raise click.UsageError("--arch 与 --all-arch 不能同时使用")
    overrides: dict[str, Any] = {}
    if clean:
        overrides["clean_after_build"] = True
    if record_file:
        overrides["records_file"] = record_file
    try:
        outcomes = _svc(**overrides).builds.build(
            project,
            arch=ALL_ARCH if all_arch else arch,
            require_version=require_version,
            keep_failed=keep_failed or None,
        )
    except EngineError as e:
        _abort(e)
        return
    for outcome in outcomes:
        _echo_outcome(outcome)
    if any(not o.success for o in outcomes):
        sys.exit(1)


@click.command()
@click.argument("project", default=".")
@click.option("--arch", "-a", default="", help="目标架构（默认本机架构）")
@click.option("--with-sources", is_flag=True, help="先执行 SOURCES 再解析版本")
def version(project: str, arch: str, with_sources: bool) -> None:
    """只解析版本号（VERSION 钩子）"""
    try:
        outcome = _svc().builds.resolve_version(project, arch=arch, with_sources=with_sources)
    except EngineError as e:
        _abort(e)
        return
    if not outcome.success:
        _echo_outcome(outcome)
        sys.exit(1)
    click.echo(outcome.version)


@click.command()
@click.argument("project", default=".")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
def info(project: str, as_json: bool) -> None:
    """显示包定义的元数据（不执行钩子）"""
    try:
        pkg = _svc().builds.inspect(project)
    except EngineError as e:
        _abort(e)
        return
    if as_json:
        click.echo(json.dumps(pkg.to_dict(), ensure_ascii=False, indent=2))
        return
    data = pkg.to_dict()
    for key, value in data.items():
        if value in ("", [], None):
            continue
        if isinstance(value, list):
            value = ", ".join(value)
        click.echo(f"  {key:22s} {value}")
