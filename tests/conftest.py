"""共享测试夹具

- config: 指向 tmp_path 的独立配置，注入全局配置单例
- http_server: 本地多线程 HTTP 服务，以临时目录为站点根
- make_tarball: 按字典内容生成各种压缩格式的归档
- git_repo: 本地 git 仓库工厂（缺少 git 时跳过）
- write_definition: 在 definitions_dir 下写入 buildpkg.lua
"""

from __future__ import annotations

import functools
import io
import os
import shutil
import subprocess
import tarfile
import threading
from collections.abc import Callable, Iterator
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest
import zstandard

import buildpkg.core.config as cfgmod
from buildpkg.core.models import BuildContext
from buildpkg.services.container import reset_container


@pytest.fixture()
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[cfgmod.Config]:
    """确保测试有独立的配置和数据目录"""
    cfg = cfgmod.Config(
        workspace_dir=str(tmp_path / "ws"),
        cache_dir=str(tmp_path / "cache"),
        definitions_dir=str(tmp_path / "packages"),
        max_workers=2,
        hook_timeout=30,
        download_timeout=10,
        download_retries=0,
        retry_backoff=0,
        git_timeout=60,
        allow_file_urls=True,
    )
    monkeypatch.setattr(cfgmod, "_current", cfg)
    reset_container()
    yield cfg
    reset_container()


@pytest.fixture()
def context(tmp_path: Path) -> BuildContext:
    root = tmp_path / "unit"
    (root / "src").mkdir(parents=True)
    (root / "pkg").mkdir()
    return BuildContext(arch="x86_64", src_dir=(root / "src").resolve(), pkg_dir=(root / "pkg").resolve())


class _QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        pass


@pytest.fixture()
def http_server(tmp_path: Path) -> Iterator[tuple[str, Path]]:
    """返回 (base_url, 站点根目录)"""
    root = tmp_path / "www"
    root.mkdir()
    handler = functools.partial(_QuietHandler, directory=str(root))
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}", root
    finally:
        server.shutdown()
        server.server_close()


def _tar_bytes(files: dict[str, str | bytes], mode: str) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if name.endswith(("/zig", ".sh")) else 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture()
def make_tarball(tmp_path: Path) -> Callable[..., Path]:
    """make_tarball(path, files, kind) — kind: "" / gz / bz2 / xz / zst"""

    def _make(path: Path | str, files: dict[str, str | bytes], kind: str = "gz") -> Path:
        target = Path(path)
        if not target.is_absolute():
            target = tmp_path / target
        target.parent.mkdir(parents=True, exist_ok=True)
        if kind == "zst":
            data = zstandard.ZstdCompressor().compress(_tar_bytes(files, "w"))
        else:
            data = _tar_bytes(files, f"w:{kind}" if kind else "w")
        target.write_bytes(data)
        return target

    return _make


def _git(cwd: Path, *args: str) -> str:
    r = subprocess.run(
        ["git", "-c", "user.name=buildpkg", "-c", "user.email=buildpkg@example.com", *args],
        cwd=cwd, capture_output=True, text=True, check=True,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
    )
    return r.stdout.strip()


@pytest.fixture()
def git_repo(tmp_path: Path) -> Callable[..., Path]:
    """git_repo(name, files, tags, extra_commits) 创建本地仓库

    先提交 files 并依次打上 tags，再追加 extra_commits 个提交。
    """
    if shutil.which("git") is None:
        pytest.skip("需要 git 可执行文件")

    def _make(
        name: str = "repo",
        files: dict[str, str] | None = None,
        tags: tuple[str, ...] = (),
        extra_commits: int = 0,
    ) -> Path:
        repo = tmp_path / "remotes" / name
        repo.mkdir(parents=True)
        _git(repo, "init", "-q")
        for rel, content in (files or {"README.md": "readme\n"}).items():
            (repo / rel).parent.mkdir(parents=True, exist_ok=True)
            (repo / rel).write_text(content, encoding="utf-8")
        _git(repo, "add", "-A")
        _git(repo, "commit", "-q", "-m", "initial")
        for tag in tags:
            (repo / ".tagged").write_text(tag, encoding="utf-8")
            _git(repo, "add", "-A")
            _git(repo, "commit", "-q", "-m", f"release {tag}")
            _git(repo, "tag", tag)
        for i in range(extra_commits):
            (repo / f"change-{i}.txt").write_text(str(i), encoding="utf-8")
            _git(repo, "add", "-A")
            _git(repo, "commit", "-q", "-m", f"change {i}")
        return repo

    return _make


@pytest.fixture()
def write_definition(tmp_path: Path) -> Callable[[str, str], Path]:
    """write_definition(name, source) -> 包含 buildpkg.lua 的目录"""

    def _write(name: str, source: str) -> Path:
        directory = tmp_path / "packages" / name
        directory.mkdir(parents=True, exist_ok=True)
        (directory / "buildpkg.lua").write_text(source, encoding="utf-8")
        return directory

    return _write
