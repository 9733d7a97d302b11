"""宿主函数绑定 — 把 HostApi 暴露为 Lua 函数值

每个宿主函数都包装为真正的 Lua 闭包（type(download) == "function"），
脚本拿不到底层 Python 对象。参数在这里做类型检查，
返回值在这里转换为 Lua 表，异常原样穿透 Lua 栈回到编排器。
CapabilityError 同时记录到执行守卫上，脚本即使用 pcall 捕获也会在下一次检查时重新抛出。

没有构建上下文时（仅读取元数据的加载），纯函数工具照常可用，
涉及文件系统和网络的函数调用一律抛 CapabilityError。
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from lupa.lua54 import LuaRuntime, lua_type

from buildpkg.core.exceptions import CapabilityError, ScriptRuntimeError
from buildpkg.core.guard import ExecutionGuard
from buildpkg.host import api
from buildpkg.host.api import HostApi
from buildpkg.host.git import RepoHandle
from buildpkg.sandbox.convert import LuaConverter

script_logger = logging.getLogger("buildpkg.sandbox.script")

_WRAP = "function(f) return function(...) return f(...) end end"

_REPO_FACTORY = """
return function(path, get_tags, get_revision, commits_since)
  return {
    path = path,
    get_tags = function(_) return get_tags() end,
    get_revision = function(_, tag) return get_revision(tag) end,
    commits_since = function(_, tag) return commits_since(tag) end,
  }
end
"""


def _text(value: Any, func: str, arg: str, *, optional: bool = False) -> str | None:
    """校验字符串参数；数字按 Lua 惯例转为字符串"""
    if value is None:
        if optional:
            return None
        raise ScriptRuntimeError(f"{func}: 缺少参数 {arg}")
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ScriptRuntimeError(f"{func}: 参数 {arg} 不是有效的 UTF-8 字符串") from e
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    kind = lua_type(value) or type(value).__name__
    raise ScriptRuntimeError(f"{func}: 参数 {arg} 需要字符串，实际为 {kind}")


class HostBindings:
    """为一个沙箱构造宿主函数表"""

    def __init__(
        self,
        lua: LuaRuntime,
        converter: LuaConverter,
        host: HostApi | None = None,
        label: str = "",
        guard: ExecutionGuard | None = None,
    ) -> None:
        self._lua = lua
        self._conv = converter
        self._host = host
        self._guard = guard or (host.guard if host else ExecutionGuard())
        self._label = label
        self._wrap = lua.eval(_WRAP)
        self._make_repo = lua.execute(_REPO_FACTORY)
        self._tostring = lua.eval("tostring")

    def install(self, protected: Any) -> None:
        """把全部宿主函数写入受保护名字表"""
        functions: dict[str, Callable[..., Any]] = {
            "download": self.download,
            "file_load": self.file_load,
            "file_save": self.file_save,
            "regex_match": self.regex_match,
            "json_decode": self.json_decode,
            "sha256sum_file": self.sha256sum_file,
            "sha256sum_string": self.sha256sum_string,
            "sha256_verify": self.sha256_verify,
            "unpack_tarball": self.unpack_tarball,
            "copy": self.copy,
            "link": self.link,
            "print": self.print,
        }
        for name, fn in functions.items():
            protected[name] = self._wrap(self._fatal(fn))

        git = self._lua.table()
        git["clone"] = self._wrap(self._fatal(self.git_clone))
        git["load"] = self._wrap(self._fatal(self.git_load))
        protected["git"] = git
        protected["json_null"] = self._conv.null

    def _fatal(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        def call(*args: Any) -> Any:
            try:
                return fn(*args)
            except CapabilityError as e:
                self._guard.fail(e)
                raise
        return call

    def _require_host(self, func: str) -> HostApi:
        if self._host is None:
            raise CapabilityError(f"{func} 只能在生命周期钩子中调用（当前没有构建上下文）")
        return self._host

    # ---- 纯函数 ----

    def regex_match(self, text: Any = None, pattern: Any = None, *_: Any) -> Any:
        result = api.regex_match(_text(text, "regex_match", "text"), _text(pattern, "regex_match", "pattern"))
        return self._conv.to_lua(result)

    def json_decode(self, text: Any = None, *_: Any) -> Any:
        return self._conv.to_lua(api.json_decode(_text(text, "json_decode", "text")), json_null=True)

    def sha256sum_string(self, text: Any = None, *_: Any) -> str:
        if isinstance(text, bytes):
            return api.sha256sum_string(text)
        return api.sha256sum_string(_text(text, "sha256sum_string", "str"))

    def print(self, *args: Any) -> None:
        message = "\t".join(str(self._tostring(a)) for a in args)
        script_logger.info("[%s] %s", self._label or "script", message)

    # ---- 需要构建上下文 ----

    def download(self, source: Any = None, destination: Any = None, sha256: Any = None, *_: Any) -> str:
        host = self._require_host("download")
        return host.download(
            _text(source, "download", "source"),
            _text(destination, "download", "destination"),
            _text(sha256, "download", "sha256", optional=True),
        )

    def file_load(self, path: Any = None, *_: Any) -> str:
        return self._require_host("file_load").file_load(_text(path, "file_load", "file"))

    def file_save(self, path: Any = None, contents: Any = None, *_: Any) -> None:
        host = self._require_host("file_save")
        data = contents if isinstance(contents, bytes) else _text(contents, "file_save", "content")
        host.file_save(_text(path, "file_save", "file"), data)

    def sha256sum_file(self, path: Any = None, *_: Any) -> str:
        return self._require_host("sha256sum_file").sha256sum_file(_text(path, "sha256sum_file", "file"))

    def sha256_verify(self, path: Any = None, expected: Any = None, *_: Any) -> str:
        host = self._require_host("sha256_verify")
        return host.sha256_verify(
            _text(path, "sha256_verify", "file"),
            _text(expected, "sha256_verify", "expected"),
        )

    def unpack_tarball(self, archive: Any = None, dest: Any = None, *_: Any) -> None:
        host = self._require_host("unpack_tarball")
        host.unpack_tarball(
            _text(archive, "unpack_tarball", "tarball"),
            _text(dest, "unpack_tarball", "dest"),
        )

    def copy(self, source: Any = None, destination: Any = None, *_: Any) -> None:
        host = self._require_host("copy")
        host.copy(_text(source, "copy", "source"), _text(destination, "copy", "destination"))

    def link(self, source: Any = None, destination: Any = None, *_: Any) -> None:
        host = self._require_host("link")
        host.link(_text(source, "link", "source"), _text(destination, "link", "destination"))

    def git_clone(self, url: Any = None, destination: Any = None, *_: Any) -> Any:
        host = self._require_host("git.clone")
        repo = host.git_clone(
            _text(url, "git.clone", "url"),
            _text(destination, "git.clone", "destination", optional=True),
        )
        return self._repo_table(repo)

    def git_load(self, path: Any = None, *_: Any) -> Any:
        host = self._require_host("git.load")
        return self._repo_table(host.git_load(_text(path, "git.load", "path")))

    def _repo_table(self, repo: RepoHandle) -> Any:
        return self._make_repo(
            str(repo.path),
            lambda: self._conv.to_lua(repo.get_tags()),
            lambda tag=None: repo.get_revision(_text(tag, "get_revision", "tag")),
            lambda tag=None: repo.commits_since(_text(tag, "commits_since", "tag")),
        )
