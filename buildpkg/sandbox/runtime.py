"""脚本沙箱 — 在嵌入式 Lua 5.4 中加载包定义并调用生命周期钩子

隔离模型:
- 每个 ScriptSandbox 持有独立的 LuaRuntime，不同构建互不可见
- 脚本在自定义环境表中执行，只能看到：安全的基础函数、
  string/table/math/utf8、os.time/clock/date/difftime、宿主函数、
  只读上下文变量 ARCH / SRC_DIR / PKG_DIR / PKG_VERSION
- 读取未声明的全局变量抛 CapabilityError（而不是返回 nil）
- 覆盖宿主函数或上下文变量抛 CapabilityError
- load/debug/io/coroutine/require/string.dump 不可达
- 通过 debug 指令计数钩子检查截止时间和取消信号
- pcall/xpcall 是包装版本：捕获到错误后重新检查守卫，
  超时、取消和越权错误不能被脚本吞掉
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from lupa.lua54 import LuaError, LuaMemoryError, LuaRuntime, lua_type

from buildpkg.core.definition import PackageInfo, parse_info
from buildpkg.core.exceptions import (
    CapabilityError,
    DefinitionError,
    ParseError,
    ScriptRuntimeError,
)
from buildpkg.core.guard import ExecutionGuard
from buildpkg.core.models import CONTEXT_GLOBALS, HOOK_NAMES, BuildContext
from buildpkg.host.api import HostApi
from buildpkg.sandbox.bindings import HostBindings
from buildpkg.sandbox.convert import LuaConverter

logger = logging.getLogger(__name__)

_SAFE_BASE = (
    "assert", "error", "ipairs", "next", "pairs", "select",
    "tonumber", "tostring", "type", "rawequal", "rawget", "rawlen",
    "setmetatable", "getmetatable", "_VERSION",
)
_SAFE_LIBS = ("string", "table", "math", "utf8")
_OS_SAFE = ("time", "clock", "date", "difftime")

_ENV_FACTORY = """
local setmetatable, rawset = setmetatable, rawset
return function(protected, reserved, on_missing, on_denied)
  local env = {}
  return setmetatable(env, {
    __index = function(_, key)
      local value = protected[key]
      if value ~= nil then
        return value
      end
      return on_missing(key)
    end,
    __newindex = function(t, key, value)
      if protected[key] ~= nil or reserved[key] then
        return on_denied(key)
      end
      rawset(t, key, value)
    end,
    __metatable = false,
  })
end
"""

_LOADER = """
local load = load
return function(source, name, env)
  local fn, err = load(source, name, "t", env)
  return fn, err
end
"""

_COPY_TABLE = """
local pairs = pairs
return function(src, deny)
  local t = {}
  for k, v in pairs(src) do
    if not deny[k] then
      t[k] = v
    end
  end
  return t
end
"""

_SET_HOOK = """
local sethook = debug.sethook
return function(check, count)
  sethook(function() check() end, "", count)
end
"""

_CLEAR_HOOK = "function() debug.sethook() end"

_PROTECTED_CALLS = """
local pcall, xpcall = pcall, xpcall
return function(recheck)
  local function settle(ok, ...)
    if not ok then
      recheck()
    end
    return ok, ...
  end
  return function(f, ...)
    return settle(pcall(f, ...))
  end, function(f, handler, ...)
    return settle(xpcall(f, handler, ...))
  end
end
"""


def _deny_attribute(obj: Any, attr_name: Any, is_setting: bool) -> Any:
    raise AttributeError(f"脚本不允许访问 Python 对象属性: {attr_name}")


@dataclass
class LoadedDefinition:
    """加载完成的包定义"""

    info: PackageInfo
    hooks: tuple[str, ...] = ()
    chunk_name: str = "buildpkg.lua"

    def has_hook(self, name: str) -> bool:
        return name in self.hooks


@dataclass
class HookResult:
    """一次钩子调用的结果；executed=False 表示钩子未定义，视为成功的空操作"""

    hook: str
    executed: bool = False
    value: Any = None
    duration: float = 0.0


class ScriptSandbox:
    """单个包定义的 Lua 沙箱（每个构建单元一个新实例）

    host 为 None 时只能读取元数据：上下文变量为 nil，
    文件系统/网络类宿主函数调用抛 CapabilityError。
    """

    def __init__(
        self,
        *,
        host: HostApi | None = None,
        guard: ExecutionGuard | None = None,
        max_memory: int = 0,
        trace_limit: int = 2000,
        instruction_interval: int = 1000,
        label: str = "",
    ) -> None:
        self.guard = guard or (host.guard if host else ExecutionGuard())
        self.trace_limit = trace_limit
        self._interval = max(1, instruction_interval)
        self._host = host
        self._context: BuildContext | None = host.context if host else None

        self._lua = LuaRuntime(
            unpack_returned_tuples=True,
            register_eval=False,
            register_builtins=False,
            attribute_filter=_deny_attribute,
            max_memory=max_memory or None,
        )
        self._conv = LuaConverter(self._lua)
        self._bindings = HostBindings(self._lua, self._conv, host, label=label, guard=self.guard)
        self._rawget = self._lua.eval("rawget")
        self._make_env = self._lua.execute(_ENV_FACTORY)
        self._loader = self._lua.execute(_LOADER)
        self._copy_table = self._lua.execute(_COPY_TABLE)
        self._set_hook = self._lua.execute(_SET_HOOK)
        self._clear_hook = self._lua.eval(_CLEAR_HOOK)
        self._protected_calls = self._lua.execute(_PROTECTED_CALLS)

        self._env: Any = None
        self._hooks: dict[str, Any] = {}
        self.definition: LoadedDefinition | None = None

    # =====================================================================
    # 环境构造
    # =====================================================================

    def _protected_table(self) -> Any:
        lg = self._lua.globals()
        protected = self._lua.table()
        for name in _SAFE_BASE:
            protected[name] = lg[name]
        protected["pcall"], protected["xpcall"] = self._protected_calls(self._check)
        no_deny = self._lua.table()
        for lib in _SAFE_LIBS:
            deny = self._lua.table_from({"dump": True}) if lib == "string" else no_deny
            protected[lib] = self._copy_table(lg[lib], deny)
        os_table = self._lua.table()
        for name in _OS_SAFE:
            os_table[name] = lg["os"][name]
        protected["os"] = os_table
        self._bindings.install(protected)
        return protected

    def _new_env(self) -> Any:
        protected = self._protected_table()
        reserved = self._lua.table_from({name: True for name in CONTEXT_GLOBALS})
        env = self._make_env(protected, reserved, self._on_missing, self._on_denied)
        protected["_G"] = env
        return env

    def _on_missing(self, key: Any) -> Any:
        if key in CONTEXT_GLOBALS:
            if self._context is None:
                return None
            return self._context.script_globals()[key]
        self._deny(CapabilityError(f"访问未声明的全局变量: {key}"))

    def _on_denied(self, key: Any) -> None:
        self._deny(CapabilityError(f"不允许覆盖受保护的全局变量: {key}"))

    def _deny(self, error: CapabilityError) -> None:
        self.guard.fail(error)
        raise error

    # =====================================================================
    # 执行
    # =====================================================================

    def _check(self) -> None:
        self.guard.check()

    def _call(self, fn: Any, label: str) -> Any:
        self._set_hook(self._check, self._interval)
        try:
            value = fn()
        except LuaMemoryError as e:
            raise ScriptRuntimeError(f"{label}: 脚本内存超出限制") from e
        except LuaError as e:
            if self.guard.failure is not None:
                raise self.guard.failure from e
            raise self._script_error(label, e) from e
        finally:
            self._clear_hook()
        if self.guard.failure is not None:
            raise self.guard.failure
        return value

    def _script_error(self, label: str, error: LuaError) -> ScriptRuntimeError:
        text = str(error).strip()
        message, _, trace = text.partition("\n")
        if self.trace_limit and len(trace) > self.trace_limit:
            trace = trace[: self.trace_limit] + "\n..."
        return ScriptRuntimeError(f"{label}: {message}", trace=trace)

    def load(self, source: str, *, chunk_name: str = "buildpkg.lua", timeout: float = 0) -> LoadedDefinition:
        """编译并执行定义脚本的顶层代码，解析 INFO 与钩子

        Raises:
            ParseError: 语法错误
            DefinitionError: INFO 缺失/不合法、钩子不是函数、顶层代码出错
            CapabilityError: 顶层代码越权
        """
        env = self._new_env()
        chunk, err = self._loader(source, "=" + chunk_name, env)
        if chunk is None:
            raise ParseError(f"语法错误: {err}")

        self.guard.start_phase("LOAD", timeout)
        try:
            self._call(chunk, chunk_name)
        except ScriptRuntimeError as e:
            raise DefinitionError(f"定义顶层代码执行失败: {e}") from e
        finally:
            self.guard.end_phase()

        raw_info = self._rawget(env, "INFO")
        if raw_info is None:
            raise DefinitionError("缺少 INFO 元数据表")
        if lua_type(raw_info) != "table":
            raise DefinitionError("INFO 必须是表")
        try:
            info = parse_info(self._conv.to_python(raw_info))
        except ValueError as e:
            raise DefinitionError(f"INFO 无法解析: {e}") from e

        hooks: dict[str, Any] = {}
        for name in HOOK_NAMES:
            value = self._rawget(env, name)
            if value is None:
                continue
            if lua_type(value) != "function":
                raise DefinitionError(f"{name} 必须是函数，实际为 {lua_type(value) or type(value).__name__}")
            hooks[name] = value

        if info.version and "VERSION" in hooks:
            raise DefinitionError("INFO.version 与 VERSION 钩子不能同时定义")

        self._env = env
        self._hooks = hooks
        self.definition = LoadedDefinition(
            info=info,
            hooks=tuple(n for n in HOOK_NAMES if n in hooks),
            chunk_name=chunk_name,
        )
        logger.debug("已加载定义 %s (钩子: %s)", info.name, ", ".join(self.definition.hooks) or "无")
        return self.definition

    def invoke(self, hook: str, context: BuildContext | None = None, *, timeout: float = 0) -> HookResult:
        """调用生命周期钩子；未定义的钩子是成功的空操作

        Raises:
            ScriptRuntimeError: 脚本抛出未捕获的错误
            ScriptTimeoutError: 超过 timeout 秒
            BuildCancelledError: 构建被取消
            CapabilityError 及宿主 API 抛出的各类错误
        """
        if hook not in HOOK_NAMES:
            raise ValueError(f"未知的生命周期钩子: {hook}")
        if self.definition is None:
            raise ValueError("沙箱尚未加载定义")
        if context is not None:
            if self._host is not None and context is not self._host.context:
                raise ValueError("调用上下文与宿主 API 绑定的上下文不一致")
            self._context = context

        fn = self._hooks.get(hook)
        if fn is None:
            return HookResult(hook=hook)

        start = time.monotonic()
        self.guard.start_phase(hook, timeout)
        try:
            value = self._call(fn, hook)
        finally:
            self.guard.end_phase()
        if isinstance(value, tuple):
            value = value[0] if value else None
        return HookResult(
            hook=hook, executed=True,
            value=self._conv.to_python(value),
            duration=time.monotonic() - start,
        )
