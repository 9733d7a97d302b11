"""Lua 脚本沙箱"""

from buildpkg.sandbox.runtime import HookResult, LoadedDefinition, ScriptSandbox

__all__ = ["HookResult", "LoadedDefinition", "ScriptSandbox"]
