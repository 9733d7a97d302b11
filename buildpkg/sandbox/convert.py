"""Python <-> Lua 值转换

- dict -> 表（字符串键），list/tuple -> 从 1 开始的序列表
- JSON null 映射为只读哨兵 json_null，保证数组位置不丢失
- 反向转换时，键为 1..n 连续整数的表视为列表，空表视为空列表
"""

from __future__ import annotations

from typing import Any

from lupa.lua54 import LuaRuntime, lua_type

MAX_DEPTH = 64
_LUA_INT_MAX = 2 ** 63

_NULL_FACTORY = """
local setmetatable, error = setmetatable, error
return setmetatable({}, {
  __newindex = function() error("json_null 是只读值", 2) end,
  __tostring = function() return "null" end,
  __metatable = false,
})
"""


class LuaConverter:
    """绑定到单个 LuaRuntime 的值转换器"""

    def __init__(self, lua: LuaRuntime) -> None:
        self._lua = lua
        self._rawequal = lua.eval("rawequal")
        self.null = lua.execute(_NULL_FACTORY)

    def is_null(self, value: Any) -> bool:
        return lua_type(value) == "table" and bool(self._rawequal(value, self.null))

    def to_lua(self, value: Any, *, json_null: bool = False) -> Any:
        """Python 值转 Lua 值；json_null=True 时 None 转为 json_null 哨兵"""
        return self._to_lua(value, json_null, 0)

    def _to_lua(self, value: Any, json_null: bool, depth: int) -> Any:
        if depth > MAX_DEPTH:
            raise ValueError("数据嵌套层级过深")
        if value is None:
            return self.null if json_null else None
        if isinstance(value, (bool, str, bytes, float)):
            return value
        if isinstance(value, int):
            return value if -_LUA_INT_MAX <= value < _LUA_INT_MAX else float(value)
        if isinstance(value, dict):
            table = self._lua.table()
            for k, v in value.items():
                table[k] = self._to_lua(v, json_null, depth + 1)
            return table
        if isinstance(value, (list, tuple)):
            table = self._lua.table()
            for i, v in enumerate(value, 1):
                table[i] = self._to_lua(v, json_null, depth + 1)
            return table
        raise TypeError(f"无法转换为 Lua 值: {type(value).__name__}")

    def to_python(self, value: Any) -> Any:
        """Lua 值转 Python 值；函数等非数据值原样返回"""
        return self._to_python(value, 0)

    def _to_python(self, value: Any, depth: int) -> Any:
        if lua_type(value) != "table":
            return value
        if depth > MAX_DEPTH:
            raise ValueError("表嵌套层级过深（可能存在循环引用）")
        if self.is_null(value):
            return None
        items = list(value.items())
        keys = [k for k, _ in items]
        if all(isinstance(k, int) and not isinstance(k, bool) for k in keys) and sorted(keys) == list(
            range(1, len(keys) + 1)
        ):
            ordered = sorted(items, key=lambda kv: kv[0])
            return [self._to_python(v, depth + 1) for _, v in ordered]
        return {k: self._to_python(v, depth + 1) for k, v in items}
