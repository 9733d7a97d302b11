"""包定义元数据 (INFO) 的严格校验

脚本里的 INFO 表在加载时被解析为不可变的 PackageInfo：
未知字段、类型错误、缺少 name 都会抛 DefinitionError，
不让动态表结构把未定义行为带进后续阶段。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from buildpkg.core.exceptions import DefinitionError

# 包名同时用作工作目录名，限定为安全字符
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+\-]*$")
_ARCH_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_STRING_FIELDS = ("description", "url", "license", "version")
_LIST_FIELDS = (
    "maintainers", "provides", "arch",
    "dependencies", "build_dependencies", "optional_dependencies",
    "conflicts", "replaces",
)
_BOOL_FIELDS = ("dev",)
ALLOWED_FIELDS = frozenset(("name",) + _STRING_FIELDS + _LIST_FIELDS + _BOOL_FIELDS)


@dataclass(frozen=True)
class PackageInfo:
    """已校验的包定义元数据"""

    name: str
    description: str = ""
    url: str = ""
    license: str = ""
    version: str = ""
    dev: bool = False
    maintainers: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    arch: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    build_dependencies: tuple[str, ...] = ()
    optional_dependencies: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    replaces: tuple[str, ...] = ()

    def supports(self, arch: str) -> bool:
        return arch in self.arch

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name}
        for f in _STRING_FIELDS + _BOOL_FIELDS:
            d[f] = getattr(self, f)
        for f in _LIST_FIELDS:
            d[f] = list(getattr(self, f))
        return d


def _string_list(field_name: str, value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise DefinitionError(f"INFO.{field_name} 必须是字符串列表")
    items: list[str] = []
    for i, item in enumerate(value, 1):
        if not isinstance(item, str) or not item:
            raise DefinitionError(f"INFO.{field_name}[{i}] 必须是非空字符串")
        if item not in items:
            items.append(item)
    return tuple(items)


def parse_info(raw: Any) -> PackageInfo:
    """把脚本中的 INFO 表（已转换为 Python dict）校验为 PackageInfo"""
    if isinstance(raw, list) and not raw:
        raw = {}
    if not isinstance(raw, dict):
        raise DefinitionError("INFO 必须是键值表")

    unknown = sorted(str(k) for k in raw if k not in ALLOWED_FIELDS)
    if unknown:
        raise DefinitionError(f"INFO 包含未知字段: {', '.join(unknown)}")

    name = raw.get("name")
    if name is None:
        raise DefinitionError("INFO 缺少必填字段 name")
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise DefinitionError(f"INFO.name 不合法: {name!r}")

    fields: dict[str, Any] = {"name": name}
    for f in _STRING_FIELDS:
        if f in raw:
            if not isinstance(raw[f], str):
                raise DefinitionError(f"INFO.{f} 必须是字符串")
            fields[f] = raw[f]
    for f in _BOOL_FIELDS:
        if f in raw:
            if not isinstance(raw[f], bool):
                raise DefinitionError(f"INFO.{f} 必须是布尔值")
            fields[f] = raw[f]
    for f in _LIST_FIELDS:
        if f in raw:
            fields[f] = _string_list(f, raw[f])

    for a in fields.get("arch", ()):
        if not _ARCH_RE.match(a) or a == "all":
            raise DefinitionError(f"INFO.arch 包含非法架构名: {a!r}")

    return PackageInfo(**fields)
