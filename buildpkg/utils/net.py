"""网络工具 — URL 协议白名单校验"""

from __future__ import annotations

import re
from collections.abc import Iterable
from urllib.parse import urlparse

from buildpkg.core.exceptions import CapabilityError

# git 的 scp 风格地址: user@host:path
_SCP_LIKE_RE = re.compile(r"^[\w.\-]+@[\w.\-]+:")


def url_scheme(url: str) -> str:
    """返回 URL 协议（小写），scp 风格地址视为 ssh"""
    if _SCP_LIKE_RE.match(url):
        return "ssh"
    return urlparse(url).scheme.lower()


def validate_url_scheme(
    url: str,
    allowed: Iterable[str] = ("http", "https"),
    *,
    allow_file: bool = False,
    context: str = "",
) -> str:
    """校验 URL 协议在白名单内，返回协议名

    file:// 仅在 allow_file=True 时放行（测试或离线镜像场景）。

    Raises:
        CapabilityError: 协议不在白名单内
    """
    scheme = url_scheme(url)
    permitted = set(allowed)
    if allow_file:
        permitted.add("file")
    if not scheme or scheme not in permitted:
        label = f" ({context})" if context else ""
        raise CapabilityError(
            f"不允许的 URL 协议 '{scheme}'{label}，"
            f"仅支持 {'/'.join(sorted(permitted))}: {url}"
        )
    return scheme
