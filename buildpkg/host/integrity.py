"""完整性校验 — SHA-256 摘要计算与比对"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from buildpkg.core.exceptions import ChecksumMismatchError, FormatError, HostIOError

logger = logging.getLogger(__name__)

_CHUNK = 1024 * 1024
_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def sha256_bytes(data: str | bytes) -> str:
    """字符串按 UTF-8 编码后计算摘要，纯函数"""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    try:
        h = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK), b""):
                h.update(chunk)
        return h.hexdigest()
    except OSError as e:
        raise HostIOError(f"无法计算摘要 {path}: {e.strerror or e}") from e


def normalize_digest(expected: str) -> str:
    """校验并规范化期望摘要（小写 64 位十六进制）"""
    digest = expected.strip().lower()
    if not _DIGEST_RE.match(digest):
        raise FormatError(f"SHA-256 摘要格式不正确: {expected!r}")
    return digest


def verify_file(path: Path, expected: str) -> str:
    """比对文件摘要，不一致抛 ChecksumMismatchError，返回实际摘要"""
    digest = normalize_digest(expected)
    actual = sha256_file(path)
    if actual != digest:
        raise ChecksumMismatchError(
            f"校验和不匹配 {path.name}: 期望 {digest}, 实际 {actual}",
            expected=digest, actual=actual,
        )
    logger.info("  校验和通过: %s", path.name)
    return actual
