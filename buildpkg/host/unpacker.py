"""归档解包 — tar / tar.gz / tar.bz2 / tar.xz / tar.zst

解包前先用 tarfile.data_filter 扫描全部条目，
任何越界条目（../ 穿越、绝对路径、指向外部的链接、设备文件）
都会让整个归档被拒绝，不写入任何文件。
"""

from __future__ import annotations

import logging
import lzma
import os
import tarfile
import tempfile
import zlib
from collections.abc import Iterator
from pathlib import Path

import zstandard

from buildpkg.core.exceptions import ArchiveError
from buildpkg.core.guard import ExecutionGuard

logger = logging.getLogger(__name__)

_SUFFIXES: tuple[tuple[str, str], ...] = (
    (".tar.gz", "gz"), (".tgz", "gz"),
    (".tar.bz2", "bz2"), (".tbz2", "bz2"), (".tbz", "bz2"),
    (".tar.xz", "xz"), (".txz", "xz"),
    (".tar.zst", "zst"), (".tzst", "zst"), (".tar.zstd", "zst"),
    (".tar", ""),
)

_MAGIC: tuple[tuple[bytes, str], ...] = (
    (b"\x1f\x8b", "gz"),
    (b"BZh", "bz2"),
    (b"\xfd7zXZ\x00", "xz"),
    (b"\x28\xb5\x2f\xfd", "zst"),
)


def detect_compression(archive: Path) -> str:
    """按扩展名识别压缩格式，未知扩展名时读取魔数"""
    name = archive.name.lower()
    for suffix, kind in _SUFFIXES:
        if name.endswith(suffix):
            return kind
    try:
        with open(archive, "rb") as f:
            head = f.read(512)
    except OSError as e:
        raise ArchiveError(f"无法读取归档 {archive.name}: {e.strerror or e}") from e
    for magic, kind in _MAGIC:
        if head.startswith(magic):
            return kind
    if len(head) >= 262 and head[257:262] == b"ustar":
        return ""
    raise ArchiveError(f"不支持的归档格式: {archive.name}")


class ArchiveUnpacker:
    """安全解包器"""

    def __init__(self, guard: ExecutionGuard | None = None) -> None:
        self.guard = guard or ExecutionGuard()

    def unpack(self, archive: Path, dest: Path) -> int:
        """解包到 dest，返回解出的条目数"""
        if not archive.is_file():
            raise ArchiveError(f"归档不存在: {archive}")
        kind = detect_compression(archive)
        dest.mkdir(parents=True, exist_ok=True)

        if kind == "zst":
            return self._unpack_zst(archive, dest)
        mode = f"r:{kind}" if kind else "r:"
        return self._extract(archive, dest, mode)

    def _unpack_zst(self, archive: Path, dest: Path) -> int:
        fd, tmp = tempfile.mkstemp(suffix=".tar")
        try:
            with os.fdopen(fd, "wb") as out, open(archive, "rb") as src:
                zstandard.ZstdDecompressor().copy_stream(src, out)
            return self._extract(Path(tmp), dest, "r:")
        except zstandard.ZstdError as e:
            raise ArchiveError(f"zstd 解压失败 {archive.name}: {e}") from e
        finally:
            os.unlink(tmp)

    def _extract(self, archive: Path, dest: Path, mode: str) -> int:
        try:
            with tarfile.open(archive, mode) as tar:
                members = tar.getmembers()
                self._scan(members, dest)
                tar.extractall(dest, members=self._checked(members), filter="data")
        except (tarfile.TarError, EOFError, zlib.error, lzma.LZMAError) as e:
            raise ArchiveError(f"归档损坏 {archive.name}: {e}") from e
        except OSError as e:
            raise ArchiveError(f"解包失败 {archive.name}: {e}") from e
        logger.info("  已解包: %s (%d 个条目) -> %s", archive.name, len(members), dest)
        return len(members)

    @staticmethod
    def _scan(members: list[tarfile.TarInfo], dest: Path) -> None:
        for member in members:
            try:
                tarfile.data_filter(member, str(dest))
            except tarfile.FilterError as e:
                raise ArchiveError(f"归档包含不安全条目 {member.name!r}: {e}") from e

    def _checked(self, members: list[tarfile.TarInfo]) -> Iterator[tarfile.TarInfo]:
        for member in members:
            self.guard.check()
            yield member
