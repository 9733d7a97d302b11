"""共享下载缓存 — 以内容摘要为键

缓存目录是并发构建之间唯一真正共享的资源：
- 进程内：同一摘要的写入/读取由 per-key 锁串行化
- 进程间：文件先写入同目录临时文件，完成后 os.replace 原子落盘
只有已通过摘要校验的文件才会进入缓存。

布局: <cache_dir>/sha256/<digest>
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path

from buildpkg.host.integrity import normalize_digest, sha256_file

logger = logging.getLogger(__name__)


class DownloadCache:
    """按 SHA-256 摘要索引的下载缓存"""

    def __init__(self, cache_dir: str | Path) -> None:
        self.root = Path(cache_dir) / "sha256"
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, digest: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(digest)
            if lock is None:
                lock = self._locks[digest] = threading.Lock()
            return lock

    def path_for(self, digest: str) -> Path:
        return self.root / normalize_digest(digest)

    def contains(self, digest: str) -> bool:
        return self.path_for(digest).is_file()

    def fetch(self, digest: str, dest: Path) -> bool:
        """命中则复制到 dest 并返回 True

        缓存文件被外部篡改（摘要不符）时删除该条目并视为未命中。
        """
        digest = normalize_digest(digest)
        entry = self.path_for(digest)
        with self._lock(digest):
            if not entry.is_file():
                return False
            if sha256_file(entry) != digest:
                logger.warning("缓存条目已损坏，删除: %s", entry)
                entry.unlink(missing_ok=True)
                return False
            _copy_atomic(entry, dest)
        logger.info("  下载缓存命中: %s", digest[:12])
        return True

    def store(self, digest: str, src: Path) -> Path:
        """把已校验的文件放入缓存（已存在则跳过）"""
        digest = normalize_digest(digest)
        entry = self.path_for(digest)
        with self._lock(digest):
            if not entry.is_file():
                _copy_atomic(src, entry)
                logger.debug("  已写入下载缓存: %s", digest[:12])
        return entry

    def clear(self) -> int:
        """清空缓存，返回删除的条目数"""
        if not self.root.exists():
            return 0
        count = 0
        for entry in self.root.iterdir():
            if entry.is_file():
                entry.unlink(missing_ok=True)
                count += 1
        logger.info("已清理 %d 个缓存条目", count)
        return count


def _copy_atomic(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(dest.parent), prefix=".cache-", suffix=".tmp")
    os.close(fd)
    try:
        shutil.copyfile(src, tmp)
        os.replace(tmp, dest)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
