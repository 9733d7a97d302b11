"""内容获取 — URL 下载到工作区

职责:
- 协议白名单校验
- 流式下载到同目录临时文件，完成后原子落盘
- 对瞬时故障（超时、连接错误、5xx/408/429）做有界重试 + 指数退避
- 声明了期望摘要时：先查共享缓存，下载后校验，校验失败不留下目标文件
"""

from __future__ import annotations

import http.client
import logging
import os
import tempfile
import urllib.error
import urllib.request
from pathlib import Path
from typing import IO, Any, Callable

from buildpkg import __version__
from buildpkg.core.exceptions import (
    HostIOError,
    HttpStatusError,
    NetworkError,
    NetworkTimeoutError,
)
from buildpkg.core.guard import ExecutionGuard
from buildpkg.host.cache import DownloadCache
from buildpkg.host.integrity import normalize_digest, verify_file
from buildpkg.utils.net import validate_url_scheme

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024
_RETRYABLE_STATUS = frozenset((408, 429))


def is_retryable(error: NetworkError) -> bool:
    """4xx 视为永久失败，其余网络错误视为瞬时故障"""
    if isinstance(error, HttpStatusError):
        return error.status >= 500 or error.status in _RETRYABLE_STATUS
    return True


class ContentFetcher:
    """URL 下载器"""

    def __init__(
        self,
        *,
        timeout: float = 60,
        retries: int = 3,
        backoff: float = 1.0,
        schemes: tuple[str, ...] | list[str] = ("http", "https"),
        allow_file: bool = False,
        cache: DownloadCache | None = None,
        guard: ExecutionGuard | None = None,
        opener: Callable[..., Any] | None = None,
    ) -> None:
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.schemes = tuple(schemes)
        self.allow_file = allow_file
        self.cache = cache
        self.guard = guard or ExecutionGuard()
        self._open = opener or urllib.request.urlopen

    def fetch(self, url: str, dest: Path, *, sha256: str = "") -> Path:
        """下载 url 到 dest，返回 dest"""
        validate_url_scheme(url, self.schemes, allow_file=self.allow_file, context="download")
        expected = normalize_digest(sha256) if sha256 else ""
        dest.parent.mkdir(parents=True, exist_ok=True)

        if expected and self.cache is not None and self.cache.fetch(expected, dest):
            return dest

        tmp = self._fetch_with_retry(url, dest.parent)
        try:
            if expected:
                verify_file(tmp, expected)
                if self.cache is not None:
                    self.cache.store(expected, tmp)
            os.replace(tmp, dest)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise HostIOError(f"无法写入下载目标 {dest}: {e.strerror or e}") from e
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.info("  已下载: %s -> %s", url, dest.name)
        return dest

    def _fetch_with_retry(self, url: str, directory: Path) -> Path:
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._fetch_once(url, directory)
            except NetworkError as e:
                if not is_retryable(e) or attempt == attempts:
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "  下载失败 (%d/%d): %s，%.1f 秒后重试", attempt, attempts, e, delay,
                )
                self.guard.sleep(delay)
        raise AssertionError("unreachable")

    def _fetch_once(self, url: str, directory: Path) -> Path:
        timeout = self.guard.bounded(self.timeout)
        fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=".download-", suffix=".part")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                self._stream(url, out, timeout)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return tmp

    def _stream(self, url: str, out: IO[bytes], timeout: float) -> None:
        request = urllib.request.Request(url, headers={"User-Agent": f"buildpkg/{__version__}"})
        try:
            with self._open(request, timeout=timeout) as resp:
                status = getattr(resp, "status", None)
                if status is not None and not 200 <= status < 300:
                    raise HttpStatusError(f"HTTP {status}: {url}", status)
                while True:
                    self.guard.check()
                    chunk = resp.read(_CHUNK)
                    if not chunk:
                        break
                    try:
                        out.write(chunk)
                    except OSError as e:
                        raise HostIOError(f"写入下载文件失败: {e.strerror or e}") from e
        except urllib.error.HTTPError as e:
            raise HttpStatusError(f"HTTP {e.code}: {url}", e.code) from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise NetworkTimeoutError(f"连接超时: {url}") from e
            raise NetworkError(f"无法获取 {url}: {e.reason}") from e
        except TimeoutError as e:
            raise NetworkTimeoutError(f"读取超时 ({timeout:g} 秒): {url}") from e
        except (http.client.HTTPException, ConnectionError) as e:
            raise NetworkError(f"连接中断: {url}: {e}") from e
