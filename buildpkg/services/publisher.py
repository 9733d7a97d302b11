"""构建产物发布 — 文件清单、元数据文件、PackageRecord 投递

Packaged 终态时:
1. 计算 PKG_DIR 下的文件清单（普通文件与符号链接，"/相对路径"，排序）
2. write_metadata 开启时写入 .pkgfiles 与 package.json（二者不计入清单）
3. 把 PackageRecord 投递给已注册的接收方，并可追加到 records_file (JSON Lines)

引擎本身不写已安装包登记表，只负责交出记录。
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable

from buildpkg.core.definition import PackageInfo
from buildpkg.core.exceptions import HostIOError
from buildpkg.core.models import PackageRecord
from buildpkg.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

FILES_NAME = ".pkgfiles"
METADATA_NAME = "package.json"

RecordSink = Callable[[PackageRecord], None]


def build_manifest(pkg_dir: Path) -> list[str]:
    """PKG_DIR 下的文件清单，目录本身不计入，指向目录的符号链接计为文件"""
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(pkg_dir):
        base = Path(dirpath)
        for name in filenames:
            files.append("/" + (base / name).relative_to(pkg_dir).as_posix())
        for name in list(dirnames):
            if (base / name).is_symlink():
                files.append("/" + (base / name).relative_to(pkg_dir).as_posix())
                dirnames.remove(name)
    return sorted(files)


def is_empty(pkg_dir: Path) -> bool:
    return not pkg_dir.is_dir() or not any(pkg_dir.iterdir())


class RecordPublisher:
    """PackageRecord 发布器"""

    def __init__(self, records_file: str = "", write_metadata: bool = True) -> None:
        self.records_file = Path(records_file) if records_file else None
        self.write_metadata = write_metadata
        self._sinks: list[RecordSink] = []
        self._lock = threading.Lock()

    def add_sink(self, sink: RecordSink) -> None:
        self._sinks.append(sink)

    def publish(
        self, info: PackageInfo, version: str, arch: str, pkg_dir: Path,
    ) -> PackageRecord:
        files = build_manifest(pkg_dir)
        record = PackageRecord(
            name=info.name,
            version=version,
            arch=arch,
            provides=info.provides,
            files=tuple(files),
            pkg_dir=str(pkg_dir),
        )
        if self.write_metadata:
            self._write_metadata(info, record, pkg_dir)
        self._append_record(record)
        for sink in self._sinks:
            try:
                sink(record)
            except Exception:  # noqa: BLE001
                logger.exception("记录接收方处理失败: %s", getattr(sink, "__name__", sink))
        logger.info("已发布: %s %s (%s, %d 个文件)", record.name, record.version, record.arch, len(files))
        return record

    @staticmethod
    def _write_metadata(info: PackageInfo, record: PackageRecord, pkg_dir: Path) -> None:
        metadata = {**info.to_dict(), "version": record.version, "arch": record.arch}
        try:
            atomic_write(pkg_dir / FILES_NAME, "".join(f + "\n" for f in record.files))
            atomic_write(
                pkg_dir / METADATA_NAME,
                json.dumps(metadata, ensure_ascii=False, indent=2) + "\n",
            )
        except OSError as e:
            raise HostIOError(f"写入包元数据失败: {e}") from e

    def _append_record(self, record: PackageRecord) -> None:
        if self.records_file is None:
            return
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        try:
            with self._lock:
                self.records_file.parent.mkdir(parents=True, exist_ok=True)
                with open(self.records_file, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            raise HostIOError(f"写入构建记录失败 {self.records_file}: {e}") from e
