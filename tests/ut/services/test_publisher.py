"""RecordPublisher / 文件清单单元测试"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from buildpkg.core.definition import parse_info
from buildpkg.core.models import PackageRecord
from buildpkg.services.publisher import (
    FILES_NAME,
    METADATA_NAME,
    RecordPublisher,
    build_manifest,
    is_empty,
)


def _stage(pkg: Path) -> None:
    (pkg / "usr" / "lib" / "zig" / "lib").mkdir(parents=True)
    (pkg / "usr" / "bin").mkdir(parents=True)
    (pkg / "usr" / "lib" / "zig" / "zig").write_text("bin")
    (pkg / "usr" / "lib" / "zig" / "lib" / "std.zig").write_text("std")
    os.symlink("/usr/lib/zig/zig", pkg / "usr" / "bin" / "zig")
    os.symlink("lib", pkg / "usr" / "lib" / "zig" / "lib-link")


class TestManifest:
    def test_files_and_links(self, tmp_path: Path) -> None:
        _stage(tmp_path)
        assert build_manifest(tmp_path) == [
            "/usr/bin/zig",
            "/usr/lib/zig/lib-link",
            "/usr/lib/zig/lib/std.zig",
            "/usr/lib/zig/zig",
        ]

    def test_empty(self, tmp_path: Path) -> None:
        assert is_empty(tmp_path)
        assert is_empty(tmp_path / "missing")
        (tmp_path / "usr").mkdir()
        assert not is_empty(tmp_path)
        assert build_manifest(tmp_path) == []


class TestPublish:
    def _info(self):  # type: ignore[no-untyped-def]
        return parse_info({"name": "zig", "description": "Zig", "arch": ["x86_64"], "provides": ["zig-cc"]})

    def test_record_and_metadata(self, tmp_path: Path) -> None:
        _stage(tmp_path)
        record = RecordPublisher().publish(self._info(), "0.14.0-1", "x86_64", tmp_path)
        assert record.name == "zig"
        assert record.version == "0.14.0-1"
        assert record.provides == ("zig-cc",)
        assert "/usr/lib/zig/zig" in record.files
        assert "/" + FILES_NAME not in record.files
        assert (tmp_path / FILES_NAME).read_text().splitlines() == list(record.files)
        meta = json.loads((tmp_path / METADATA_NAME).read_text())
        assert meta["version"] == "0.14.0-1"
        assert meta["arch"] == "x86_64"

    def test_no_metadata(self, tmp_path: Path) -> None:
        _stage(tmp_path)
        RecordPublisher(write_metadata=False).publish(self._info(), "1", "x86_64", tmp_path)
        assert not (tmp_path / METADATA_NAME).exists()

    def test_records_file(self, tmp_path: Path) -> None:
        pkg = tmp_path / "pkg"
        pkg.mkdir()
        (pkg / "a").write_text("a")
        records = tmp_path / "out" / "records.jsonl"
        pub = RecordPublisher(records_file=str(records))
        pub.publish(self._info(), "1", "x86_64", pkg)
        pub.publish(self._info(), "2", "aarch64", pkg)
        lines = [json.loads(line) for line in records.read_text().splitlines()]
        assert [(r["version"], r["arch"]) for r in lines] == [("1", "x86_64"), ("2", "aarch64")]

    def test_without_records_file_writes_no_record(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        pkg = tmp_path / "pkg"
        pkg.mkdir()
        (pkg / "a").write_text("a")
        pub = RecordPublisher(write_metadata=False)
        assert pub.records_file is None
        pub._append_record(pub.publish(self._info(), "1", "x86_64", pkg))
        assert sorted(p.name for p in tmp_path.rglob("*")) == ["a", "pkg"]

    def test_sinks(self, tmp_path: Path) -> None:
        (tmp_path / "a").write_text("a")
        seen: list[PackageRecord] = []

        def broken(record: PackageRecord) -> None:
            raise RuntimeError("sink down")

        pub = RecordPublisher(write_metadata=False)
        pub.add_sink(broken)
        pub.add_sink(seen.append)
        record = pub.publish(self._info(), "1", "x86_64", tmp_path)
        assert seen == [record]
