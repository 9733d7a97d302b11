"""BuildOrchestrator 生命周期测试"""

from __future__ import annotations

import dataclasses
import json
import threading
from pathlib import Path

import pytest

from buildpkg.core.config import Config
from buildpkg.core.exceptions import (
    ArchitectureMismatchError,
    BuildCancelledError,
    ChecksumMismatchError,
    DefinitionError,
    EmptyPackageError,
    ParseError,
    ScriptRuntimeError,
    ScriptTimeoutError,
)
from buildpkg.core.guard import ExecutionGuard
from buildpkg.core.models import DEFAULT_VERSION, LIFECYCLE, Phase
from buildpkg.services.orchestrator import (
    BuildMode,
    BuildOrchestrator,
    BuildRequest,
    BuildStatus,
)
from buildpkg.services.orchestrator.phases import plan_phases

INFO = 'INFO = { name = "hello", description = "demo", arch = {"x86_64", "aarch64"}, provides = {"hello-bin"} }\n'

HELLO = INFO + r'''
function VERSION() return " 1.2.3 " end
function PREPARE() file_save("/hello.sh", "echo hi") end
function BUILD() file_save("/built.txt", ARCH) end
function PACKAGE()
  copy("/hello.sh", "/usr/bin/hello")
  file_save(PKG_DIR .. "/usr/share/hello/hello.txt", PKG_VERSION)
end
'''


def _request(tmp_path: Path, source: str, **kwargs) -> BuildRequest:  # type: ignore[no-untyped-def]
    kwargs.setdefault("arch", "x86_64")
    return BuildRequest(definition=tmp_path / "packages" / "hello" / "buildpkg.lua", source=source, **kwargs)


def _workspaces(config: Config) -> list[Path]:
    root = Path(config.workspace_dir) / "hello"
    return sorted(root.iterdir()) if root.exists() else []


@pytest.fixture()
def orch(config: Config) -> BuildOrchestrator:
    return BuildOrchestrator(config)


class TestPlan:
    def test_full(self) -> None:
        assert plan_phases(BuildMode.FULL) == LIFECYCLE
        assert LIFECYCLE == (Phase.SOURCES, Phase.VERSION, Phase.PREPARE, Phase.BUILD, Phase.PACKAGE)

    def test_version_only(self) -> None:
        assert plan_phases(BuildMode.VERSION_ONLY) == (Phase.VERSION,)
        assert plan_phases(BuildMode.VERSION_ONLY, with_sources=True) == (Phase.SOURCES, Phase.VERSION)


class TestPackaged:
    def test_full_lifecycle(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        outcome = orch.run(_request(tmp_path, HELLO))
        assert outcome.status is BuildStatus.PACKAGED, outcome.failure_report()
        assert outcome.version == "1.2.3"
        assert outcome.record is not None
        assert outcome.record.files == ("/usr/bin/hello", "/usr/share/hello/hello.txt")
        assert outcome.record.provides == ("hello-bin",)
        pkg = Path(outcome.pkg_dir)
        assert (pkg / "usr" / "share" / "hello" / "hello.txt").read_text() == "1.2.3"
        assert (Path(outcome.src_dir) / "built.txt").read_text() == "x86_64"
        assert json.loads((pkg / "package.json").read_text())["version"] == "1.2.3"
        assert (pkg / ".pkgfiles").exists()

    def test_steps(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        outcome = orch.run(_request(tmp_path, HELLO))
        assert [(s["step"], s["status"]) for s in outcome.steps] == [
            ("SOURCES", "skipped"),
            ("VERSION", "done"),
            ("PREPARE", "done"),
            ("BUILD", "done"),
            ("PACKAGE", "done"),
        ]
        assert outcome.steps[1]["version"] == "1.2.3"

    def test_workspace_kept_by_default(self, orch: BuildOrchestrator, config: Config, tmp_path: Path) -> None:
        orch.run(_request(tmp_path, HELLO))
        assert len(_workspaces(config)) == 1

    def test_clean_after_build(self, config: Config, tmp_path: Path) -> None:
        orch = BuildOrchestrator(dataclasses.replace(config, clean_after_build=True))
        assert orch.run(_request(tmp_path, HELLO)).success
        assert _workspaces(config) == []

    def test_default_version(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        source = INFO + 'function PACKAGE() file_save(PKG_DIR .. "/v", tostring(PKG_VERSION)) end\n'
        outcome = orch.run(_request(tmp_path, source))
        assert outcome.success
        assert outcome.version == DEFAULT_VERSION
        assert (Path(outcome.pkg_dir) / "v").read_text() == "nil"

    def test_static_version(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        source = (
            'INFO = { name = "hello", version = "2.0", arch = {"x86_64"} }\n'
            'function PACKAGE() file_save(PKG_DIR .. "/v", PKG_VERSION) end\n'
        )
        outcome = orch.run(_request(tmp_path, source))
        assert outcome.version == "2.0"
        assert (Path(outcome.pkg_dir) / "v").read_text() == "2.0"

    def test_records_file(self, config: Config, tmp_path: Path) -> None:
        records = tmp_path / "records.jsonl"
        orch = BuildOrchestrator(dataclasses.replace(config, records_file=str(records)))
        orch.run(_request(tmp_path, HELLO))
        line = json.loads(records.read_text().strip())
        assert line["name"] == "hello"
        assert line["version"] == "1.2.3"


class TestFailures:
    def test_arch_mismatch_before_any_hook(self, orch: BuildOrchestrator, config: Config, tmp_path: Path) -> None:
        outcome = orch.run(_request(tmp_path, HELLO, arch="riscv64"))
        assert outcome.status is BuildStatus.FAILED
        assert outcome.phase is Phase.LOAD
        assert isinstance(outcome.error, ArchitectureMismatchError)
        assert _workspaces(config) == []
        assert outcome.failure_report().startswith("hello/riscv64/LOAD/ARCH_MISMATCH")

    def test_parse_error(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        outcome = orch.run(_request(tmp_path, "INFO = {"))
        assert isinstance(outcome.error, ParseError)
        assert outcome.phase is Phase.LOAD

    def test_missing_definition_file(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        outcome = orch.run(BuildRequest(definition=tmp_path / "none" / "buildpkg.lua", arch="x86_64"))
        assert outcome.error is not None
        assert outcome.error.code == "IO_ERROR"

    def test_build_error_releases_workspace(self, orch: BuildOrchestrator, config: Config, tmp_path: Path) -> None:
        source = INFO + 'function BUILD() error("compiler exploded") end\n'
        outcome = orch.run(_request(tmp_path, source))
        assert outcome.phase is Phase.BUILD
        assert isinstance(outcome.error, ScriptRuntimeError)
        assert "compiler exploded" in str(outcome.error)
        assert outcome.steps[-1] == {"step": "BUILD", "status": "failed", "error": "RUNTIME_ERROR"}
        assert _workspaces(config) == []

    def test_keep_failed(self, orch: BuildOrchestrator, config: Config, tmp_path: Path) -> None:
        source = INFO + 'function BUILD() error("x") end\n'
        outcome = orch.run(_request(tmp_path, source, keep_failed=True))
        assert not outcome.success
        assert len(_workspaces(config)) == 1

    def test_empty_package(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        outcome = orch.run(_request(tmp_path, INFO + "function PACKAGE() end\n"))
        assert outcome.phase is Phase.PACKAGE
        assert isinstance(outcome.error, EmptyPackageError)

    def test_require_version(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        outcome = orch.run(_request(tmp_path, INFO, require_version=True))
        assert outcome.phase is Phase.VERSION
        assert isinstance(outcome.error, DefinitionError)

    @pytest.mark.parametrize("value", ["42", "{}", "''"])
    def test_bad_version_value(self, orch: BuildOrchestrator, tmp_path: Path, value: str) -> None:
        outcome = orch.run(_request(tmp_path, INFO + f"function VERSION() return {value} end\n"))
        assert outcome.phase is Phase.VERSION
        assert isinstance(outcome.error, DefinitionError)

    def test_checksum_mismatch_in_prepare(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        payload = tmp_path / "payload.bin"
        payload.write_bytes(b"payload")
        source = INFO + (
            'function VERSION() return "0.15.1" end\n'
            f'function PREPARE() download("{payload.as_uri()}", "/p.bin", "{"0" * 64}") end\n'
        )
        outcome = orch.run(_request(tmp_path, source, keep_failed=True))
        assert outcome.phase is Phase.PREPARE
        assert isinstance(outcome.error, ChecksumMismatchError)
        assert outcome.error.code == "CHECKSUM_MISMATCH"
        assert list(Path(outcome.pkg_dir).iterdir()) == []
        assert not (Path(outcome.src_dir) / "p.bin").exists()

    def test_timeout(self, config: Config, tmp_path: Path) -> None:
        orch = BuildOrchestrator(dataclasses.replace(config, hook_timeout=1))
        outcome = orch.run(_request(tmp_path, INFO + "function BUILD() while true do end end\n"))
        assert outcome.phase is Phase.BUILD
        assert isinstance(outcome.error, ScriptTimeoutError)

    def test_cancel_cleans_even_when_keep_failed(
        self, orch: BuildOrchestrator, config: Config, tmp_path: Path,
    ) -> None:
        guard = ExecutionGuard()
        timer = threading.Timer(0.3, guard.cancel)
        timer.start()
        try:
            outcome = orch.run(
                _request(tmp_path, INFO + "function BUILD() while true do end end\n", keep_failed=True),
                guard,
            )
        finally:
            timer.cancel()
        assert isinstance(outcome.error, BuildCancelledError)
        assert _workspaces(config) == []

    def test_cancelled_before_start(self, orch: BuildOrchestrator, config: Config, tmp_path: Path) -> None:
        guard = ExecutionGuard()
        guard.cancel()
        outcome = orch.run(_request(tmp_path, HELLO), guard)
        assert isinstance(outcome.error, BuildCancelledError)
        assert _workspaces(config) == []


class TestVersionOnly:
    def test_resolved_without_prepare(self, orch: BuildOrchestrator, config: Config, tmp_path: Path) -> None:
        source = INFO + 'function VERSION() return "3.1" end\nfunction PREPARE() error("must not run") end\n'
        outcome = orch.run(_request(tmp_path, source, mode=BuildMode.VERSION_ONLY))
        assert outcome.status is BuildStatus.RESOLVED
        assert outcome.version == "3.1"
        assert outcome.record is None
        assert [s["step"] for s in outcome.steps] == ["VERSION"]
        assert _workspaces(config) == []

    def test_with_sources(self, orch: BuildOrchestrator, tmp_path: Path) -> None:
        source = INFO + (
            'function SOURCES() file_save("/VERSION", "4.0") end\n'
            'function VERSION() return file_load("/VERSION") end\n'
        )
        outcome = orch.run(_request(tmp_path, source, mode=BuildMode.VERSION_ONLY, with_sources=True))
        assert outcome.version == "4.0"
        assert [s["step"] for s in outcome.steps] == ["SOURCES", "VERSION"]


class TestInspect:
    def test_metadata_only(self, orch: BuildOrchestrator) -> None:
        loaded = orch.inspect(HELLO)
        assert loaded.info.name == "hello"
        assert loaded.hooks == ("VERSION", "PREPARE", "BUILD", "PACKAGE")
