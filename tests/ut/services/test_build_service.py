"""BuildService 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from buildpkg.core.config import Config
from buildpkg.core.exceptions import ArchitectureMismatchError, DefinitionNotFoundError
from buildpkg.core.definition import parse_info
from buildpkg.core.models import Phase, host_arch
from buildpkg.core.scheduler import BuildScheduler
from buildpkg.services.build_service import BuildService, resolve_definition
from buildpkg.services.container import get_container
from buildpkg.services.orchestrator import BuildStatus

HELLO = r'''
INFO = { name = "hello", description = "demo", arch = {"x86_64", "aarch64"} }
function VERSION() return "1.0-" .. ARCH end
function PACKAGE() file_save(PKG_DIR .. "/usr/share/hello/arch", ARCH) end
'''


@pytest.fixture()
def svc(config: Config) -> BuildService:
    return get_container().builds


class TestDefinitions:
    def test_resolve_directory_and_file(self, write_definition) -> None:  # type: ignore[no-untyped-def]
        d = write_definition("hello", HELLO)
        assert resolve_definition(d) == (d / "buildpkg.lua").resolve()
        assert resolve_definition(d / "buildpkg.lua") == (d / "buildpkg.lua").resolve()

    def test_resolve_missing(self, tmp_path: Path) -> None:
        with pytest.raises(DefinitionNotFoundError):
            resolve_definition(tmp_path)

    def test_inspect(self, svc: BuildService, write_definition) -> None:  # type: ignore[no-untyped-def]
        info = svc.inspect(write_definition("hello", HELLO))
        assert info.name == "hello"
        assert info.arch == ("x86_64", "aarch64")

    def test_list_packages(self, svc: BuildService, write_definition) -> None:  # type: ignore[no-untyped-def]
        write_definition("hello", HELLO)
        write_definition("broken", "INFO = {")
        (Path(svc.definitions_dir) / "not-a-package").mkdir()
        packages = svc.list_packages()
        assert [p["name"] for p in packages] == ["broken", "hello"]
        assert packages[0]["error"]["code"] == "PARSE_ERROR"
        assert packages[1]["arch"] == ["x86_64", "aarch64"]

    def test_list_without_dir(self, svc: BuildService) -> None:
        assert svc.list_packages() == []

    @pytest.mark.parametrize("name", ["", "../etc", "a/b", ".hidden"])
    def test_package_path_rejects_names(self, svc: BuildService, name: str) -> None:
        with pytest.raises(DefinitionNotFoundError):
            svc.package_path(name)


class TestPlan:
    def test_all_uses_declared_order(self, svc: BuildService) -> None:
        info = parse_info({"name": "x", "arch": ["aarch64", "x86_64"]})
        assert svc.plan(info, "all") == ["aarch64", "x86_64"]

    def test_all_without_declared(self, svc: BuildService) -> None:
        with pytest.raises(ArchitectureMismatchError):
            svc.plan(parse_info({"name": "x"}), "all")

    def test_default_is_host(self, svc: BuildService) -> None:
        assert svc.plan(parse_info({"name": "x"})) == [host_arch()]

    def test_alias_normalized(self, svc: BuildService) -> None:
        assert svc.plan(parse_info({"name": "x"}), "amd64") == ["x86_64"]


class TestBuild:
    def test_all_arch_fan_out(self, svc: BuildService, write_definition) -> None:  # type: ignore[no-untyped-def]
        outcomes = svc.build(write_definition("hello", HELLO), arch="all")
        assert [(o.arch, o.version) for o in outcomes] == [("x86_64", "1.0-x86_64"), ("aarch64", "1.0-aarch64")]
        assert all(o.status is BuildStatus.PACKAGED for o in outcomes)
        assert outcomes[0].pkg_dir != outcomes[1].pkg_dir

    def test_one_arch_failing_does_not_stop_others(
        self, svc: BuildService, write_definition,  # type: ignore[no-untyped-def]
    ) -> None:
        source = HELLO + 'function BUILD() if ARCH == "aarch64" then error("no cross compiler") end end\n'
        outcomes = svc.build(write_definition("hello", source), arch="all")
        assert [o.success for o in outcomes] == [True, False]

    def test_resolve_version(self, svc: BuildService, write_definition) -> None:  # type: ignore[no-untyped-def]
        outcome = svc.resolve_version(write_definition("hello", HELLO), arch="aarch64")
        assert outcome.status is BuildStatus.RESOLVED
        assert outcome.version == "1.0-aarch64"

    def test_missing_target(self, svc: BuildService, tmp_path: Path) -> None:
        with pytest.raises(DefinitionNotFoundError):
            svc.build(tmp_path / "nothing")


class TestSubmit:
    def test_submit_and_status(self, svc: BuildService, write_definition) -> None:  # type: ignore[no-untyped-def]
        write_definition("hello", HELLO)
        submitted = svc.submit("hello", arch="all", version_only=True)
        assert [s["label"] for s in submitted] == ["hello/x86_64", "hello/aarch64"]
        for s in submitted:
            svc.scheduler.get(s["id"]).future.result(timeout=30)  # type: ignore[union-attr]
        status = svc.status(submitted[1]["id"])
        assert status is not None
        assert status["state"] == "done"
        assert status["result"]["status"] == "resolved"
        assert status["result"]["version"] == "1.0-aarch64"
        assert {b["id"] for b in svc.list_builds()} == {s["id"] for s in submitted}

    def test_unknown_build(self, svc: BuildService) -> None:
        assert svc.status("missing") is None
        assert svc.cancel("missing") is False

    def test_submit_unknown_package(self, svc: BuildService) -> None:
        with pytest.raises(DefinitionNotFoundError):
            svc.submit("nope")

    def test_cancelled_pending_build_reports_failure(
        self, svc: BuildService, write_definition,  # type: ignore[no-untyped-def]
    ) -> None:
        write_definition("hello", HELLO)
        write_definition("spin", 'INFO = { name = "spin", arch = {"x86_64"} }\nfunction BUILD() while true do end end\n')
        queue = BuildService(orchestrator=svc.orchestrator, scheduler=BuildScheduler(1))
        try:
            blocker = queue.submit("spin", arch="x86_64")[0]
            waiting = queue.submit("hello", arch="x86_64")[0]
            assert queue.status(waiting["id"])["state"] == "pending"  # type: ignore[index]
            assert queue.cancel(waiting["id"]) is True
            assert queue.cancel(blocker["id"]) is True
            outcome = queue.scheduler.get(waiting["id"]).future.result(timeout=30)  # type: ignore[union-attr]
        finally:
            queue.scheduler.shutdown()

        assert outcome.status is BuildStatus.FAILED
        assert outcome.phase is Phase.LOAD
        assert outcome.error is not None and outcome.error.code == "CANCELLED"
        assert outcome.pkg_dir == ""
        status = queue.status(waiting["id"])
        assert status is not None
        assert status["state"] == "done"
        assert status["result"]["error"]["code"] == "CANCELLED"
        assert status["result"]["phase"] == "LOAD"


class TestIsolation:
    def test_concurrent_builds_use_disjoint_dirs(
        self, svc: BuildService, write_definition,  # type: ignore[no-untyped-def]
    ) -> None:
        template = r'''
INFO = { name = "%s", arch = {"x86_64", "aarch64"} }
function PREPARE() file_save("/owner", "%s-" .. ARCH) end
function BUILD() for i = 1, 200000 do end end
function PACKAGE() copy("/owner", "/owner") end
'''
        for name in ("alpha", "beta"):
            write_definition(name, template % (name, name))
        submitted = [s for name in ("alpha", "beta") for s in svc.submit(name, arch="all")]
        outcomes = [svc.scheduler.get(s["id"]).future.result(timeout=60) for s in submitted]  # type: ignore[union-attr]
        assert all(o.success for o in outcomes), [o.failure_report() for o in outcomes]
        dirs = [o.src_dir for o in outcomes] + [o.pkg_dir for o in outcomes]
        assert len(set(dirs)) == len(dirs)
        for o in outcomes:
            assert (Path(o.pkg_dir) / "owner").read_text() == f"{o.name}-{o.arch}"
