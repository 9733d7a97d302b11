"""包定义 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response

from buildpkg.web.responses import ok

packages_bp = Blueprint("packages", __name__, url_prefix="/api/packages")


def _build_svc():  # type: ignore[no-untyped-def]
    from buildpkg.services.container import get_container
    return get_container().builds


@packages_bp.route("", methods=["GET"])
def list_all() -> tuple[Response, int] | Response:
    return ok({"packages": _build_svc().list_packages()})


@packages_bp.route("/<name>", methods=["GET"])
def get(name: str) -> tuple[Response, int] | Response:
    svc = _build_svc()
    info = svc.inspect(svc.package_path(name))
    return ok({"package": info.to_dict()})
