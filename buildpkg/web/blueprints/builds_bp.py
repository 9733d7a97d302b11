"""构建 API Blueprint

构建在共享线程池中异步执行，提交后立即返回 build id，
通过 GET /api/builds/<id> 轮询状态与终态报告。
"""

from __future__ import annotations

from flask import Blueprint, Response, request

from buildpkg.web.responses import bad_request, not_found, ok

builds_bp = Blueprint("builds", __name__, url_prefix="/api/builds")


def _build_svc():  # type: ignore[no-untyped-def]
    from buildpkg.services.container import get_container
    return get_container().builds


@builds_bp.route("", methods=["GET"])
def list_all() -> tuple[Response, int] | Response:
    return ok({"builds": _build_svc().list_builds()})


@builds_bp.route("", methods=["POST"])
def submit() -> tuple[Response, int] | Response:
    body = request.get_json(silent=True) or {}
    name = body.get("package", "")
    if not name or not isinstance(name, str):
        return bad_request("需要提供 package")
    arch = body.get("arch", "")
    if not isinstance(arch, str):
        return bad_request("arch 必须是字符串")
    builds = _build_svc().submit(name, arch=arch, version_only=bool(body.get("version_only", False)))
    return ok({"builds": builds}, 202)


@builds_bp.route("/<build_id>", methods=["GET"])
def get(build_id: str) -> tuple[Response, int] | Response:
    data = _build_svc().status(build_id)
    if data is None:
        return not_found("构建")
    return ok({"build": data})


@builds_bp.route("/<build_id>/cancel", methods=["POST"])
def cancel(build_id: str) -> tuple[Response, int] | Response:
    svc = _build_svc()
    if svc.status(build_id) is None:
        return not_found("构建")
    if svc.cancel(build_id):
        return ok({"message": f"已请求取消: {build_id}"})
    return bad_request("构建已结束，无法取消")
