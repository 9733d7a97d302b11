"""Web 层统一响应辅助函数"""

from __future__ import annotations

from flask import Response, jsonify

from buildpkg.core.exceptions import EngineError


def ok(data: dict, status: int = 200) -> tuple[Response, int] | Response:
    """成功响应"""
    if status == 200:
        return jsonify(data)
    return jsonify(data), status


def not_found(resource: str) -> tuple[Response, int]:
    """资源不存在"""
    return jsonify(error=f"{resource}不存在"), 404


def bad_request(message: str) -> tuple[Response, int]:
    """请求参数错误"""
    return jsonify(error=message), 400


def engine_error(exc: EngineError) -> tuple[Response, int]:
    """引擎异常：找不到定义为 404，其余为 400"""
    status = 404 if exc.code == "NOT_FOUND" else 400
    return jsonify(error=str(exc), code=exc.code), status
