"""构建 Web API（基于 Flask）

提供：包定义列表与元数据、异步提交构建、构建状态查询与取消。
构建只能按包名引用 definitions_dir 下的定义。

启动方式: buildpkg serve --port 8888
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from buildpkg.core.exceptions import EngineError
from buildpkg.web.blueprints import builds_bp, packages_bp
from buildpkg.web.responses import engine_error

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1024 * 1024  # 1 MB

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH

app.register_blueprint(packages_bp)
app.register_blueprint(builds_bp)


# ---- 全局 JSON 错误处理 ----


@app.errorhandler(HTTPException)
def handle_http_exception(exc):
    """将所有 HTTP 异常统一返回 JSON"""
    return jsonify(error=exc.description), exc.code


@app.errorhandler(EngineError)
def handle_engine_error(exc):
    logger.warning("请求失败 [%s]: %s", exc.code, exc)
    return engine_error(exc)


@app.errorhandler(Exception)
def handle_generic_exception(exc):  # noqa: ARG001
    """捕获未处理异常，返回 500 JSON"""
    logger.exception("未处理的异常")
    return jsonify(error="服务器内部错误"), 500


@app.route("/api/health")
def health():
    from buildpkg import __version__
    return jsonify(status="ok", version=__version__)


def run_server(port: int = 8888, debug: bool = False, host: str = "127.0.0.1") -> None:
    logger.info("buildpkg Web API 已启动: http://%s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
