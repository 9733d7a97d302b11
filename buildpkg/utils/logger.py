"""buildpkg 日志配置

支持普通文本和结构化 JSON 两种输出格式。
构建相关日志通过 BuildLogAdapter 携带 package/arch/phase 字段，
JSON 格式下这些字段会原样输出，便于 CI 按构建单元过滤。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# 构建上下文字段，由 BuildLogAdapter 注入到 LogRecord
BUILD_FIELDS = ("package", "arch", "phase")


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出格式:
        {
            "timestamp": "2024-01-01T12:00:00+00:00",
            "level": "INFO",
            "logger": "buildpkg.services.orchestrator",
            "message": "log message",
            "module": "orchestrator",
            "function": "run",
            "line": 42,
            "package": "zig", "arch": "x86_64", "phase": "PREPARE" (仅构建日志),
            "exception": "traceback..." (仅在有异常时)
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in BUILD_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


class BuildLogAdapter(logging.LoggerAdapter):
    """为单个构建单元附加 package/arch/phase 的日志适配器

    文本格式下以 "[name/arch]" 前缀呈现，JSON 格式下作为独立字段。
    """

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(self.extra or {})
        kwargs["extra"] = {**extra, **kwargs.get("extra", {})}
        label = "/".join(str(extra[k]) for k in ("package", "arch") if extra.get(k))
        return (f"[{label}] {msg}" if label else msg), kwargs

    def with_phase(self, phase: str) -> BuildLogAdapter:
        return BuildLogAdapter(self.logger, {**(self.extra or {}), "phase": phase})


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        json_output: 为 True 时使用 JSON 格式（适用于 CI），否则使用人类可读格式

    说明:
        - 输出到 stderr
        - 自动清理已有 handlers，避免重复输出
    """
    reset_logging()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        fmt = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
        handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(handler)


def build_logger(name: str, package: str = "", arch: str = "") -> BuildLogAdapter:
    """获取绑定到某个构建单元的 logger

    示例:
        >>> log = build_logger(__name__, "zig", "x86_64")
        >>> log.info("开始构建")   # -> "[zig/x86_64] 开始构建"
    """
    return BuildLogAdapter(logging.getLogger(name), {"package": package, "arch": arch})


def reset_logging() -> None:
    """清理根日志器上已注册的 handlers，常用于测试或重新配置"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
