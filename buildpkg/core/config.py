"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from buildpkg.core.exceptions import ConfigError
from buildpkg.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """引擎全局配置"""

    # 目录
    workspace_dir: str = "data/workspaces"
    cache_dir: str = "data/cache"
    definitions_dir: str = "packages"
    records_file: str = ""

    # 执行
    max_workers: int = 4
    build_history: int = 200
    hook_timeout: float = 3600
    script_max_memory: int = 0
    trace_limit: int = 2000

    # 网络
    download_timeout: float = 60
    download_retries: int = 3
    git_timeout: float = 600
    retry_backoff: float = 1.0
    url_schemes: list[str] = field(default_factory=lambda: ["http", "https"])
    git_url_schemes: list[str] = field(
        default_factory=lambda: ["http", "https", "git", "ssh"],
    )
    allow_file_urls: bool = False

    # 暂存 / 输出
    link_overwrite: bool = False
    keep_failed_workspace: bool = False
    clean_after_build: bool = False
    write_metadata: bool = True

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """校验数值范围与列表类型，不合法抛 ConfigError"""
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigError(f"max_workers 必须为正整数: {self.max_workers!r}")
        for name in ("hook_timeout", "download_timeout", "git_timeout", "retry_backoff"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value < 0:
                raise ConfigError(f"{name} 必须为非负数: {value!r}")
        for name in ("download_retries", "script_max_memory", "trace_limit", "build_history"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ConfigError(f"{name} 必须为非负整数: {value!r}")
        for name in ("url_schemes", "git_url_schemes"):
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(s, str) for s in value):
                raise ConfigError(f"{name} 必须为字符串列表: {value!r}")

    @classmethod
    def from_file(cls, path: str = "configs/default.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置项无效: {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI / Web 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/default.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
