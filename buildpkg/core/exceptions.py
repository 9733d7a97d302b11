"""统一异常体系

所有引擎异常继承 EngineError，每个子类携带稳定的 code。
宿主函数在沙箱内抛出的异常会原样穿过 Lua 调用栈，
编排器在阶段边界统一捕获并记录为 Failed(phase, error)。
Web 层据 code 映射响应，CLI 层据 code 输出失败报告。
"""

from __future__ import annotations


class EngineError(Exception):
    """引擎基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(EngineError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


# ---- 定义加载 ----


class DefinitionNotFoundError(EngineError):
    """找不到包定义文件"""

    code = "NOT_FOUND"


class ParseError(EngineError):
    """包定义脚本语法错误"""

    code = "PARSE_ERROR"


class DefinitionError(EngineError):
    """INFO 元数据缺失/格式错误，或钩子类型不正确"""

    code = "DEFINITION_ERROR"


class ArchitectureMismatchError(DefinitionError):
    """请求的架构不在定义声明的 arch 列表中"""

    code = "ARCH_MISMATCH"


# ---- 沙箱 ----


class CapabilityError(EngineError):
    """越权访问：未声明的全局变量、路径逃逸、被禁止的协议"""

    code = "CAPABILITY_ERROR"


class ScriptRuntimeError(EngineError):
    """脚本未捕获的错误，附带截断后的调用栈"""

    code = "RUNTIME_ERROR"

    def __init__(self, message: str, trace: str = "") -> None:
        super().__init__(message)
        self.trace = trace


class ScriptTimeoutError(EngineError):
    """阶段执行超出时间预算"""

    code = "TIMEOUT"


class BuildCancelledError(EngineError):
    """构建被取消"""

    code = "CANCELLED"


# ---- 宿主 API ----


class NetworkError(EngineError):
    """网络获取失败"""

    code = "NETWORK_ERROR"


class HttpStatusError(NetworkError):
    """服务端返回非 2xx 状态码"""

    code = "HTTP_STATUS"

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


class NetworkTimeoutError(NetworkError):
    """网络请求超时"""

    code = "NETWORK_TIMEOUT"


class GitError(EngineError):
    """Git 操作失败（非法仓库、不存在的 tag 等）"""

    code = "GIT_ERROR"


class HostIOError(EngineError):
    """文件读写失败"""

    code = "IO_ERROR"


class ChecksumMismatchError(HostIOError):
    """文件摘要与期望值不一致"""

    code = "CHECKSUM_MISMATCH"

    def __init__(self, message: str, expected: str = "", actual: str = "") -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ArchiveError(EngineError):
    """归档损坏、压缩格式不支持或包含越界条目"""

    code = "ARCHIVE_ERROR"


class FormatError(EngineError):
    """JSON 等结构化文本格式错误"""

    code = "FORMAT_ERROR"


class PatternError(EngineError):
    """正则表达式语法错误"""

    code = "PATTERN_ERROR"


# ---- 后置条件 ----


class EmptyPackageError(EngineError):
    """PACKAGE 阶段结束后 PKG_DIR 为空"""

    code = "EMPTY_PACKAGE"
