"""buildpkg - 包定义构建脚本执行引擎"""

__version__ = "0.3.0"
