"""pkgcore - 包依赖解析与安装引擎"""

__version__ = "0.3.0"
