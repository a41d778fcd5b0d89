"""统一异常体系

所有业务异常继承 PkgCoreError，替代散落的 ValueError / RuntimeError。
CLI 层据此输出 "[CODE] message" 形式的友好提示并以非零状态退出。
"""

from __future__ import annotations


class PkgCoreError(Exception):
    """引擎基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(PkgCoreError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class FormatError(PkgCoreError, ValueError):
    """版本号 / 版本范围 / 清单格式错误，不重试"""

    code = "FORMAT_ERROR"

    def __init__(self, message: str, token: str | None = None) -> None:
        super().__init__(message)
        self.token = token


class DependencyResolutionError(PkgCoreError):
    """依赖无法被任何源满足，整个计划中止"""

    code = "DEPENDENCY_RESOLUTION_ERROR"

    def __init__(self, message: str, chain: list[str] | None = None) -> None:
        super().__init__(message)
        self.chain = chain or []


class CircularDependencyError(DependencyResolutionError):
    """依赖遍历中发现环"""

    code = "CIRCULAR_DEPENDENCY"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"检测到循环依赖: {' => '.join(cycle)}", chain=cycle)
        self.cycle = cycle


class PackageNotFoundError(PkgCoreError):
    """请求的顶层包或版本在所有源中都不存在"""

    code = "PACKAGE_NOT_FOUND"


class PackageInUseError(PkgCoreError):
    """仍有其他包依赖目标包，卸载被阻止"""

    code = "PACKAGE_IN_USE"

    def __init__(self, message: str, dependents: list[str] | None = None) -> None:
        super().__init__(message)
        self.dependents = dependents or []


class PackageNotInstalledError(PkgCoreError):
    """卸载 / 更新目标不在本地存储中"""

    code = "PACKAGE_NOT_INSTALLED"


class RestoreConsentError(PkgCoreError):
    """未获得用户同意，恢复被策略阻止"""

    code = "RESTORE_CONSENT_REQUIRED"


class RepositorySourceError(PkgCoreError):
    """聚合仓库中单个源访问失败"""

    code = "REPOSITORY_SOURCE_ERROR"

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source


class ExtractionError(PkgCoreError):
    """解压 / 写入包内容失败，残留文件已清理"""

    code = "EXTRACTION_ERROR"


class AmbiguousPackageError(PkgCoreError):
    """未指定版本且本地安装了同一包的多个版本"""

    code = "AMBIGUOUS_PACKAGE"
