"""依赖遍历器

- install.py: 安装计划（循环检测、菱形依赖、版本策略、已安装包复用）
- uninstall.py: 卸载计划（依赖方检查、孤立依赖约简）
"""

from pkgcore.core.walker.install import (
    DependencyVersion,
    InstallWalker,
    resolve_install_plan,
    select_candidate,
)
from pkgcore.core.walker.uninstall import (
    DependencyGraph,
    UninstallWalker,
    get_minimal_set,
    resolve_uninstall_plan,
)

__all__ = [
    "DependencyGraph",
    "DependencyVersion",
    "InstallWalker",
    "UninstallWalker",
    "get_minimal_set",
    "resolve_install_plan",
    "resolve_uninstall_plan",
    "select_candidate",
]
