"""版本号与版本范围

- semver.py: 语义化版本号的解析、比较与规范化输出
- spec.py: 区间表示法的版本范围及其满足判定
"""

from pkgcore.core.version.semver import SemanticVersion
from pkgcore.core.version.spec import VersionSpec

__all__ = [
    "SemanticVersion",
    "VersionSpec",
]
