"""版本范围

区间表示法:
  1.0          精确版本 1.0（等价于 [1.0]）
  [1.0]        精确版本 1.0
  [1.0,2.0)    1.0 <= v < 2.0
  (1.0,)       v > 1.0
  (,2.0]       v <= 2.0
"""

from __future__ import annotations

from dataclasses import dataclass

from pkgcore.core.exceptions import FormatError
from pkgcore.core.version.semver import SemanticVersion


@dataclass(frozen=True)
class VersionSpec:
    """版本区间，None 边界表示该侧无限制"""

    min_version: SemanticVersion | None = None
    is_min_inclusive: bool = False
    max_version: SemanticVersion | None = None
    is_max_inclusive: bool = False

    @classmethod
    def exact(cls, version: SemanticVersion) -> VersionSpec:
        return cls(version, True, version, True)

    @classmethod
    def parse(cls, text: str) -> VersionSpec:
        """解析版本范围字符串，非法输入抛出 FormatError 并指明出错片段"""
        if not isinstance(text, str) or not text.strip():
            raise FormatError(f"版本范围为空: {text!r}", token=str(text))
        value = text.strip()

        if value[0] not in "[(":
            return cls.exact(SemanticVersion.parse(value))

        if len(value) < 3 or value[-1] not in "])":
            raise FormatError(f"版本范围括号不匹配: '{value}'", token=value)

        min_inclusive = value[0] == "["
        max_inclusive = value[-1] == "]"
        parts = [p.strip() for p in value[1:-1].split(",")]

        if len(parts) > 2:
            raise FormatError(f"版本范围最多包含两个边界: '{value}'", token=value)
        if all(not p for p in parts):
            raise FormatError(f"版本范围缺少边界: '{value}'", token=value)

        if len(parts) == 1:
            if not (min_inclusive and max_inclusive):
                raise FormatError(
                    f"单一版本必须使用闭区间 [x]: '{value}'", token=value,
                )
            return cls.exact(SemanticVersion.parse(parts[0]))

        low = SemanticVersion.parse(parts[0]) if parts[0] else None
        high = SemanticVersion.parse(parts[1]) if parts[1] else None

        if low is not None and high is not None:
            if low > high:
                raise FormatError(
                    f"版本范围下界大于上界: '{value}'", token=parts[0],
                )
            if low == high and not (min_inclusive and max_inclusive):
                raise FormatError(f"版本范围为空区间: '{value}'", token=value)

        return cls(low, min_inclusive, high, max_inclusive)

    @classmethod
    def get_safe_range(cls, version: SemanticVersion) -> VersionSpec:
        """安全更新范围: >= version 且 < major.(minor+1)"""
        return cls(
            version, True,
            SemanticVersion(version.major, version.minor + 1), False,
        )

    @property
    def is_exact(self) -> bool:
        return (
            self.min_version is not None
            and self.min_version == self.max_version
            and self.is_min_inclusive
            and self.is_max_inclusive
        )

    def satisfies(self, version: SemanticVersion) -> bool:
        if self.min_version is not None:
            if self.is_min_inclusive:
                if version < self.min_version:
                    return False
            elif version <= self.min_version:
                return False
        if self.max_version is not None:
            if self.is_max_inclusive:
                if version > self.max_version:
                    return False
            elif version >= self.max_version:
                return False
        return True

    def pretty(self) -> str:
        """用于错误信息的可读形式，如 (>= 1.0.0)"""
        if self.is_exact:
            return f"(= {self.min_version})"
        conds = []
        if self.min_version is not None:
            conds.append(f"{'>=' if self.is_min_inclusive else '>'} {self.min_version}")
        if self.max_version is not None:
            conds.append(f"{'<=' if self.is_max_inclusive else '<'} {self.max_version}")
        return f"({' && '.join(conds)})" if conds else ""

    def __str__(self) -> str:
        if self.is_exact:
            return f"[{self.min_version}]"
        if self.min_version is None and self.max_version is None:
            return ""
        return (
            f"{'[' if self.is_min_inclusive else '('}"
            f"{self.min_version or ''},{self.max_version or ''}"
            f"{']' if self.is_max_inclusive else ')'}"
        )
