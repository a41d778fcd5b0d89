"""目标框架名解析与兼容性选择

支持短名 (net45, net4.5, netstandard2.0) 与长名 (.NETFramework,Version=v4.5)。
依赖分组按目标框架选择：同标识且版本不高于目标的分组中取版本最高者，
都不兼容时退回到不区分框架的分组。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, TypeVar

from pkgcore.core.exceptions import FormatError

T = TypeVar("T")

_SHORT_RE = re.compile(r"^(?P<ident>[a-z]+)(?P<ver>\d+(?:\.\d+)*)?$")
_LONG_RE = re.compile(r"^(?P<ident>\.?[a-z]+),version=v?(?P<ver>\d+(?:\.\d+)*)$")

_LONG_NAMES = {
    ".netframework": "net",
    ".netstandard": "netstandard",
    ".netcoreapp": "netcoreapp",
    ".netportable": "portable",
}


def _parse_version(text: str) -> tuple[int, ...]:
    # net45 / net451 为逐位紧凑写法，含 "." 时按段解析
    if "." in text:
        return tuple(int(p) for p in text.split("."))
    return tuple(int(c) for c in text)


@dataclass(frozen=True)
class FrameworkName:
    identifier: str
    version: tuple[int, ...] = ()

    @classmethod
    def parse(cls, text: str) -> FrameworkName:
        value = text.strip().lower().replace(" ", "")
        m = _LONG_RE.match(value)
        if m:
            ident = _LONG_NAMES.get(m.group("ident"), m.group("ident").lstrip("."))
            return cls(ident, tuple(int(p) for p in m.group("ver").split(".")))
        m = _SHORT_RE.match(value)
        if m is None:
            raise FormatError(f"无效的目标框架: '{text}'", token=text)
        ver = m.group("ver")
        return cls(m.group("ident"), _parse_version(ver) if ver else ())

    @property
    def _padded(self) -> tuple[int, ...]:
        return self.version + (0,) * (4 - len(self.version))

    def is_compatible_with(self, target: FrameworkName) -> bool:
        """本分组能否被 target 项目使用"""
        return self.identifier == target.identifier and self._padded <= target._padded

    def __str__(self) -> str:
        if not self.version:
            return self.identifier
        if all(p < 10 for p in self.version):
            return self.identifier + "".join(str(p) for p in self.version)
        return self.identifier + ".".join(str(p) for p in self.version)


def parse_framework(text: str | None) -> FrameworkName | None:
    if text is None or not text.strip():
        return None
    return FrameworkName.parse(text)


def select_compatible(
    target: str | FrameworkName | None,
    groups: Iterable[tuple[str | None, T]],
) -> T | None:
    """从 (框架名, 条目) 列表中选出与 target 最匹配的条目

    target 为 None 时返回 None，由调用方决定合并策略。
    """
    fw = target if isinstance(target, FrameworkName) else parse_framework(target)
    if fw is None:
        return None

    best: tuple[FrameworkName, T] | None = None
    fallback: T | None = None
    for name, item in groups:
        group_fw = parse_framework(name)
        if group_fw is None:
            if fallback is None:
                fallback = item
            continue
        if not group_fw.is_compatible_with(fw):
            continue
        if best is None or group_fw._padded > best[0]._padded:
            best = (group_fw, item)
    return best[1] if best is not None else fallback
