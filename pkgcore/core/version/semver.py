"""语义化版本号

格式: major[.minor[.build[.revision]]][-release][+metadata]

比较规则:
  - 数值部分逐段比较，缺省段视为 0
  - 带预发布标签的版本严格小于同数值的正式版本
  - 预发布标签按 "." 拆段比较：纯数字段按数值，字母数字段忽略大小写按字典序，
    纯数字段小于字母数字段，前缀相同时段数多者更大
  - 构建元数据 (+metadata) 不参与比较与哈希
"""

from __future__ import annotations

import functools
import re

from pkgcore.core.exceptions import FormatError

_IDENT = r"[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*"
_VERSION_RE = re.compile(
    r"^(?P<numbers>\d+(?:\.\d+){0,3})"
    rf"(?:-(?P<release>{_IDENT}))?"
    rf"(?:\+(?P<metadata>{_IDENT}))?$"
)


def _release_key(release: str) -> tuple:
    # 正式版排在所有预发布版之后
    if not release:
        return (1,)
    parts = []
    for ident in release.split("."):
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident.lower()))
    return (0, tuple(parts))


@functools.total_ordering
class SemanticVersion:
    """不可变的四段式语义化版本"""

    __slots__ = ("major", "minor", "build", "revision", "release", "metadata", "original")

    def __init__(
        self,
        major: int,
        minor: int = 0,
        build: int = 0,
        revision: int = 0,
        release: str = "",
        metadata: str = "",
        original: str | None = None,
    ) -> None:
        if min(major, minor, build, revision) < 0:
            raise FormatError(f"版本号各段不能为负数: {major}.{minor}.{build}.{revision}")
        object.__setattr__(self, "major", major)
        object.__setattr__(self, "minor", minor)
        object.__setattr__(self, "build", build)
        object.__setattr__(self, "revision", revision)
        object.__setattr__(self, "release", release or "")
        object.__setattr__(self, "metadata", metadata or "")
        object.__setattr__(self, "original", original)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("SemanticVersion 不可修改")

    @classmethod
    def parse(cls, text: str) -> SemanticVersion:
        """解析版本字符串，格式非法时抛出 FormatError"""
        if not isinstance(text, str):
            raise FormatError(f"版本号必须是字符串: {text!r}", token=str(text))
        token = text.strip()
        m = _VERSION_RE.match(token)
        if m is None:
            raise FormatError(f"无效的版本号: '{text}'", token=text)
        numbers = [int(n) for n in m.group("numbers").split(".")]
        numbers += [0] * (4 - len(numbers))
        return cls(
            *numbers,
            release=m.group("release") or "",
            metadata=m.group("metadata") or "",
            original=token,
        )

    @classmethod
    def try_parse(cls, text: str) -> SemanticVersion | None:
        try:
            return cls.parse(text)
        except FormatError:
            return None

    @property
    def version(self) -> tuple[int, int, int, int]:
        return (self.major, self.minor, self.build, self.revision)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.release)

    def _key(self) -> tuple:
        return (self.version, _release_key(self.release))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: SemanticVersion) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash((self.version, self.release.lower()))

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.build}"
        if self.revision > 0:
            text += f".{self.revision}"
        if self.release:
            text += f"-{self.release}"
        if self.metadata:
            text += f"+{self.metadata}"
        return text

    def __repr__(self) -> str:
        return f"SemanticVersion('{self}')"
