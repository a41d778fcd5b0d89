"""按 (id, version) 加锁

同一包版本的安装 / 卸载串行执行，不同包互不阻塞。
锁条目按持有 / 等待的线程计数，计数归零即移除。
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from pkgcore.core.models import PackageIdentity


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        # identity -> [锁, 持有或等待的线程数]
        self._locks: dict[PackageIdentity, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, identity: PackageIdentity) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(identity, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[identity]
