"""KeyedLock 单元测试"""

from __future__ import annotations

import threading

import pytest

from pkgcore.core.locks import KeyedLock
from pkgcore.core.models import PackageIdentity


class TestKeyedLock:
    def test_entry_released_after_hold(self) -> None:
        locks = KeyedLock()
        with locks.hold(PackageIdentity("Foo", "1.0")):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_entry_released_on_error(self) -> None:
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            with locks.hold(PackageIdentity("Foo", "1.0")):
                raise RuntimeError("失败")
        assert len(locks) == 0

    def test_same_identity_serialized(self) -> None:
        locks = KeyedLock()
        identity = PackageIdentity("Foo", "1.0")
        entered = threading.Event()
        release = threading.Event()
        order: list[str] = []

        def first() -> None:
            with locks.hold(identity):
                entered.set()
                release.wait(5)
                order.append("first")

        def second() -> None:
            with locks.hold(PackageIdentity("foo", "1.0.0")):
                order.append("second")

        t1 = threading.Thread(target=first)
        t1.start()
        entered.wait(5)
        t2 = threading.Thread(target=second)
        t2.start()
        # 不同 id 不受阻塞
        with locks.hold(PackageIdentity("Bar", "1.0")):
            pass
        release.set()
        t1.join()
        t2.join()
        assert order == ["first", "second"]
        assert len(locks) == 0
