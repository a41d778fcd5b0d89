"""包生命周期事件

事件由 PackageManager / ProjectManager 在文件变更前后触发，
订阅者以回调列表的形式在构造时显式传入，不存在全局订阅状态。

时序:
  INSTALLING         解压前          INSTALLED          解压完成后
  UNINSTALLING       删除目录前      UNINSTALLED        删除完成后
  REFERENCE_ADDING   引用写入前
  REFERENCE_ADDED    项目引用已持久化
  REFERENCE_REMOVING 引用删除前（包内容仍然有效）
  REFERENCE_REMOVED  引用删除并持久化后
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

from pkgcore.core.models import Package
from pkgcore.core.protocols import PackageEventListener

logger = logging.getLogger(__name__)


class PackageEvent(str, Enum):
    INSTALLING = "package_installing"
    INSTALLED = "package_installed"
    UNINSTALLING = "package_uninstalling"
    UNINSTALLED = "package_uninstalled"
    REFERENCE_ADDING = "package_reference_adding"
    REFERENCE_ADDED = "package_reference_added"
    REFERENCE_REMOVING = "package_reference_removing"
    REFERENCE_REMOVED = "package_reference_removed"


@dataclass(frozen=True)
class PackageOperationEvent:
    event: PackageEvent
    package: Package
    install_path: Path | None = None
    project: str | None = None


class EventDispatcher:
    """按注册顺序同步调用订阅者，订阅者抛出的异常向调用方传播"""

    def __init__(self, listeners: Iterable[PackageEventListener] = ()) -> None:
        self._listeners = list(listeners)
        self._lock = threading.Lock()

    def subscribe(self, listener: PackageEventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def emit(
        self,
        event: PackageEvent,
        package: Package,
        install_path: Path | None = None,
        project: str | None = None,
    ) -> PackageOperationEvent:
        payload = PackageOperationEvent(event, package, install_path, project)
        with self._lock:
            listeners = list(self._listeners)
        logger.debug("事件 %s: %s", event.value, package.identity)
        for listener in listeners:
            listener(payload)
        return payload
