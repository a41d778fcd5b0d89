"""包恢复 — 按引用文件批量补齐本地存储中缺失的包

流程:
  1. 按目录存在性快速检查，已存在的包直接跳过（不读内容、不访问包源）
  2. 有缺失且要求用户同意而未获同意时，立即抛出 RestoreConsentError
  3. 缺失的包以忽略依赖的方式安装，可串行或有界并行
  4. 卫星包（本地化资源包）推迟到第二轮，在所有主包完成后串行安装

取消: cancel_event 置位后不再开始新的包，已在进行中的包会执行完毕。
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

from pkgcore.core.config import CONSENT_ENV_VAR
from pkgcore.core.exceptions import PkgCoreError, RestoreConsentError
from pkgcore.core.models import Package, PackageIdentity
from pkgcore.core.package_manager import PackageManager
from pkgcore.core.reference_file import PackageReferenceFile, ProjectRegistry

logger = logging.getLogger(__name__)

OPT_OUT_MESSAGE = (
    "包恢复已启用。如需关闭，请在配置中设置 require_consent: true 并撤销同意，"
    f"或取消环境变量 {CONSENT_ENV_VAR}。"
)


class RestoreOutcome(str, Enum):
    INSTALLED = "installed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PackageRestoreResult:
    identity: PackageIdentity
    outcome: RestoreOutcome
    message: str = ""


@dataclass
class RestoreResult:
    results: list[PackageRestoreResult] = field(default_factory=list)

    def _with(self, outcome: RestoreOutcome) -> list[PackageIdentity]:
        return [r.identity for r in self.results if r.outcome is outcome]

    @property
    def installed(self) -> list[PackageIdentity]:
        return self._with(RestoreOutcome.INSTALLED)

    @property
    def skipped(self) -> list[PackageIdentity]:
        return self._with(RestoreOutcome.SKIPPED)

    @property
    def failed(self) -> list[PackageIdentity]:
        return self._with(RestoreOutcome.FAILED)

    @property
    def cancelled(self) -> list[PackageIdentity]:
        return self._with(RestoreOutcome.CANCELLED)

    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled


class RestoreOrchestrator:
    """批量恢复调度器

    参数:
        package_manager: 执行单个包安装的管理器
        max_workers: 并行度上限，1 表示串行
        disable_parallel: 为 True 时强制串行
        require_consent: 是否要求用户同意才允许恢复
        consent_granted: 用户是否已同意
        cancel_event: 外部中断信号
        project_registry: 恢复引用文件时把它们登记到共享存储的项目登记表
    """

    def __init__(
        self,
        package_manager: PackageManager,
        *,
        max_workers: int = 4,
        disable_parallel: bool = False,
        require_consent: bool = False,
        consent_granted: bool = False,
        cancel_event: threading.Event | None = None,
        project_registry: ProjectRegistry | None = None,
    ) -> None:
        self.package_manager = package_manager
        self.max_workers = max(1, max_workers)
        self.disable_parallel = disable_parallel
        self.require_consent = require_consent
        self.consent_granted = consent_granted
        self.cancel_event = cancel_event or threading.Event()
        self.project_registry = project_registry
        self._announce_lock = threading.Lock()
        self._announced = False

    def _announce_opt_out(self) -> None:
        with self._announce_lock:
            if self._announced:
                return
            self._announced = True
        logger.info(OPT_OUT_MESSAGE)

    def _restore_one(self, identity: PackageIdentity) -> PackageRestoreResult | Package:
        """恢复单个主包；卫星包返回其 Package 以便第二轮处理"""
        if self.cancel_event.is_set():
            return PackageRestoreResult(identity, RestoreOutcome.CANCELLED, "已取消")
        pm = self.package_manager
        try:
            package = pm.resolve_package(identity.id, identity.version, allow_prerelease=True)
            if package.is_satellite():
                return package
            pm.install(package, ignore_dependencies=True, allow_prerelease=True)
        except (PkgCoreError, OSError) as e:
            logger.error("恢复失败: %s (%s)", identity, e, extra={"package": identity.id})
            return PackageRestoreResult(identity, RestoreOutcome.FAILED, str(e))
        logger.info("已恢复: %s", identity)
        return PackageRestoreResult(identity, RestoreOutcome.INSTALLED)

    def _restore_satellite(self, package: Package) -> PackageRestoreResult:
        if self.cancel_event.is_set():
            return PackageRestoreResult(package.identity, RestoreOutcome.CANCELLED, "已取消")
        try:
            self.package_manager.install(package, ignore_dependencies=True, allow_prerelease=True)
        except (PkgCoreError, OSError) as e:
            logger.error("恢复卫星包失败: %s (%s)", package.identity, e)
            return PackageRestoreResult(package.identity, RestoreOutcome.FAILED, str(e))
        logger.info("已恢复卫星包: %s", package.identity)
        return PackageRestoreResult(package.identity, RestoreOutcome.INSTALLED)

    def _run(self, missing: list[PackageIdentity]) -> list[PackageRestoreResult | Package]:
        if self.disable_parallel or self.max_workers == 1 or len(missing) == 1:
            return [self._restore_one(i) for i in missing]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self._restore_one, i) for i in missing]
            return [f.result() for f in futures]

    def restore(self, identities: Iterable[PackageIdentity]) -> RestoreResult:
        """恢复一组包，结果顺序与输入一致（重复项只处理一次）

        异常:
            RestoreConsentError: 有缺失包且要求同意而未获同意，未发生任何 I/O
        """
        pm = self.package_manager
        unique = list(dict.fromkeys(identities))

        by_identity: dict[PackageIdentity, PackageRestoreResult] = {}
        missing = []
        for identity in unique:
            if pm.is_installed(identity.id, identity.version):
                by_identity[identity] = PackageRestoreResult(identity, RestoreOutcome.SKIPPED, "本地已存在")
            else:
                missing.append(identity)

        if missing:
            if self.require_consent and not self.consent_granted:
                raise RestoreConsentError(
                    f"包恢复需要用户同意，缺失 {len(missing)} 个包。"
                    f"请设置环境变量 {CONSENT_ENV_VAR}=1 或在配置中授予同意"
                )
            self._announce_opt_out()
            logger.info("需要恢复 %d 个包（已存在 %d 个）", len(missing), len(unique) - len(missing))

            with pm.source_repository.start_operation("restore"):
                outcomes = self._run(missing)
                satellites = []
                for identity, outcome in zip(missing, outcomes):
                    if isinstance(outcome, Package):
                        satellites.append(outcome)
                    else:
                        by_identity[identity] = outcome
                # 卫星包依赖主包内容，必须在全部主包完成之后处理
                for package in satellites:
                    by_identity[package.identity] = self._restore_satellite(package)

        result = RestoreResult([by_identity[i] for i in unique])
        logger.info(
            "恢复完成: 安装 %d, 跳过 %d, 失败 %d, 取消 %d",
            len(result.installed), len(result.skipped), len(result.failed), len(result.cancelled),
        )
        return result

    def restore_files(self, paths: Iterable[str | Path]) -> RestoreResult:
        """恢复若干 packages.config 中列出的全部包"""
        identities: list[PackageIdentity] = []
        for path in paths:
            refs = PackageReferenceFile(path).get_references()
            if refs and self.project_registry is not None:
                self.project_registry.register(path)
            logger.debug("读取引用文件 %s: %d 个包", path, len(refs))
            identities.extend(r.identity for r in refs)
        return self.restore(identities)
