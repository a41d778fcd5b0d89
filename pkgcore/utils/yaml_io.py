"""YAML / 文本文件读写工具

统一 encoding="utf-8"、空值保护、目录自动创建、原子写入。
配置文件、包清单 (package.yml) 与引用文件均经由此处落盘。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 清单 / 配置文件大小上限 (10MB)，防止异常文件导致内存耗尽
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str | bytes) -> None:
    """原子写入文件：同目录临时文件写完后 os.replace 到目标路径

    失败时删除临时文件并重新抛出原异常，目标文件保持原状。
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".", suffix=".tmp")
    try:
        if isinstance(content, bytes):
            with os.fdopen(fd, "wb") as f:
                f.write(content)
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        # 不拦截 KeyboardInterrupt/SystemExit
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def parse_yaml(text: str | bytes, origin: str = "<string>") -> dict[str, Any]:
    """解析 YAML 文本，空文档返回空字典，非字典文档抛出 ValueError"""
    try:
        result = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 失败: %s, 错误: %s", origin, e)
        raise
    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ValueError(
            f"{origin} 内容不是字典类型 (实际类型: {type(result).__name__})"
        )
    return result


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 文件，文件不存在时返回空字典

    异常:
        yaml.YAMLError: YAML 格式错误
        ValueError: 文件过大或顶层不是字典
        OSError: IO 错误
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("读取文件失败: %s, 错误: %s", path, e)
        raise
    return parse_yaml(text, origin=str(p))


def dump_yaml(data: Any) -> str:
    return yaml.dump(
        data, default_flow_style=False,
        allow_unicode=True, sort_keys=False,
    )


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件，保持键顺序"""
    p = Path(path)
    try:
        atomic_write(p, dump_yaml(data))
    except yaml.YAMLError as e:
        logger.error("序列化 YAML 数据失败: %s, 错误: %s", path, e)
        raise
    except OSError as e:
        logger.error("写入文件失败: %s, 错误: %s", path, e)
        raise
