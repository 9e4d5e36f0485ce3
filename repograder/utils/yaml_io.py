"""配置与状态文件读写

- load_mapping(): 评测配置 / 全局配置（.json 走 json，其余走 YAML），顶层必须是字典
- save_yaml():    生成配置模板
- write_json():   评测状态文件
三者写入都经过 atomic_write，中途失败不会留下半截文件。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 配置文件大小上限 (10MB)
MAX_FILE_SIZE = 10 * 1024 * 1024


def atomic_write(path: str | Path, content: str) -> None:
    """同目录临时文件写完后 os.replace 覆盖目标

    异常:
        OSError: 写入或替换失败

    任何失败都会删除临时文件。
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=target.parent,
        prefix=f".{target.name}.", suffix=".tmp", delete=False,
    )
    try:
        with tmp:
            tmp.write(content)
        os.replace(tmp.name, target)
    except Exception:
        Path(tmp.name).unlink(missing_ok=True)
        raise


def load_mapping(path: str | Path) -> dict[str, Any]:
    """读取 YAML 或 JSON 文件为字典

    文件不存在或为空返回 {}；顶层不是字典时记录警告并返回 {}。

    异常:
        yaml.YAMLError / json.JSONDecodeError: 格式错误
        ValueError: 文件超过 MAX_FILE_SIZE
    """
    p = Path(path)
    if not p.is_file():
        return {}
    size = p.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ValueError(f"配置文件过大: {p} ({size} 字节)")

    with open(p, encoding="utf-8") as f:
        try:
            data = json.load(f) if p.suffix.lower() == ".json" else yaml.safe_load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            logger.error("配置文件解析失败: %s (%s)", p, e)
            raise

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("%s 顶层不是字典 (%s)，按空配置处理", p, type(data).__name__)
        return {}
    return data


def save_yaml(path: str | Path, data: Any) -> None:
    """按键顺序写出 YAML，保留非 ASCII 字符"""
    atomic_write(path, yaml.safe_dump(data, allow_unicode=True, sort_keys=False))


def write_json(path: str | Path, data: Any) -> None:
    """写出缩进 2 的 UTF-8 JSON"""
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
