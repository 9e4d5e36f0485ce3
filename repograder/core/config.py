"""全局运行配置

repograder.yml 中的键与 Config 字段同名；未识别的键收进 extra，
数值字段按类型转换并校验，非法值以 ConfigError 报告而不是延迟到运行时。

    base_dir: /srv/grading          # repos/ 与 evaluations/ 所在目录
    evaluation_config: lab1.yml
    log_level: DEBUG
    max_batches: 4
    cancel_grace: 1.0
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from repograder.core.exceptions import ConfigError
from repograder.utils.yaml_io import load_mapping

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "repograder.yml"


@dataclass
class Config:
    base_dir: str = "."
    evaluation_config: str = "evaluation.yml"

    # 未设置 REPOGRADER_LOG_* 环境变量时生效
    log_level: str = "INFO"
    log_json: bool = False

    max_batches: int = 8           # 可同时运行的命令批次
    drain_timeout: float = 2.0     # 进程退出后等待输出读取的上限（秒）
    cancel_grace: float = 0.5      # SIGTERM 升级为 SIGKILL 前的等待（秒）

    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_batches < 1:
            raise ConfigError(f"max_batches 必须 >= 1: {self.max_batches}")
        for name in ("drain_timeout", "cancel_grace"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} 必须为正数: {getattr(self, name)}")

    @property
    def base_path(self) -> Path:
        return Path(self.base_dir)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Config:
        """按字段类型转换；无法转换的值抛 ConfigError"""
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        types = {f.name: f.type for f in fields(cls) if f.name != "extra"}
        for key, value in data.items():
            if key not in types:
                extra[key] = value
                continue
            try:
                kwargs[key] = _coerce(types[key], value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"配置项 {key} 的值无效: {value!r}") from e
        if extra:
            logger.debug("未识别的配置项: %s", ", ".join(sorted(extra)))
        return cls(**kwargs, extra=extra)

    @classmethod
    def from_file(cls, path: str | Path = DEFAULT_SETTINGS_FILE) -> Config:
        """文件不存在或为空时返回默认配置"""
        try:
            data = load_mapping(path)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"全局配置无法读取: {path} ({e})") from e
        return cls.from_mapping(data) if data else cls()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce(type_name: str, value: Any) -> Any:
    # from __future__ annotations 下 Field.type 是字符串
    if type_name == "int":
        if isinstance(value, bool):
            raise TypeError("bool")
        return int(value)
    if type_name == "float":
        return float(value)
    if type_name == "bool":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    return str(value)


_current: Config | None = None


def get_config() -> Config:
    """当前全局配置；CLI 入口之前为默认值"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str | Path = DEFAULT_SETTINGS_FILE) -> Config:
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("全局配置: %s (base_dir=%s)", path, _current.base_dir)
    return _current
