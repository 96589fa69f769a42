"""
Configuration manager: locate, parse, map and validate PhotoPath settings.
"""
import os
import json
import logging
from dataclasses import fields, is_dataclass
from typing import Dict, Any, Optional

import yaml

from models.config import AppConfig

CONFIG_ENV_VAR = "PHOTOPATH_CONFIG"
CONFIG_CANDIDATES = (
    "photopath.yaml",
    "photopath.yml",
    "photopath.json",
    "config.yaml",
    "config.yml",
    "config.json",
)


class ConfigManager:
    """Loads AppConfig from YAML/JSON with defaults for everything missing."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: Explicit file. Falls back to $PHOTOPATH_CONFIG, then
                the first candidate file found in the working directory.
        """
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path or os.environ.get(CONFIG_ENV_VAR) or self._find_config_file()
        self._config: Optional[AppConfig] = None

    @staticmethod
    def _find_config_file() -> Optional[str]:
        return next((p for p in CONFIG_CANDIDATES if os.path.exists(p)), None)

    def load_config(self) -> AppConfig:
        """
        加载配置：文件存在则解析并映射到 AppConfig，否则使用全部默认值；最后统一校验。

        Raises:
            ValueError: 文件格式不支持或校验失败
        """
        if self._config is not None:
            return self._config

        if self.config_path and os.path.exists(self.config_path):
            self._config = self._create_config_from_dict(self._read_file(self.config_path))
            self.logger.debug(f"Configuration loaded from {self.config_path}")
        else:
            if self.config_path:
                self.logger.info(f"配置文件 {self.config_path} 不存在，使用默认配置")
            self._config = AppConfig()

        self._config.validate()
        return self._config

    @staticmethod
    def _format_of(file_path: str) -> str:
        ext = os.path.splitext(file_path)[1].lower()
        if ext in (".yaml", ".yml"):
            return "yaml"
        if ext == ".json":
            return "json"
        raise ValueError(f"Unsupported configuration file format: {ext}")

    def _read_file(self, file_path: str) -> Dict[str, Any]:
        fmt = self._format_of(file_path)
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) if fmt == "yaml" else json.load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {file_path}")
        return data

    def _apply_section(self, target: Any, values: Dict[str, Any], section: str) -> None:
        """Copy known keys onto a config dataclass, coerced to the type of the default."""
        known = {f.name for f in fields(target)}
        for key, value in values.items():
            if key not in known:
                self.logger.warning(f"Unknown configuration key ignored: {section}.{key}")
                continue
            current = getattr(target, key)
            if value is not None:
                if isinstance(current, bool):
                    value = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes", "on")
                elif isinstance(current, int):
                    value = int(value)
                elif isinstance(current, float):
                    value = float(value)
            setattr(target, key, value)

    def _create_config_from_dict(self, config_data: Dict[str, Any]) -> AppConfig:
        """
        从字典数据创建 AppConfig 实例。

        处理流程：
        1) 顶层键对应 AppConfig 的各个子配置（hashing/cache/quota/thumbnails/share_card/upload/analysis/logging）；
        2) 子配置中的已知字段按默认值的类型做转换后写入；
        3) 未知分节与未知字段记录警告后忽略。
        """
        app_cfg = AppConfig()
        for section, values in config_data.items():
            target = getattr(app_cfg, section, None)
            if target is None or not is_dataclass(target):
                self.logger.warning(f"Unknown configuration section ignored: {section}")
                continue
            if not isinstance(values, dict):
                self.logger.warning(f"Configuration section {section} must be a mapping, ignored")
                continue
            self._apply_section(target, values, section)
        return app_cfg

    def save_config(self, config: AppConfig, file_path: Optional[str] = None) -> None:
        """Write the configuration (API keys excluded) as YAML or JSON by extension."""
        save_path = file_path or self.config_path or CONFIG_CANDIDATES[0]
        fmt = self._format_of(save_path)
        parent = os.path.dirname(save_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        with open(save_path, "w", encoding="utf-8") as f:
            if fmt == "yaml":
                yaml.safe_dump(config.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False)
            else:
                json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)
        self.logger.info(f"配置已保存到 {save_path}")

    def get_config(self) -> AppConfig:
        if self._config is None:
            return self.load_config()
        return self._config

    def reload_config(self) -> AppConfig:
        self._config = None
        return self.load_config()

    def create_default_config_file(self, file_path: str = CONFIG_CANDIDATES[0]) -> None:
        self.save_config(AppConfig(), file_path)
