"""
配置加载工具模块 (config/loader.py)
=================================
本模块负责 CLI 配置文件的加载、保存和格式转换：
- 配置文件默认路径: ~/.aster/config.json
- 配置文件使用 camelCase，Python 内部使用 snake_case，加载/保存时自动转换

对于 Java 开发者：
- camelCase ↔ snake_case 转换类似于 Jackson 的 @JsonNaming 注解功能
"""

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from aster.config.schema import Config


def get_config_path() -> Path:
    """获取默认配置文件路径: ~/.aster/config.json"""
    return Path.home() / ".aster" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    从 JSON 文件加载配置，若文件不存在或损坏则返回默认配置。

    加载流程：
    1. 读取 JSON 文件内容
    2. 将 camelCase 键名转换为 snake_case（convert_keys）
    3. 使用 Pydantic 的 model_validate 进行类型验证
    环境变量（ASTER_ 前缀）在 Config 构造时自动生效。
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load config from {path}: {e}, using default configuration")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """将配置对象保存为 camelCase 格式的 JSON 文件，返回写入路径。"""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump(mode="json"))
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def convert_keys(data: Any) -> Any:
    """递归地将字典键名从 camelCase 转为 snake_case。示例: {"maxSteps": 20} → {"max_steps": 20}"""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """递归地将字典键名从 snake_case 转为 camelCase。"""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    # "apiKey" → "api_key"
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    # "api_key" → "apiKey"
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
