"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "restaurant-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-2.0-flash-thinking-exp-01-21"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置；
未登记的名字按厂商模型 ID 原样透传。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "restaurant-chat": ModelConfig(
            logical_name="restaurant-chat",
            provider_model="gemini-2.0-flash-thinking-exp-01-21",
            max_tokens=2048,
            default_temperature=0.7,
        )
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def resolve_model(provider: ProviderConfig, name: str) -> str:
    """逻辑名映射为厂商模型 ID。"""

    model_cfg = provider.models.get(name)
    return model_cfg.provider_model if model_cfg else name
