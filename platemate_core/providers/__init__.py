"""外部服务集成层。

该包下的模块负责：
- 定义对话 API 抽象接口 (base) 与设备协议 (device)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (如 gemini_client)。
"""

from typing import Optional

from platemate_core.config.settings import settings
from platemate_core.providers.base import GenerativeChatAPI
from platemate_core.providers.gemini_client import GeminiChatClient
from platemate_core.providers.registry import get_provider_config


def create_chat_api(name: Optional[str] = None) -> GenerativeChatAPI:
    """根据名称创建对话 API 实例，默认取配置中的 provider。"""

    provider_name = name or getattr(settings, "default_provider", "gemini")
    provider_cfg = get_provider_config(provider_name)
    if provider_cfg.name == "gemini":
        return GeminiChatClient(settings)
    raise KeyError(f"No client for provider: {provider_cfg.name!r}")
