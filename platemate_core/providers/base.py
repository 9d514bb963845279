"""对话 Provider 抽象接口。

会话层（ConversationClient）不直接依赖具体厂商的 HTTP 接口，而是依赖此协议：

- 每个厂商实现一个 GenerativeChatAPI（如 GeminiChatClient）。
- start_session 返回一个不透明的会话句柄，远端对话历史由句柄自己维护。
- send_message 返回回复文本；调用成功但没有可用文本时返回 None。

这样可以在不改会话代码的前提下接入更多厂商。
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass
class GenerationConfig:
    """一次会话的生成参数。"""

    model: str
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 64
    max_output_tokens: int = 2048
    response_mime_type: str = "text/plain"


class GenerativeChatAPI(Protocol):
    """对话 API 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - start_session(config): 打开一个远端对话会话。
    - send_message(handle, text): 在该会话中发送一条消息。
    """

    name: str

    async def start_session(self, config: GenerationConfig) -> Any:
        ...

    async def send_message(self, handle: Any, text: str) -> Optional[str]:
        ...
