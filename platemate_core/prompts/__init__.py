"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取餐厅助手的 system prompt，
由 ConversationClient 在每个会话的第一次发送前作为 priming 消息发出。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=8)
def load_system_prompt(locale: str = "en") -> str:
    """根据语言加载系统提示词文本（去掉首尾空白）。"""

    fname = PROMPTS_DIR / locale / "restaurant_assistant_system.md"
    return fname.read_text(encoding="utf-8").strip()
