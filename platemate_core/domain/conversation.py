from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4


@dataclass
class ConversationSession:
    """一次远端对话会话的状态。

    primed 在会话生命周期内最多翻转一次；session_token 用于识别
    断开后才到达的过期结果。
    """

    handle: Any
    primed: bool = False
    in_flight: bool = False
    session_token: str = field(default_factory=lambda: f"s-{uuid4().hex}")


@dataclass
class ChatReply:
    session_token: str
    text: str


class PersistenceStore(Protocol):
    def load_state(self) -> Optional[Dict[str, Any]]:
        ...

    def save_state(self, state: Dict[str, Any]) -> None:
        ...
