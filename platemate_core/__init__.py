"""PlateMate Core 顶层包。

该包提供语音/文本驱动的餐厅搜索助手的编排引擎，
包括配置加载、领域模型、对话 API 适配、定位与语音服务、
餐厅实体抽取、会话控制与持久化存储等能力。
"""

from platemate_core.agents.session_controller import ConnectionState, SessionController, SubmitOutcome
from platemate_core.api.service import ask, build_session_controller

__all__ = ["ConnectionState", "SessionController", "SubmitOutcome", "ask", "build_session_controller"]
