"""会话控制器：把语音、定位、远端对话和实体抽取串起来。

SessionController 是聊天历史的唯一写入方。主要流程：

1. connect() 打开远端会话，历史为空时写入欢迎语。
2. submit_user_text() 记录用户消息，附加定位上下文后交给 ConversationClient。
3. 回复经 extract_restaurants 解析为餐厅实体，追加为助手消息。
4. 任何 API 失败只追加一条 error 消息；断开后才到达的结果直接丢弃。

展示层通过 changed 信号订阅变化，事件名为
history / processing / connection / location_permission_request /
displayed / connection_failed。
"""

import logging
import random
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from platemate_core.agents.conversation_client import ConversationClient
from platemate_core.agents.library import AVAILABLE_CUISINES, UserLibrary, filter_restaurants
from platemate_core.config.settings import Settings, settings
from platemate_core.domain.conversation import ChatReply, PersistenceStore
from platemate_core.domain.exceptions import BusinessError, EmptyOrUnsafeResponse, StaleResultError
from platemate_core.domain.geo import LocationFix, great_circle_distance
from platemate_core.domain.models import ChatMessage, MessageKind, RestaurantRecord, SortOption
from platemate_core.domain.signals import Signal
from platemate_core.extraction import extract_restaurants
from platemate_core.infrastructure.logging.logger import logger
from platemate_core.providers.base import GenerationConfig
from platemate_core.services.location import LocationResolver
from platemate_core.services.speech import ListenOutcome, SpeechCaptureService


WELCOME_TEXT = (
    "Hello! I'm your restaurant assistant. I can help you find great places to eat. "
    "What type of food are you looking for today?"
)
ERROR_TEXT = "Sorry, I encountered an error. Please try again."
NO_INFO_TEXT = "I couldn't find that information. Can you try asking in a different way?"

STATE_VERSION = 1


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SubmitOutcome(Enum):
    ACCEPTED = "accepted"
    NOT_CONNECTED = "not_connected"
    EMPTY = "empty"
    BUSY = "busy"


def generation_config_from_settings(cfg: Settings = settings) -> GenerationConfig:
    return GenerationConfig(
        model=cfg.model_name,
        temperature=cfg.temperature,
        top_p=cfg.top_p,
        top_k=cfg.top_k,
        max_output_tokens=cfg.max_output_tokens,
    )


def build_prompt(text: str, fix: Optional[LocationFix]) -> str:
    """给用户输入附加定位上下文。"""

    if fix is not None:
        return (
            f"Please find restaurants at these exact coordinates: {fix.latitude}, {fix.longitude}. "
            f"The user is asking: {text}"
        )
    return f"I am looking for restaurants nearby. {text}"


class SessionController:
    def __init__(
        self,
        conversation: ConversationClient,
        location: LocationResolver,
        store: PersistenceStore,
        speech: Optional[SpeechCaptureService] = None,
        generation_config: Optional[GenerationConfig] = None,
        rng: Optional[random.Random] = None,
        max_history: Optional[int] = None,
        max_recent_searches: Optional[int] = None,
    ):
        self._conversation = conversation
        self._location = location
        self._store = store
        self._speech = speech
        self._generation_config = generation_config or generation_config_from_settings()
        self._rng = rng or random.Random()
        self._max_history = max_history if max_history is not None else settings.max_history_messages

        self._state = ConnectionState.DISCONNECTED
        self._history: List[ChatMessage] = []
        self._processing = False
        self._last_results: List[RestaurantRecord] = []
        self._displayed: List[RestaurantRecord] = []
        self._location_started = False
        self.show_location_request = False
        self.library = UserLibrary(
            max_recent_searches if max_recent_searches is not None else settings.max_recent_searches
        )

        self.changed = Signal("session")
        location.fix_changed.connect(self._on_fix)
        if speech is not None:
            speech.on_final_transcript = self.submit_user_text

        self.load()

    # ---- 状态 ----

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def history(self) -> List[ChatMessage]:
        return list(self._history)

    @property
    def displayed_restaurants(self) -> List[RestaurantRecord]:
        return list(self._displayed)

    @property
    def location(self) -> LocationResolver:
        """定位服务；宿主把 Provider 回调转给 location.handle_fix 等方法。"""

        return self._location

    @property
    def speech(self) -> Optional[SpeechCaptureService]:
        return self._speech

    # ---- 连接 ----

    async def start(self) -> None:
        """启动：先申请定位权限并开始定位重试，再连接远端会话。

        定位只在第一次调用时启动；连接失败的 BusinessError 原样抛出。
        """

        if not self._location_started:
            self._location_started = True
            await self._location.request_permission()
            self._location.start_retries()
        await self.connect()

    async def connect(self) -> None:
        if self._state is not ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._conversation.start_session(self._generation_config)
        except BusinessError as e:
            self._log(logging.ERROR, "Failed to initialize chat session", code=e.code, error=e.message)
            self._set_state(ConnectionState.DISCONNECTED)
            self.changed.emit("connection_failed")
            raise

        if self._state is not ConnectionState.CONNECTING:
            # 连接过程中已被 disconnect
            self._conversation.end_session()
            return
        self._set_state(ConnectionState.CONNECTED)
        if not self._history:
            self._append(ChatMessage(text=WELCOME_TEXT, sender="assistant", kind="welcome"))

    async def disconnect(self) -> None:
        if self._speech is not None:
            await self._speech.cancel()
        self._conversation.end_session()
        self._set_processing(False)
        self._set_state(ConnectionState.DISCONNECTED)

    # ---- 输入 ----

    async def submit_user_text(self, text: str) -> SubmitOutcome:
        if self._state is not ConnectionState.CONNECTED:
            self._log(logging.INFO, "Rejected input: not connected")
            return SubmitOutcome.NOT_CONNECTED
        query = text.strip()
        if not query:
            return SubmitOutcome.EMPTY
        if self._processing:
            self._log(logging.INFO, "Rejected input: request already processing")
            return SubmitOutcome.BUSY

        token = self._conversation.session_token
        self.library.add_recent_search(query)
        self._append(ChatMessage(text=query, sender="user"))
        self._set_processing(True)

        fix = self._location.current_fix
        if fix is None and self._location.status.is_blocked:
            self.show_location_request = True
            self.changed.emit("location_permission_request")
        prompt = build_prompt(query, fix)

        try:
            reply = await self._conversation.send(prompt)
        except StaleResultError:
            return SubmitOutcome.ACCEPTED
        except EmptyOrUnsafeResponse:
            self._fail(token, NO_INFO_TEXT, "empty response")
        except BusinessError as e:
            self._fail(token, ERROR_TEXT, e.message)
        except Exception as e:  # noqa: BLE001
            self._log(logging.ERROR, "Unexpected error while sending", error=repr(e))
            self._fail(token, ERROR_TEXT, str(e))
        else:
            self._complete(token, reply)
        finally:
            if self._is_current(token):
                self._set_processing(False)
        return SubmitOutcome.ACCEPTED

    async def start_listening(self) -> ListenOutcome:
        if self._speech is None:
            return ListenOutcome.UNAVAILABLE
        return await self._speech.start_listening()

    async def stop_listening(self) -> bool:
        if self._speech is None:
            return False
        return await self._speech.stop_listening()

    def dismiss_location_request(self) -> None:
        self.show_location_request = False

    # ---- 回复处理 ----

    def _is_current(self, token: Optional[str]) -> bool:
        return (
            token is not None
            and self._state is ConnectionState.CONNECTED
            and self._conversation.is_current(token)
        )

    def _complete(self, token: Optional[str], reply: ChatReply) -> None:
        if not self._is_current(token):
            self._log(logging.INFO, "Discarding response for ended session")
            return
        entities, text = extract_restaurants(reply.text, self._location.current_fix, self._rng)
        kind: MessageKind = "restaurantList" if entities else "text"
        self._append(ChatMessage(text=text, sender="assistant", kind=kind, entities=entities))
        if entities:
            self._last_results = list(entities)
            self._displayed = list(entities)
            self.changed.emit("displayed")
        self._set_processing(False)

    def _fail(self, token: Optional[str], text: str, reason: str) -> None:
        if not self._is_current(token):
            self._log(logging.INFO, "Discarding error for ended session", reason=reason)
            return
        self._log(logging.WARNING, "Request failed", reason=reason)
        self._set_processing(False)
        self._append(ChatMessage(text=text, sender="assistant", kind="error"))

    def _on_fix(self, fix: LocationFix) -> None:
        origin = fix.coordinate
        seen = set()
        records = [r for m in self._history for r in m.entities] + self._displayed + self._last_results
        for record in records:
            if id(record) in seen:
                continue
            seen.add(id(record))
            record.distance_meters = great_circle_distance(origin, record.coordinates)
        if not seen:
            return
        self._save()
        self.changed.emit("history")
        if self._displayed:
            self.changed.emit("displayed")

    # ---- 偏好与收藏 ----

    def clear_history(self) -> None:
        self._history = []
        self._save()
        self.changed.emit("history")

    def toggle_favorite(self, record: RestaurantRecord) -> bool:
        is_favorite = self.library.toggle_favorite(record)
        self._save()
        return is_favorite

    def is_favorite(self, record: RestaurantRecord) -> bool:
        return self.library.is_favorite(record)

    @property
    def favorites(self) -> List[RestaurantRecord]:
        return list(self.library.favorites)

    def suggested_queries(self) -> List[str]:
        return self.library.suggested_queries()

    def available_cuisines(self) -> List[str]:
        return list(AVAILABLE_CUISINES)

    def set_sort_option(self, option: SortOption) -> None:
        self.library.set_sort_option(option)
        self._save()
        self._displayed = filter_restaurants(self._displayed, option)
        self.changed.emit("displayed")

    def filter_restaurants(
        self,
        query: Optional[str] = None,
        cuisines: Optional[Sequence[str]] = None,
        max_price: Optional[int] = None,
        min_rating: Optional[float] = None,
    ) -> List[RestaurantRecord]:
        """对最近一次结果过滤并按偏好排序，结果成为新的展示集合。"""

        self._displayed = filter_restaurants(
            self._last_results,
            self.library.preferences.sort_preference,
            query=query,
            cuisines=cuisines,
            max_price=max_price,
            min_rating=min_rating,
        )
        self.changed.emit("displayed")
        return list(self._displayed)

    # ---- 持久化 ----

    def load(self) -> None:
        try:
            state = self._store.load_state()
        except BusinessError as e:
            self._log(logging.ERROR, "Failed to load saved state", code=e.code, error=e.message)
            return
        if not state:
            return

        history: List[ChatMessage] = []
        for raw in state.get("chat_history") or []:
            try:
                history.append(ChatMessage.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue
        self._history = history[-self._max_history:] if self._max_history > 0 else []
        self.library.load_state(state)
        self._log(logging.INFO, "Loaded saved state", messages=len(self._history))

    def _save(self) -> None:
        state: Dict[str, Any] = {
            "version": STATE_VERSION,
            "chat_history": [m.to_dict() for m in self._history[-self._max_history:]],
        }
        state.update(self.library.to_state())
        try:
            self._store.save_state(state)
        except BusinessError as e:
            self._log(logging.ERROR, "Failed to save state", code=e.code, error=e.message)

    # ---- utils ----

    def _append(self, message: ChatMessage) -> None:
        self._history.append(message)
        self._save()
        self.changed.emit("history")

    def _set_processing(self, value: bool) -> None:
        if value == self._processing:
            return
        self._processing = value
        self.changed.emit("processing")

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._log(logging.INFO, "Connection state changed", state=state.value)
        self._state = state
        self.changed.emit("connection")

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {"component": "session"}
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
