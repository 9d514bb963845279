"""单个远端对话会话的封装。

远端对话是严格有序的单线程：

- 同一时刻最多一个请求在途，第二个 send 直接抛 RequestInFlightError。
- 会话内第一次 send 前先把系统提示词作为内部消息发出（priming），
  只有这次交换成功才把 primed 置为 True；失败时整个调用抛
  TransientAPIError，下次 send 会重新 priming。
- 每个结果都带着发起时的 session_token；若期间会话已结束或被替换，
  抛 StaleResultError，调用方直接丢弃。

Provider 的 NetworkError / ApiError / RateLimitError 统一归为
TransientAPIError；调用成功但没有可用文本归为 EmptyOrUnsafeResponse。
两者都不会自动重试。
"""

import logging
import time
from typing import Any, Dict, Optional
from uuid import uuid4

from platemate_core.domain.conversation import ChatReply, ConversationSession
from platemate_core.domain.exceptions import (
    ApiError,
    BusinessError,
    EmptyOrUnsafeResponse,
    NetworkError,
    RateLimitError,
    RequestInFlightError,
    SessionNotStartedError,
    StaleResultError,
    TransientAPIError,
)
from platemate_core.infrastructure.logging.logger import logger
from platemate_core.prompts import load_system_prompt
from platemate_core.providers.base import GenerationConfig, GenerativeChatAPI


_TRANSIENT = (NetworkError, ApiError, RateLimitError)


class ConversationClient:
    def __init__(self, api: GenerativeChatAPI, system_prompt: Optional[str] = None):
        self._api = api
        self._system_prompt = system_prompt if system_prompt is not None else load_system_prompt()
        self._session: Optional[ConversationSession] = None

    @property
    def session(self) -> Optional[ConversationSession]:
        return self._session

    @property
    def session_token(self) -> Optional[str]:
        return self._session.session_token if self._session else None

    @property
    def is_primed(self) -> bool:
        return bool(self._session and self._session.primed)

    @property
    def in_flight(self) -> bool:
        return bool(self._session and self._session.in_flight)

    async def start_session(self, config: GenerationConfig) -> str:
        """打开新会话并返回其 token。旧会话（如有）立即失效。"""

        self.end_session()
        handle = await self._api.start_session(config)
        self._session = ConversationSession(handle=handle)
        self._log(
            logging.INFO,
            "Started conversation session",
            session_token=self._session.session_token,
            model=config.model,
        )
        return self._session.session_token

    def end_session(self) -> None:
        if self._session is None:
            return
        self._log(logging.INFO, "Ended conversation session", session_token=self._session.session_token)
        self._session = None

    def is_current(self, session_token: str) -> bool:
        return self._session is not None and self._session.session_token == session_token

    async def send(self, text: str) -> ChatReply:
        session = self._session
        if session is None:
            raise SessionNotStartedError(code="SESSION_NOT_STARTED", message="Chat not initialized")
        if session.in_flight:
            raise RequestInFlightError(
                code="REQUEST_IN_FLIGHT",
                message="A request is already in flight for this session",
                session_token=session.session_token,
            )

        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "session_token": session.session_token,
        }
        start_time = time.time()
        session.in_flight = True
        try:
            if not session.primed:
                await self._prime(session, log_ctx)
            try:
                reply = await self._api.send_message(session.handle, text)
            except _TRANSIENT as e:
                self._check_current(session, log_ctx)
                raise TransientAPIError(
                    code="TRANSIENT_API_ERROR",
                    message=e.message,
                    cause=e.code,
                    http_status=e.http_status,
                )
        finally:
            session.in_flight = False

        self._check_current(session, log_ctx)
        if reply is None or not reply.strip():
            self._log(logging.WARNING, "No text in response", log_ctx)
            raise EmptyOrUnsafeResponse(code="EMPTY_RESPONSE", message="No usable text in response")

        self._log(
            logging.INFO,
            "Received response",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            length=len(reply),
        )
        return ChatReply(session_token=session.session_token, text=reply)

    async def _prime(self, session: ConversationSession, log_ctx: Dict[str, Any]) -> None:
        self._log(logging.INFO, "Sending system prompt", log_ctx)
        try:
            await self._api.send_message(session.handle, self._system_prompt)
        except BusinessError as e:
            self._check_current(session, log_ctx)
            self._log(logging.WARNING, "Priming failed", log_ctx, error=e.message)
            raise TransientAPIError(
                code="PRIMING_FAILED",
                message=e.message,
                cause=e.code,
            )
        session.primed = True

    def _check_current(self, session: ConversationSession, log_ctx: Dict[str, Any]) -> None:
        if self._session is not session:
            self._log(logging.INFO, "Discarding stale result", log_ctx)
            raise StaleResultError(
                code="STALE_RESULT",
                message="Session ended before the response arrived",
                session_token=session.session_token,
            )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Optional[Dict[str, Any]] = None, **fields: Any) -> None:
        payload = dict(log_ctx or {})
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
