"""Gemini Provider 适配器。

本模块负责：

1. 为每个会话维护一份远端对话历史（contents 列表）。
2. 将历史与新消息转换为 Gemini generateContent 的 HTTP 请求格式。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 从响应中取出可用文本；被安全策略拦截或没有文本时返回 None。

接口：
- URL: {base_url}/models/{model}:generateContent
- 认证: x-goog-api-key: <api_key>
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from platemate_core.config.settings import settings
from platemate_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from platemate_core.providers.base import GenerationConfig
from platemate_core.providers.registry import GEMINI_CONFIG, resolve_model


@dataclass
class GeminiSessionHandle:
    """Gemini 会话句柄：REST 接口无状态，历史保存在本地。"""

    config: GenerationConfig
    model: str
    history: List[Dict[str, Any]] = field(default_factory=list)


class GeminiChatClient:
    """Gemini 提供方客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings):
        self._settings = cfg

    async def start_session(self, config: GenerationConfig) -> GeminiSessionHandle:
        if not getattr(self._settings, "gemini_api_key", None):
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        return GeminiSessionHandle(config=config, model=resolve_model(GEMINI_CONFIG, config.model))

    async def send_message(self, handle: GeminiSessionHandle, text: str) -> Optional[str]:
        """发送一条用户消息并返回回复文本。

        只有拿到可用回复时才把本轮写入历史，保证 user/model 严格交替。
        """

        user_turn = {"role": "user", "parts": [{"text": text}]}
        payload = self._build_payload(handle.history + [user_turn], handle.config)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{base}/models/{handle.model}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": self._settings.gemini_api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="INVALID_RESPONSE", message=f"Invalid JSON response: {e}", http_status=resp.status_code)
        if not isinstance(data, dict):
            raise ApiError(code="INVALID_RESPONSE", message="Response is not a JSON object", http_status=resp.status_code)
        reply = self._parse_response(data)
        if reply is not None:
            handle.history.append(user_turn)
            handle.history.append({"role": "model", "parts": [{"text": reply}]})
        return reply

    @staticmethod
    def _build_payload(contents: List[Dict[str, Any]], config: GenerationConfig) -> Dict[str, Any]:
        return {
            "contents": contents,
            "generationConfig": {
                "temperature": config.temperature,
                "topP": config.top_p,
                "topK": config.top_k,
                "maxOutputTokens": config.max_output_tokens,
                "responseMimeType": config.response_mime_type,
            },
        }

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> Optional[str]:
        """取第一个候选的文本部分。

        thinking 模型会返回 thought=true 的推理片段，这里跳过。
        没有候选（promptFeedback.blockReason）或文本为空时返回 None。
        """

        candidates = data.get("candidates") or []
        if not candidates:
            return None
        content = candidates[0].get("content") or {}
        texts = [
            part.get("text") or ""
            for part in content.get("parts") or []
            if not part.get("thought")
        ]
        reply = "".join(texts)
        return reply if reply.strip() else None
