"""对外 API 服务模块。

根据配置组装 SessionController，并提供若干便于上层调用的简化函数。
设备相关的 Provider（定位、麦克风、语音识别、逆地理编码）由宿主应用注入。
"""

from typing import Any, Dict, Optional

from platemate_core.agents.conversation_client import ConversationClient
from platemate_core.agents.session_controller import (
    SessionController,
    SubmitOutcome,
    generation_config_from_settings,
)
from platemate_core.config.settings import settings
from platemate_core.domain.conversation import PersistenceStore
from platemate_core.infrastructure.logging.logger import logger
from platemate_core.infrastructure.storage.json_store import JsonStateStore
from platemate_core.providers import create_chat_api
from platemate_core.providers.base import GenerativeChatAPI
from platemate_core.providers.device import (
    AudioCaptureSession,
    LocationProvider,
    PermissionProvider,
    ReverseGeocodeProvider,
    Scheduler,
    SpeechRecognitionProvider,
)
from platemate_core.services.location import LocationResolver
from platemate_core.services.speech import SpeechCaptureService


def build_session_controller(
    location_permissions: PermissionProvider,
    location_provider: LocationProvider,
    geocoder: ReverseGeocodeProvider,
    speech_permissions: Optional[PermissionProvider] = None,
    audio: Optional[AudioCaptureSession] = None,
    recognizer: Optional[SpeechRecognitionProvider] = None,
    store: Optional[PersistenceStore] = None,
    chat_api: Optional[GenerativeChatAPI] = None,
    scheduler: Optional[Scheduler] = None,
) -> SessionController:
    """按配置组装一个 SessionController。

    Args:
        location_permissions: 定位权限 Provider
        location_provider: 定位 Provider，定位结果需回调 LocationResolver.handle_fix
        geocoder: 逆地理编码 Provider
        speech_permissions / audio / recognizer: 语音输入三件套，缺任意一个则不启用语音
        store: 持久化实现，默认 JsonStateStore(settings.storage_root)
        chat_api: 对话 API，默认按 settings.default_provider 创建
        scheduler: 重试计时器，默认使用事件循环

    Returns:
        尚未连接的 SessionController
    """

    location = LocationResolver(location_permissions, location_provider, geocoder, scheduler=scheduler)

    speech: Optional[SpeechCaptureService] = None
    if speech_permissions is not None and audio is not None and recognizer is not None:
        speech = SpeechCaptureService(speech_permissions, audio, recognizer)

    controller = SessionController(
        conversation=ConversationClient(chat_api or create_chat_api()),
        location=location,
        store=store or JsonStateStore(root=settings.storage_root),
        speech=speech,
        generation_config=generation_config_from_settings(settings),
    )
    logger.info(
        "Session controller ready",
        extra={"extra": {"voice_input": speech is not None, "model": settings.model_name}},
    )
    return controller


async def ask(controller: SessionController, text: str) -> Dict[str, Any]:
    """提交一条文本查询，返回结果摘要。

    未连接时先调用 controller.start()（启动定位并连接）；连接失败的 BusinessError 原样抛出。
    """

    if not controller.is_connected:
        await controller.start()
    before = len(controller.history)
    outcome = await controller.submit_user_text(text)
    new_messages = controller.history[before:] if outcome is SubmitOutcome.ACCEPTED else []
    return {
        "outcome": outcome.value,
        "messages": [m.to_dict() for m in new_messages],
        "restaurants": [r.to_dict() for r in controller.displayed_restaurants],
        "place_name": controller.location.place_name,
    }
