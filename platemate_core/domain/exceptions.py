"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在会话控制层或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


# ---- Provider 层 ----


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


# ---- 会话层 ----


class TransientAPIError(BusinessError):
    """网络或服务端失败。只生成一条兜底消息，不自动重试。"""


class EmptyOrUnsafeResponse(BusinessError):
    """调用成功但没有可用文本（空回复或被安全策略拦截）。"""


class RequestInFlightError(BusinessError):
    """会话内已有请求未完成。"""


class SessionNotStartedError(BusinessError):
    """尚未调用 start_session 或会话已结束。"""


class StaleResultError(BusinessError):
    """结果所属的会话 token 已失效，调用方应直接丢弃。"""


# ---- 设备层 ----


class PermissionDeniedError(BusinessError):
    """权限被拒绝或受限，对该资源是终态。"""


class AudioCaptureError(BusinessError):
    """音频采集或语音识别失败，采集回到 Idle。"""


class GeocodeError(BusinessError):
    """逆地理编码失败，地点名保持原值。"""
