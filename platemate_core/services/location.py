"""定位解析服务。

LocationResolver 负责：

- 向权限 Provider 申请定位权限，授权后开启持续更新并立即请求一次定位。
- 保存最新的 LocationFix（整体替换），并通过 fix_changed 通知订阅者。
- 对逆地理编码做单飞合并：同一时间最多一个查询在途。
- 在还没有定位时按有界指数退避重试（默认 2、4、8、16、30 秒，共 5 次）。

所有外部事件（授权变化、定位、错误）都通过 handle_* 方法注入，
计时器通过 Scheduler 注入，测试中无需等待真实时间。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from platemate_core.config.settings import settings
from platemate_core.domain.exceptions import GeocodeError, PermissionDeniedError
from platemate_core.domain.geo import Coordinate, LocationFix, great_circle_distance
from platemate_core.domain.signals import Signal
from platemate_core.infrastructure.logging.logger import logger
from platemate_core.providers.device import (
    LocationProvider,
    PermissionProvider,
    PermissionStatus,
    ReverseGeocodeProvider,
    Scheduler,
    TimerHandle,
)


DEFAULT_PLACE_NAME = "Current Location"


class LoopScheduler:
    """基于 asyncio 事件循环的计时器。"""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass
class RetrySchedule:
    """退避状态：attempt 为已触发的重试次数，next_delay 为下一次等待时长。"""

    attempt: int
    next_delay: float
    max_attempts: int
    cap: float

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self) -> None:
        self.attempt += 1
        self.next_delay = min(self.next_delay * 2, self.cap)


class LocationResolver:
    def __init__(
        self,
        permissions: PermissionProvider,
        location: LocationProvider,
        geocoder: ReverseGeocodeProvider,
        scheduler: Optional[Scheduler] = None,
        retry_base: Optional[float] = None,
        retry_cap: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self._permissions = permissions
        self._location = location
        self._geocoder = geocoder
        self._scheduler = scheduler or LoopScheduler()
        self._retry_base = retry_base if retry_base is not None else settings.location_retry_base
        self._retry_cap = retry_cap if retry_cap is not None else settings.location_retry_cap
        self._max_attempts = max_attempts if max_attempts is not None else settings.location_retry_max_attempts

        self._status: PermissionStatus = permissions.current_status()
        self._fix: Optional[LocationFix] = None
        self._updating = False
        self._place_name = DEFAULT_PLACE_NAME
        self._geocode_pending = False
        self._geocode_task: Optional[asyncio.Task] = None
        self._permission_task: Optional[asyncio.Task] = None
        self._schedule: Optional[RetrySchedule] = None
        self._timer: Optional[TimerHandle] = None
        self._denied_signaled = False

        self.fix_changed = Signal("fix")
        self.place_changed = Signal("place")
        self.status_changed = Signal("status")
        self.permission_denied = Signal("permission_denied")

    # ---- 状态 ----

    @property
    def status(self) -> PermissionStatus:
        return self._status

    @property
    def current_fix(self) -> Optional[LocationFix]:
        return self._fix

    @property
    def is_location_available(self) -> bool:
        return self._fix is not None

    @property
    def place_name(self) -> str:
        return self._place_name

    @property
    def retry_schedule(self) -> Optional[RetrySchedule]:
        return self._schedule

    @property
    def geocode_pending(self) -> bool:
        return self._geocode_pending

    # ---- 权限 ----

    async def request_permission(self) -> PermissionStatus:
        self._log(logging.INFO, "Requesting location permission")
        try:
            status = await self._permissions.request_permission()
        except PermissionDeniedError as e:
            self._log(logging.WARNING, "Location permission request failed", error=e.message)
            status = PermissionStatus.DENIED
        self.handle_authorization_change(status)
        return status

    def handle_authorization_change(self, status: PermissionStatus) -> None:
        self._log(logging.INFO, "Location authorization changed", status=status.value)
        changed = status is not self._status
        self._status = status
        if changed:
            self.status_changed.emit(status)
        if status.is_authorized and not self._updating:
            self._updating = True
            self._log(logging.INFO, "Location permission granted, starting updates")
            self._location.start_updates()
            self._location.request_once()

    # ---- 定位事件 ----

    def handle_fix(self, fix: LocationFix) -> None:
        self._log(logging.INFO, "Location updated", latitude=fix.latitude, longitude=fix.longitude)
        self._fix = fix
        self._halt_retries("fix obtained")
        self.fix_changed.emit(fix)
        self._resolve_place_name(fix)

    def handle_error(self, error: Exception) -> None:
        self._log(logging.WARNING, "Location provider failed", error=str(error))

    def distance_to(self, coordinate: Coordinate) -> Optional[float]:
        if self._fix is None:
            return None
        return great_circle_distance(self._fix.coordinate, coordinate)

    # ---- 逆地理编码 ----

    def _resolve_place_name(self, fix: LocationFix) -> None:
        if self._geocode_pending:
            return
        self._geocode_pending = True
        self._geocode_task = asyncio.get_running_loop().create_task(self._geocode(fix))

    async def _geocode(self, fix: LocationFix) -> None:
        try:
            placemark = await self._geocoder.resolve(fix.coordinate)
        except GeocodeError as e:
            self._log(logging.WARNING, "Reverse geocoding error", error=e.message)
            return
        finally:
            self._geocode_pending = False
        name = placemark.sub_locality or placemark.locality or DEFAULT_PLACE_NAME
        if name != self._place_name:
            self._place_name = name
            self.place_changed.emit(name)

    # ---- 退避重试 ----

    def start_retries(self) -> None:
        """在还没有定位时启动重试；已在运行或已有定位时不做任何事。"""

        if self._fix is not None or self._schedule is not None:
            return
        if self._status.is_blocked:
            self._signal_denied()
            return
        self._schedule = RetrySchedule(
            attempt=0,
            next_delay=self._retry_base,
            max_attempts=self._max_attempts,
            cap=self._retry_cap,
        )
        self._arm()

    def _arm(self) -> None:
        schedule = self._schedule
        if schedule is None:
            return
        if schedule.exhausted:
            self._log(logging.INFO, "Maximum location retry count reached", attempts=schedule.attempt)
            self._schedule = None
            return
        self._log(
            logging.INFO,
            "Scheduling location retry",
            attempt=schedule.attempt + 1,
            delay=schedule.next_delay,
        )
        self._timer = self._scheduler.call_later(schedule.next_delay, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._timer = None
        if self._schedule is None:
            return
        if self._fix is not None:
            self._halt_retries("fix obtained")
            return

        status = self._permissions.current_status()
        was_updating = self._updating
        if status is not self._status:
            self.handle_authorization_change(status)
        just_started = self._updating and not was_updating
        if status.is_blocked:
            self._log(logging.WARNING, "Location permission denied - cannot retry")
            self._halt_retries("permission denied")
            self._signal_denied()
            return

        self._schedule.advance()
        self._log(logging.INFO, "Location still nil, retrying", attempt=self._schedule.attempt)
        if status.is_authorized:
            if just_started:
                self._arm()
                return
            self._location.start_updates()
            self._location.request_once()
        else:
            self._request_permission_in_background()
        self._arm()

    def _halt_retries(self, reason: str) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._schedule is not None:
            self._log(logging.INFO, "Location retries halted", reason=reason, attempts=self._schedule.attempt)
            self._schedule = None

    def _request_permission_in_background(self) -> None:
        if self._permission_task is not None and not self._permission_task.done():
            return
        self._permission_task = asyncio.get_running_loop().create_task(self.request_permission())

    def _signal_denied(self) -> None:
        if self._denied_signaled:
            return
        self._denied_signaled = True
        self.permission_denied.emit(self._status)

    def stop(self) -> None:
        self._halt_retries("stopped")
        if self._geocode_task is not None and not self._geocode_task.done():
            self._geocode_task.cancel()
        if self._permission_task is not None and not self._permission_task.done():
            self._permission_task.cancel()

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {"component": "location"}
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
