"""Minimal observer used for notify-on-change between components."""

from __future__ import annotations

from typing import Any, Callable, List

from platemate_core.infrastructure.logging.logger import logger


Listener = Callable[..., Any]


class Signal:
    """一对多的同步回调。

    回调异常只记录日志，不影响其他订阅者，也不回传给发出方。
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Listener] = []

    def connect(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def disconnect() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return disconnect

    def emit(self, *args: Any, **kwargs: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    f"Listener failed on signal {self.name}",
                    extra={"extra": {"signal": self.name, "error": str(exc)}},
                )
