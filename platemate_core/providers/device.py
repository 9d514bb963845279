"""Contracts for the device-level collaborators the core drives.

Microphone, speech recognizer, location hardware, geocoder and permission
prompts live outside this package. Each is an event source with a small closed
set of event types; the core only talks to them through these protocols, so
tests can inject synthetic events.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import AsyncIterator, Callable, Optional, Protocol

from platemate_core.domain.geo import Coordinate


# --------- Types ---------
class PermissionStatus(str, Enum):
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    RESTRICTED = "restricted"
    AUTHORIZED_WHEN_IN_USE = "authorized_when_in_use"
    AUTHORIZED_ALWAYS = "authorized_always"

    @property
    def is_authorized(self) -> bool:
        return self in (PermissionStatus.AUTHORIZED_WHEN_IN_USE, PermissionStatus.AUTHORIZED_ALWAYS)

    @property
    def is_blocked(self) -> bool:
        return self in (PermissionStatus.DENIED, PermissionStatus.RESTRICTED)


@dataclass(frozen=True)
class Placemark:
    sub_locality: Optional[str] = None
    """
    Neighbourhood, preferred for display.
    """
    locality: Optional[str] = None
    """
    City, used when no neighbourhood is known.
    """


class TranscriptKind(Enum):
    PARTIAL = auto()
    FINAL = auto()
    ERROR = auto()


@dataclass(frozen=True)
class TranscriptEvent:
    kind: TranscriptKind
    text: str = ""
    """
    Full-replace hypothesis for PARTIAL, the finished utterance for FINAL.
    """
    error: Optional[str] = None


# --------- Protocols ---------
class PermissionProvider(Protocol):
    async def request_permission(self) -> PermissionStatus: ...
    """
    Prompt the user if needed. Idempotent once a decision exists.
    """
    def current_status(self) -> PermissionStatus: ...


class LocationProvider(Protocol):
    def start_updates(self) -> None: ...
    """
    Begin continuous updates; fixes are delivered to LocationResolver.handle_fix.
    """
    def request_once(self) -> None: ...
    """
    Ask for a single fix, delivered the same way.
    """


class ReverseGeocodeProvider(Protocol):
    async def resolve(self, coordinate: Coordinate) -> Placemark: ...
    """
    Raise GeocodeError when the lookup fails.
    """


class RecognitionStream(Protocol):
    async def add_audio(self, data: bytes) -> None: ...
    """
    Feed one captured buffer.
    """
    async def end_input(self) -> None: ...
    """
    Graceful finalize: no more audio, a FINAL event is still expected.
    """
    def cancel(self) -> None: ...
    """
    Hard cancel: no further events will be produced.
    """
    def events(self) -> AsyncIterator[TranscriptEvent]: ...
    async def aclose(self) -> None: ...


class SpeechRecognitionProvider(Protocol):
    async def start_stream(self, *, utterance_id: str, locale: str, partial_results: bool) -> RecognitionStream: ...


class AudioCaptureSession(Protocol):
    async def open(self) -> None: ...
    """
    Acquire the microphone. Raise AudioCaptureError on failure.
    """
    def frames(self, buffer_size: int) -> AsyncIterator[bytes]: ...
    """
    Yield fixed-size buffers until closed.
    """
    async def close(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...
