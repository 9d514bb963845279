"""Streaming speech capture with incremental transcription.

Responsibilities
----------------
• Ask for microphone/speech permission before touching the audio session.
• Run a "tap" task that pumps fixed-size buffers from the capture session into
  a recognition stream configured for partial results.
• Keep `current_transcription` equal to the latest partial hypothesis
  (replace, never append).
• On FINAL: release audio, go back to IDLE and forward a non-empty transcript
  to `on_final_transcript` as if it had been typed.
• On provider error: release audio, go back to IDLE, forward nothing.

Notes
-----
• At most one recognition task is active. Each start bumps a generation
  counter; events from an older generation are dropped, so cancelling a task
  is synchronous from the caller's point of view.
• `stop_listening()` is a graceful finalize (end of audio), `cancel()` is a
  hard abort used on disconnect.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

from platemate_core.config.settings import settings
from platemate_core.domain.exceptions import AudioCaptureError, PermissionDeniedError
from platemate_core.domain.signals import Signal
from platemate_core.infrastructure.logging.logger import logger
from platemate_core.providers.device import (
    AudioCaptureSession,
    PermissionProvider,
    PermissionStatus,
    RecognitionStream,
    SpeechRecognitionProvider,
    TranscriptKind,
)


class CaptureState(Enum):
    IDLE = "idle"
    AWAITING_PERMISSION = "awaiting_permission"
    RECORDING = "recording"
    FINALIZING = "finalizing"


class ListenOutcome(Enum):
    STARTED = "started"
    ALREADY_ACTIVE = "already_active"
    UNAVAILABLE = "unavailable"
    PERMISSION_DENIED = "permission_denied"
    CAPTURE_FAILED = "capture_failed"


FinalTranscriptHandler = Callable[[str], Awaitable[Any]]


class SpeechCaptureService:
    def __init__(
        self,
        permissions: PermissionProvider,
        audio: AudioCaptureSession,
        recognizer: SpeechRecognitionProvider,
        *,
        voice_input_enabled: Optional[bool] = None,
        buffer_size: Optional[int] = None,
        locale: Optional[str] = None,
        on_final_transcript: Optional[FinalTranscriptHandler] = None,
    ) -> None:
        self._permissions = permissions
        self._audio = audio
        self._recognizer = recognizer
        self.voice_input_enabled = (
            settings.voice_input_enabled if voice_input_enabled is None else bool(voice_input_enabled)
        )
        self.buffer_size = int(buffer_size or settings.audio_buffer_size)
        self.locale = locale or settings.speech_locale
        self.on_final_transcript = on_final_transcript

        self._state = CaptureState.IDLE
        self._generation = 0
        self._stream: Optional[RecognitionStream] = None
        self._audio_open = False
        self._tap_task: Optional[asyncio.Task] = None
        self._events_task: Optional[asyncio.Task] = None
        self.current_transcription: str = ""

        self.state_changed = Signal("capture_state")
        self.transcription_changed = Signal("transcription")
        self.failed = Signal("capture_failed")

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state is CaptureState.RECORDING

    # ----------------- public API -----------------
    async def start_listening(self) -> ListenOutcome:
        if self._state is not CaptureState.IDLE:
            return ListenOutcome.ALREADY_ACTIVE
        if not self.voice_input_enabled:
            self._log(logging.INFO, "Voice input disabled by configuration")
            self.failed.emit(ListenOutcome.UNAVAILABLE)
            return ListenOutcome.UNAVAILABLE

        self._set_state(CaptureState.AWAITING_PERMISSION)
        try:
            status = await self._permissions.request_permission()
        except PermissionDeniedError as e:
            self._log(logging.WARNING, "Speech permission request failed", error=e.message)
            status = PermissionStatus.DENIED
        if not status.is_authorized:
            self._log(logging.WARNING, "Speech permission denied", status=status.value)
            self._set_state(CaptureState.IDLE)
            self.failed.emit(ListenOutcome.PERMISSION_DENIED)
            return ListenOutcome.PERMISSION_DENIED

        # 取消上一轮识别；旧 generation 的事件从此被丢弃
        self._generation += 1
        generation = self._generation
        await self._abort_active()
        utterance_id = f"u-{uuid4().hex}"

        try:
            await self._audio.open()
            self._audio_open = True
            stream = await self._recognizer.start_stream(
                utterance_id=utterance_id,
                locale=self.locale,
                partial_results=True,
            )
        except AudioCaptureError as e:
            self._log(logging.ERROR, "Recording failed", error=e.message)
            await self._release_audio()
            self._set_state(CaptureState.IDLE)
            self.failed.emit(ListenOutcome.CAPTURE_FAILED)
            return ListenOutcome.CAPTURE_FAILED

        self._stream = stream
        loop = asyncio.get_running_loop()
        self._tap_task = loop.create_task(self._run_tap(stream))
        self._events_task = loop.create_task(self._run_events(generation, stream))
        self._set_transcription("")
        self._set_state(CaptureState.RECORDING)
        self._log(logging.INFO, "Recording started", utterance_id=utterance_id)
        return ListenOutcome.STARTED

    async def stop_listening(self) -> bool:
        """优雅结束：通知识别器音频结束，最终结果仍会被转发。"""

        if self._state is not CaptureState.RECORDING:
            return False
        self._set_state(CaptureState.FINALIZING)
        await self._stop_tap()
        stream = self._stream
        if stream is not None:
            try:
                await stream.end_input()
            except AudioCaptureError as e:
                self._log(logging.WARNING, "Failed to finalize recognition", error=e.message)
        await self._release_audio()
        self._set_transcription("")
        self._set_state(CaptureState.IDLE)
        self._log(logging.INFO, "Recording stopped")
        return True

    async def cancel(self) -> None:
        """硬取消：当前识别不会再产生任何事件。"""

        self._generation += 1
        await self._abort_active()
        self._set_transcription("")
        self._set_state(CaptureState.IDLE)

    # ----------------- tasks ------------------
    async def _run_tap(self, stream: RecognitionStream) -> None:
        try:
            async for buffer in self._audio.frames(self.buffer_size):
                await stream.add_audio(buffer)
        except AudioCaptureError as e:
            self._log(logging.ERROR, "Audio tap failed", error=e.message)
            stream.cancel()

    async def _run_events(self, generation: int, stream: RecognitionStream) -> None:
        final_text: Optional[str] = None
        try:
            async for event in stream.events():
                if generation != self._generation:
                    return
                if event.kind is TranscriptKind.PARTIAL:
                    if self._state is CaptureState.RECORDING:
                        self._set_transcription(event.text)
                    continue
                if event.kind is TranscriptKind.FINAL:
                    final_text = event.text
                else:
                    self._log(logging.WARNING, "Speech recognition error", error=event.error)
                break
        except AudioCaptureError as e:
            self._log(logging.WARNING, "Speech recognition error", error=e.message)
        except Exception as e:  # noqa: BLE001
            self._log(logging.ERROR, "Recognition task failed", error=repr(e))
            final_text = None
            if generation == self._generation:
                self.failed.emit(ListenOutcome.CAPTURE_FAILED)
        finally:
            if generation == self._generation:
                await self._finish(stream)

        if generation != self._generation:
            return
        if final_text and final_text.strip() and self.on_final_transcript is not None:
            self._log(logging.INFO, "Forwarding final transcript", length=len(final_text))
            await self.on_final_transcript(final_text.strip())

    # ----------------- utils -------------------
    async def _finish(self, stream: RecognitionStream) -> None:
        await self._stop_tap()
        await self._release_audio()
        try:
            await stream.aclose()
        except AudioCaptureError as e:
            self._log(logging.WARNING, "Failed to close recognition stream", error=e.message)
        if self._stream is stream:
            self._stream = None
        self._events_task = None
        self._set_transcription("")
        self._set_state(CaptureState.IDLE)

    async def _abort_active(self) -> None:
        await self._stop_tap()
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.cancel()
        task, self._events_task = self._events_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        await self._release_audio()

    async def _stop_tap(self) -> None:
        task, self._tap_task = self._tap_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _release_audio(self) -> None:
        if not self._audio_open:
            return
        self._audio_open = False
        try:
            await self._audio.close()
        except AudioCaptureError as e:
            self._log(logging.WARNING, "Error stopping audio session", error=e.message)

    def _set_state(self, state: CaptureState) -> None:
        if state is self._state:
            return
        self._state = state
        self.state_changed.emit(state)

    def _set_transcription(self, text: str) -> None:
        if text == self.current_transcription:
            return
        self.current_transcription = text
        self.transcription_changed.emit(text)

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {"component": "speech"}
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
