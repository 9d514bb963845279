import asyncio

from platemate_core.domain.exceptions import AudioCaptureError
from platemate_core.providers.device import PermissionStatus, TranscriptEvent, TranscriptKind
from platemate_core.services.speech import CaptureState, ListenOutcome, SpeechCaptureService


class FakePermissions:
    def __init__(self, status=PermissionStatus.AUTHORIZED_WHEN_IN_USE):
        self.status = status
        self.requests = 0

    async def request_permission(self):
        self.requests += 1
        return self.status

    def current_status(self):
        return self.status


class FakeAudio:
    def __init__(self, fail_open=False):
        self.fail_open = fail_open
        self.opened = 0
        self.closed = 0
        self.buffer_sizes = []

    async def open(self):
        if self.fail_open:
            raise AudioCaptureError(code="AUDIO_UNAVAILABLE", message="input busy")
        self.opened += 1

    async def frames(self, buffer_size):
        self.buffer_sizes.append(buffer_size)
        for _ in range(2):
            yield b"\x00\x01" * 4
        await asyncio.Event().wait()

    async def close(self):
        self.closed += 1


class FakeStream:
    def __init__(self):
        self.queue = asyncio.Queue()
        self.audio = []
        self.ended = False
        self.cancelled = False
        self.closed = False
        self.final_on_end = None

    def push(self, kind, text="", error=None):
        self.queue.put_nowait(TranscriptEvent(kind=kind, text=text, error=error))

    def fail(self, exc):
        self.queue.put_nowait(exc)

    async def add_audio(self, buffer):
        self.audio.append(buffer)

    async def end_input(self):
        self.ended = True
        if self.final_on_end is not None:
            self.push(TranscriptKind.FINAL, self.final_on_end)
        self.queue.put_nowait(None)

    def cancel(self):
        self.cancelled = True
        self.queue.put_nowait(None)

    async def events(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            if isinstance(event, Exception):
                raise event
            yield event

    async def aclose(self):
        self.closed = True


class FakeRecognizer:
    def __init__(self):
        self.streams = []
        self.calls = []

    async def start_stream(self, *, utterance_id, locale, partial_results):
        self.calls.append({"utterance_id": utterance_id, "locale": locale, "partial_results": partial_results})
        stream = FakeStream()
        self.streams.append(stream)
        return stream


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


def _service(permissions=None, audio=None, recognizer=None, enabled=True):
    received = []

    async def on_final(text):
        received.append(text)

    service = SpeechCaptureService(
        permissions or FakePermissions(),
        audio or FakeAudio(),
        recognizer or FakeRecognizer(),
        voice_input_enabled=enabled,
        buffer_size=1024,
        locale="en-US",
        on_final_transcript=on_final,
    )
    return service, received


def test_start_and_stop_are_idempotent():
    async def run():
        audio = FakeAudio()
        recognizer = FakeRecognizer()
        service, received = _service(audio=audio, recognizer=recognizer)

        first = await service.start_listening()
        second = await service.start_listening()
        await settle()
        state_while_recording = service.state
        stopped = await service.stop_listening()
        stopped_again = await service.stop_listening()
        await settle()
        return first, second, state_while_recording, stopped, stopped_again, service, audio, recognizer, received

    first, second, recording, stopped, stopped_again, service, audio, recognizer, received = asyncio.run(run())
    assert first is ListenOutcome.STARTED
    assert second is ListenOutcome.ALREADY_ACTIVE
    assert recording is CaptureState.RECORDING
    assert stopped is True
    assert stopped_again is False
    assert service.state is CaptureState.IDLE
    assert len(recognizer.streams) == 1
    assert recognizer.calls[0]["partial_results"] is True
    assert recognizer.streams[0].ended
    assert len(recognizer.streams[0].audio) == 2
    assert audio.buffer_sizes == [1024]
    assert audio.opened == 1 and audio.closed == 1
    assert received == []


def test_partials_replace_and_final_is_forwarded():
    async def run():
        audio = FakeAudio()
        recognizer = FakeRecognizer()
        service, received = _service(audio=audio, recognizer=recognizer)
        seen = []
        service.transcription_changed.connect(seen.append)

        await service.start_listening()
        stream = recognizer.streams[0]
        stream.push(TranscriptKind.PARTIAL, "ita")
        stream.push(TranscriptKind.PARTIAL, "italian food")
        await settle()
        partial = service.current_transcription
        stream.push(TranscriptKind.FINAL, "  italian food nearby ")
        await settle()
        return service, audio, stream, received, seen, partial

    service, audio, stream, received, seen, partial = asyncio.run(run())
    assert partial == "italian food"
    assert seen[:2] == ["ita", "italian food"]
    assert received == ["italian food nearby"]
    assert service.state is CaptureState.IDLE
    assert service.current_transcription == ""
    assert audio.closed == 1
    assert stream.closed


def test_recognition_error_forwards_nothing():
    async def run():
        recognizer = FakeRecognizer()
        service, received = _service(recognizer=recognizer)
        await service.start_listening()
        recognizer.streams[0].push(TranscriptKind.PARTIAL, "sus")
        recognizer.streams[0].push(TranscriptKind.ERROR, error="no speech detected")
        await settle()
        return service, received

    service, received = asyncio.run(run())
    assert received == []
    assert service.state is CaptureState.IDLE


def test_graceful_stop_still_forwards_final():
    async def run():
        recognizer = FakeRecognizer()
        service, received = _service(recognizer=recognizer)
        await service.start_listening()
        recognizer.streams[0].final_on_end = "vegan places"
        await service.stop_listening()
        await settle()
        return received

    assert asyncio.run(run()) == ["vegan places"]


def test_voice_input_disabled():
    async def run():
        permissions = FakePermissions()
        service, _ = _service(permissions=permissions, enabled=False)
        failures = []
        service.failed.connect(failures.append)
        outcome = await service.start_listening()
        return outcome, permissions, service, failures

    outcome, permissions, service, failures = asyncio.run(run())
    assert outcome is ListenOutcome.UNAVAILABLE
    assert permissions.requests == 0
    assert service.state is CaptureState.IDLE
    assert failures == [ListenOutcome.UNAVAILABLE]


def test_permission_denied_leaves_audio_untouched():
    async def run():
        audio = FakeAudio()
        service, _ = _service(permissions=FakePermissions(PermissionStatus.DENIED), audio=audio)
        outcome = await service.start_listening()
        return outcome, audio, service

    outcome, audio, service = asyncio.run(run())
    assert outcome is ListenOutcome.PERMISSION_DENIED
    assert audio.opened == 0
    assert service.state is CaptureState.IDLE


def test_audio_open_failure():
    async def run():
        audio = FakeAudio(fail_open=True)
        recognizer = FakeRecognizer()
        service, _ = _service(audio=audio, recognizer=recognizer)
        outcome = await service.start_listening()
        return outcome, recognizer, service

    outcome, recognizer, service = asyncio.run(run())
    assert outcome is ListenOutcome.CAPTURE_FAILED
    assert recognizer.streams == []
    assert service.state is CaptureState.IDLE


def test_cancel_drops_events_from_old_task():
    async def run():
        recognizer = FakeRecognizer()
        service, received = _service(recognizer=recognizer)

        await service.start_listening()
        old = recognizer.streams[0]
        await service.cancel()
        assert old.cancelled
        assert service.state is CaptureState.IDLE

        await service.start_listening()
        new = recognizer.streams[1]
        old.push(TranscriptKind.FINAL, "stale words")
        new.push(TranscriptKind.PARTIAL, "thai")
        await settle()
        partial = service.current_transcription
        new.push(TranscriptKind.FINAL, "thai food")
        await settle()
        return received, partial

    received, partial = asyncio.run(run())
    assert partial == "thai"
    assert received == ["thai food"]


def test_unexpected_recognizer_failure_returns_to_idle():
    async def run():
        audio = FakeAudio()
        recognizer = FakeRecognizer()
        service, received = _service(audio=audio, recognizer=recognizer)
        failures = []
        service.failed.connect(failures.append)

        await service.start_listening()
        stream = recognizer.streams[0]
        stream.push(TranscriptKind.PARTIAL, "pizza")
        stream.fail(RuntimeError("recognizer crashed"))
        await settle()
        again = await service.start_listening()
        await service.cancel()
        return service, audio, stream, received, failures, again

    service, audio, stream, received, failures, again = asyncio.run(run())
    assert received == []
    assert failures == [ListenOutcome.CAPTURE_FAILED]
    assert stream.closed
    assert audio.closed >= 1
    # 失败后回到 IDLE，可以重新开始录音
    assert again is ListenOutcome.STARTED
    assert service.state is CaptureState.IDLE
