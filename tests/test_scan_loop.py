import threading

import pytest

from app.services.check_in_service import OutcomeKind
from app.services.payload import PayloadClass, serialize
from app.services.qr_code_service import CameraError, CameraErrorCause
from app.services.scan_loop import (
    BusyPolicy, ScanEvent, ScanLoop, ScanPhase, ScanState, apply_cooldown
)
from tests.fakes import EchoDecoder, FakeCamera, FakeClock, RecordingCoordinator

HINT = 'Point the camera at a QR code'


def _payload(token):
    return serialize({'token': token, 'name': 'Ana', 'email': 'a@x.com',
                      'phone': '+1 5551234567', 'coming': True})


def _loop(camera=None, coordinator=None, **kwargs):
    kwargs.setdefault('cooldown_ms', 200)
    return ScanLoop(
        camera=camera or FakeCamera(),
        decoder=EchoDecoder(),
        coordinator=coordinator or RecordingCoordinator(),
        hint=HINT,
        clock=FakeClock(),
        threaded=False,
        **kwargs,
    )


class Recorder:
    def __init__(self):
        self.recognized = []
        self.foreign = []
        self.errors = []

    def callbacks(self):
        return {
            'on_recognized': self.recognized.append,
            'on_foreign': lambda raw, classification: self.foreign.append((raw, classification)),
            'on_error': self.errors.append,
        }


def test_cooldown_window_is_fixed():
    state = ScanState(phase=ScanPhase.RUNNING)
    accepted = []
    for now in (1000, 1001, 1199, 1201):
        state, ok = apply_cooldown(state, now, 200)
        accepted.append(ok)
    assert accepted == [True, False, False, True]


def test_cooldown_debounces_repeated_codes():
    coordinator = RecordingCoordinator()
    loop = _loop(coordinator=coordinator)
    assert loop.start()

    text = _payload('tok-1')
    events = []
    for now in (1000, 1001, 1199, 1201):
        events.append(loop.handle_decode(text, now_ms=now))
        loop.run_pending_check_in()

    assert events == [ScanEvent.DISPATCHED, ScanEvent.DEBOUNCED, ScanEvent.DEBOUNCED, ScanEvent.DISPATCHED]
    assert coordinator.requests == ['tok-1', 'tok-1']


def test_cooldown_applies_to_foreign_codes():
    loop = _loop()
    loop.start()

    assert loop.handle_decode('hello world', now_ms=1000) == ScanEvent.FOREIGN
    assert loop.handle_decode(_payload('tok-1'), now_ms=1100) == ScanEvent.DEBOUNCED


def test_valid_hits_are_withheld_while_busy():
    coordinator = RecordingCoordinator()
    loop = _loop(coordinator=coordinator)
    loop.start()

    assert loop.handle_decode(_payload('tok-1'), now_ms=1000) == ScanEvent.DISPATCHED
    assert loop.state.busy
    assert loop.state.status == 'Found code, checking in...'

    assert loop.handle_decode(_payload('tok-2'), now_ms=1300) == ScanEvent.WITHHELD

    outcome = loop.run_pending_check_in()
    assert outcome.kind == OutcomeKind.SUCCEEDED
    assert loop.run_pending_check_in() is None
    assert coordinator.requests == ['tok-1']

    state = loop.state
    assert not state.busy
    assert state.status == HINT
    assert state.last_result == 'Checked in successfully'


def test_queue_policy_keeps_latest_pending_hit():
    coordinator = RecordingCoordinator()
    loop = _loop(coordinator=coordinator, busy_policy=BusyPolicy.QUEUE)
    loop.start()

    loop.handle_decode(_payload('tok-1'), now_ms=1000)
    assert loop.handle_decode(_payload('tok-2'), now_ms=1300) == ScanEvent.QUEUED
    assert loop.handle_decode(_payload('tok-3'), now_ms=1600) == ScanEvent.QUEUED

    loop.run_pending_check_in()
    assert loop.state.busy
    loop.run_pending_check_in()

    assert coordinator.requests == ['tok-1', 'tok-3']
    assert not loop.state.busy


def test_unknown_busy_policy_is_rejected():
    with pytest.raises(ValueError):
        _loop(busy_policy='block')


def test_foreign_code_reaches_callback_verbatim():
    coordinator = RecordingCoordinator()
    recorder = Recorder()
    loop = _loop(coordinator=coordinator)
    loop.start(**recorder.callbacks())

    assert loop.handle_decode('hello world', now_ms=1000) == ScanEvent.FOREIGN

    assert recorder.foreign == [('hello world', PayloadClass.FOREIGN)]
    assert coordinator.requests == []
    assert loop.state.last_result == 'Foreign code'
    assert not loop.state.busy


def test_invalid_payload_is_reported_without_check_in():
    recorder = Recorder()
    loop = _loop()
    loop.start(**recorder.callbacks())

    text = '{"t":"ticket","token":"abc"}'
    assert loop.handle_decode(text, now_ms=1000) == ScanEvent.INVALID
    assert recorder.foreign == [(text, PayloadClass.INVALID)]
    assert loop.state.last_result == 'Recognized code is not a valid RSVP'


def test_recognized_callback_gets_outcome():
    recorder = Recorder()
    loop = _loop(coordinator=RecordingCoordinator(kind=OutcomeKind.ALREADY_CHECKED_IN))
    loop.start(**recorder.callbacks())

    loop.handle_decode(_payload('tok-1'), now_ms=1000)
    loop.run_pending_check_in()

    assert [o.kind for o in recorder.recognized] == [OutcomeKind.ALREADY_CHECKED_IN]
    assert loop.state.last_result == 'Already checked in'


def test_failing_callback_does_not_break_the_loop():
    def explode(outcome):
        raise RuntimeError('display unplugged')

    loop = _loop()
    loop.start(on_recognized=explode)
    loop.handle_decode(_payload('tok-1'), now_ms=1000)
    loop.run_pending_check_in()

    assert loop.running
    assert not loop.state.busy


def test_coordinator_exception_becomes_store_error():
    def explode(request):
        raise RuntimeError('lost connection')

    recorder = Recorder()
    loop = _loop(coordinator=RecordingCoordinator(before_return=explode))
    loop.start(**recorder.callbacks())
    loop.handle_decode(_payload('tok-1'), now_ms=1000)

    outcome = loop.run_pending_check_in()
    assert outcome.kind == OutcomeKind.STORE_ERROR
    assert recorder.recognized == [outcome]
    assert not loop.state.busy


@pytest.mark.parametrize('error, cause', [
    (CameraError(CameraErrorCause.NOT_FOUND), CameraErrorCause.NOT_FOUND),
    (PermissionError('denied'), CameraErrorCause.PERMISSION_DENIED),
    (RuntimeError('driver crashed'), CameraErrorCause.UNKNOWN),
])
def test_camera_failure_leaves_loop_idle(error, cause):
    recorder = Recorder()
    loop = _loop(camera=FakeCamera(fail_with=error))

    assert loop.start(**recorder.callbacks()) is False

    state = loop.state
    assert state.phase == ScanPhase.IDLE
    assert state.camera_error == cause
    assert state.status == CameraError(cause).message
    assert len(recorder.errors) == 1
    assert loop.handle_decode(_payload('tok-1'), now_ms=1000) == ScanEvent.IGNORED


def test_stop_discards_in_flight_result_and_releases_camera():
    camera = FakeCamera()
    recorder = Recorder()
    loop = None

    def stop_mid_check_in(request):
        loop.stop()

    coordinator = RecordingCoordinator(before_return=stop_mid_check_in)
    loop = _loop(camera=camera, coordinator=coordinator)
    loop.start(**recorder.callbacks())
    loop.handle_decode(_payload('tok-1'), now_ms=1000)

    outcome = loop.run_pending_check_in()

    assert outcome.kind == OutcomeKind.SUCCEEDED
    assert coordinator.requests == ['tok-1']
    assert recorder.recognized == []
    assert loop.state.phase == ScanPhase.STOPPED
    assert loop.state.status == 'Stopped'
    assert camera.release_calls >= 1
    assert not camera.opened


def test_stop_drops_undispatched_request():
    coordinator = RecordingCoordinator()
    loop = _loop(coordinator=coordinator)
    loop.start()
    loop.handle_decode(_payload('tok-1'), now_ms=1000)

    loop.stop()

    assert loop.run_pending_check_in() is None
    assert coordinator.requests == []
    assert loop.handle_decode(_payload('tok-2'), now_ms=5000) == ScanEvent.IGNORED


def test_restart_after_stop():
    camera = FakeCamera()
    loop = _loop(camera=camera)

    with loop:
        loop.start()
        loop.stop()
        assert loop.start()
        assert loop.state.status == HINT
        assert camera.open_calls == 2

    assert loop.state.phase == ScanPhase.STOPPED
    assert not camera.opened


def test_poll_frame_decodes_camera_frames():
    coordinator = RecordingCoordinator()
    camera = FakeCamera(frames=[None, _payload('tok-1')])
    loop = _loop(camera=camera, coordinator=coordinator)
    loop.start()

    assert loop.poll_frame(now_ms=1000) == ScanEvent.MISS
    assert loop.poll_frame(now_ms=1001) == ScanEvent.DISPATCHED
    loop.run_pending_check_in()
    assert coordinator.requests == ['tok-1']


def test_threaded_loop_checks_in_from_camera_frames():
    done = threading.Event()
    recognized = []

    def on_recognized(outcome):
        recognized.append(outcome)
        done.set()

    camera = FakeCamera(frames=[_payload('tok-1')])
    loop = ScanLoop(camera=camera, decoder=EchoDecoder(), coordinator=RecordingCoordinator(),
                    cooldown_ms=200, frame_interval=0.001)
    try:
        assert loop.start(on_recognized=on_recognized)
        assert done.wait(timeout=5)
    finally:
        loop.stop()

    assert [o.token for o in recognized] == ['tok-1']
    assert not camera.opened


def test_deeply_nested_text_is_reported_as_foreign():
    recorder = Recorder()
    loop = _loop()
    loop.start(**recorder.callbacks())

    text = '[' * 5000
    assert loop.handle_decode(text, now_ms=1000) == ScanEvent.FOREIGN
    assert recorder.foreign == [(text, PayloadClass.FOREIGN)]


def test_concurrent_starts_open_the_camera_once():
    camera = FakeCamera(open_delay=0.2)
    loop = _loop(camera=camera)
    results = []

    threads = [threading.Thread(target=lambda: results.append(loop.start())) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert results == [True, True]
    assert camera.open_calls == 1
    assert loop.running

    loop.stop()
    assert not camera.opened
