# services/scan_loop.py
"""
Continuous QR scan loop for a check-in station.

Frames are pulled from the camera on a reader thread and decoded. Each decode
hit goes through a fixed time-window cooldown gate, is classified, and valid
tokens are handed to a single check-in worker over a one-slot channel. While a
check-in is in flight the loop is "busy" and further valid hits are withheld,
so one station never races itself on the store.

All mutable state is owned by the ScanLoop instance; several loops can run in
one process without sharing anything but the store.
"""

import contextlib
import logging
import queue
import threading
import time
from dataclasses import dataclass, replace

from app.services.check_in_service import CheckInOutcome, OutcomeKind
from app.services.payload import CheckInRequest, PayloadClass, classify
from app.services.qr_code_service import CameraError, classify_camera_error

DEFAULT_HINT = 'Point the camera at a QR code'


class ScanPhase:
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPED = 'stopped'


class BusyPolicy:
    DROP = 'drop'  # discard valid hits while a check-in is in flight
    QUEUE = 'queue'  # keep the latest valid hit and run it next


class ScanEvent:
    """What the loop did with one decode attempt."""
    MISS = 'miss'
    IGNORED = 'ignored'  # loop not running
    DEBOUNCED = 'debounced'
    DISPATCHED = 'dispatched'
    WITHHELD = 'withheld'
    QUEUED = 'queued'
    INVALID = 'invalid'
    FOREIGN = 'foreign'


@dataclass(frozen=True)
class ScanState:
    phase: str = ScanPhase.IDLE
    busy: bool = False
    next_allowed_ms: int = 0
    status: str = 'Tap Start to open camera.'
    last_result: str = None
    camera_error: str = None

    def to_dict(self):
        return {
            'phase': self.phase,
            'busy': self.busy,
            'status': self.status,
            'last_result': self.last_result,
            'camera_error': self.camera_error,
        }


def apply_cooldown(state, now_ms, cooldown_ms):
    """
    Fixed-window debounce, independent of the decoded content.

    Returns:
        tuple: (new_state, accepted)
    """
    if now_ms < state.next_allowed_ms:
        return state, False
    return replace(state, next_allowed_ms=now_ms + cooldown_ms), True


def monotonic_ms():
    return int(time.monotonic() * 1000)


class ScanLoop:
    """Decode/dispatch cycle for one camera."""

    def __init__(self, camera, decoder, coordinator, cooldown_ms=500, hint=DEFAULT_HINT,
                 busy_policy=BusyPolicy.DROP, app=None, clock=monotonic_ms,
                 frame_interval=0.03, threaded=True):
        if busy_policy not in (BusyPolicy.DROP, BusyPolicy.QUEUE):
            raise ValueError(f"Unknown busy policy: {busy_policy}")

        self.camera = camera
        self.decoder = decoder
        self.coordinator = coordinator
        self.cooldown_ms = cooldown_ms
        self.hint = hint
        self.busy_policy = busy_policy
        self.clock = clock
        self.frame_interval = frame_interval
        self.threaded = threaded
        self._app = app

        self._state = ScanState()
        self._lock = threading.Lock()
        self._camera_lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._channel = queue.Queue(maxsize=1)
        self._pending = None
        self._generation = 0
        self._stop_event = threading.Event()
        self._frame_thread = None
        self._check_in_thread = None

        self.on_recognized = None
        self.on_foreign = None
        self.on_error = None

        self.logger = logging.getLogger('scan_loop')

    @property
    def state(self):
        with self._lock:
            return self._state

    @property
    def running(self):
        return self.state.phase == ScanPhase.RUNNING

    # Lifecycle

    def start(self, on_recognized=None, on_foreign=None, on_error=None):
        """
        Acquire the camera and begin scanning.

        Args:
            on_recognized: Called with a CheckInOutcome for every resolved check-in
            on_foreign: Called with (raw_text, classification) for invalid or foreign codes
            on_error: Called with the exception for camera and frame errors

        Returns:
            bool: True if the loop is running
        """
        # One caller at a time may check the phase and acquire the camera
        with self._start_lock:
            return self._start(on_recognized, on_foreign, on_error)

    def _start(self, on_recognized, on_foreign, on_error):
        with self._lock:
            if self._state.phase == ScanPhase.RUNNING:
                return True
            self._state = replace(self._state, status='Requesting camera...', camera_error=None)

        self.on_recognized = on_recognized
        self.on_foreign = on_foreign
        self.on_error = on_error

        try:
            with self._camera_lock:
                self.camera.open()
        except Exception as e:
            error = e if isinstance(e, CameraError) else CameraError(classify_camera_error(e), str(e))
            self.logger.warning(f"Camera acquisition failed ({error.cause}): {error.detail or error.message}")
            with self._lock:
                self._state = ScanState(status=error.message, camera_error=error.cause)
            self._notify(self.on_error, error)
            return False

        with self._lock:
            self._generation += 1
            self._pending = None
            self._state = ScanState(phase=ScanPhase.RUNNING, status=self.hint)
        self._stop_event.clear()

        if self.threaded:
            if self._frame_thread is None or not self._frame_thread.is_alive():
                self._frame_thread = threading.Thread(target=self._frame_worker, daemon=True, name="ScanFrames")
                self._frame_thread.start()
            # A worker from a previous run may still be finishing its in-flight check-in
            if self._check_in_thread is None or not self._check_in_thread.is_alive():
                self._check_in_thread = threading.Thread(target=self._check_in_worker, daemon=True,
                                                         name="ScanCheckIn")
                self._check_in_thread.start()

        self.logger.info("Scan loop started")
        return True

    def stop(self):
        """Stop scanning and release the camera. An in-flight check-in finishes but is not reported."""
        self._stop_event.set()

        with self._lock:
            was_running = self._state.phase == ScanPhase.RUNNING
            self._generation += 1
            self._pending = None
            self._state = ScanState(phase=ScanPhase.STOPPED, status='Stopped')

        with contextlib.suppress(queue.Empty):
            self._channel.get_nowait()

        frame_thread = self._frame_thread
        if frame_thread and frame_thread.is_alive() and frame_thread is not threading.current_thread():
            frame_thread.join(timeout=2)
        self._release_camera()

        if was_running:
            self.logger.info("Scan loop stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    # Decode path

    def poll_frame(self, now_ms=None):
        """Read and decode one frame."""
        with self._camera_lock:
            frame = self.camera.read()
        text = self.decoder.decode(frame)
        if not text:
            return ScanEvent.MISS
        return self.handle_decode(text, now_ms)

    def handle_decode(self, text, now_ms=None):
        """
        Process one decode hit.

        Args:
            text: Decoded QR text
            now_ms: Millisecond timestamp, defaults to the loop clock

        Returns:
            str: ScanEvent describing what happened
        """
        now_ms = self.clock() if now_ms is None else now_ms

        with self._lock:
            if self._state.phase != ScanPhase.RUNNING:
                return ScanEvent.IGNORED

            self._state, accepted = apply_cooldown(self._state, now_ms, self.cooldown_ms)
            if not accepted:
                return ScanEvent.DEBOUNCED

            scan = classify(text)
            if scan.is_valid:
                request = CheckInRequest.from_payload(scan.payload)
                event = self._dispatch(request)
                self.logger.info(f"Scan {event}: token {request.token}")
                return event

            if scan.classification == PayloadClass.INVALID:
                event = ScanEvent.INVALID
                self._state = replace(self._state, last_result='Recognized code is not a valid RSVP')
            else:
                event = ScanEvent.FOREIGN
                self._state = replace(self._state, last_result='Foreign code')

        self.logger.info(f"Scan {event}: {scan.reason}")
        self._notify(self.on_foreign, text, scan.classification)
        return event

    def _dispatch(self, request):
        # Caller holds self._lock
        if self._state.busy:
            if self.busy_policy == BusyPolicy.QUEUE:
                self._pending = request
                return ScanEvent.QUEUED
            return ScanEvent.WITHHELD

        self._state = replace(self._state, busy=True, status='Found code, checking in...')
        self._channel.put_nowait((self._generation, request))
        return ScanEvent.DISPATCHED

    # Check-in path

    def run_pending_check_in(self, timeout=None):
        """
        Run the dispatched check-in, if any.

        Args:
            timeout: Seconds to wait for a dispatch, None to return immediately

        Returns:
            CheckInOutcome or None
        """
        try:
            if timeout:
                generation, request = self._channel.get(timeout=timeout)
            else:
                generation, request = self._channel.get_nowait()
        except queue.Empty:
            return None

        outcome = None
        try:
            context = self._app.app_context() if self._app is not None else contextlib.nullcontext()
            with context:
                outcome = self.coordinator.check_in(request)
        except Exception as e:
            self.logger.error(f"Check-in dispatch failed for {request.token}: {str(e)}", exc_info=True)
            outcome = CheckInOutcome(OutcomeKind.STORE_ERROR, request.token, error=str(e))
        finally:
            current = self._resolve_dispatch(generation, outcome)

        if current:
            self._notify(self.on_recognized, outcome)
        else:
            self.logger.info(f"Discarding check-in result for {request.token}; scanner stopped")
        return outcome

    def _resolve_dispatch(self, generation, outcome):
        """Clear the busy overlay, or hand over the queued request. Returns whether the loop is still current."""
        with self._lock:
            current = generation == self._generation and self._state.phase == ScanPhase.RUNNING
            if not current:
                return False

            last_result = outcome.message if outcome else None
            if self._pending is not None:
                request, self._pending = self._pending, None
                self._channel.put_nowait((self._generation, request))
                self._state = replace(self._state, last_result=last_result)
            else:
                self._state = replace(self._state, busy=False, status=self.hint, last_result=last_result)
            return True

    # Workers

    def _frame_worker(self):
        try:
            while not self._stop_event.is_set():
                try:
                    self.poll_frame()
                except Exception as e:
                    self.logger.error(f"Frame processing error: {str(e)}", exc_info=True)
                    self._notify(self.on_error, e)
                self._stop_event.wait(self.frame_interval)
        finally:
            self._release_camera()
        self.logger.info("Scan frame worker exited")

    def _check_in_worker(self):
        while not self._stop_event.is_set():
            self.run_pending_check_in(timeout=0.2)
        self.logger.info("Scan check-in worker exited")

    def _release_camera(self):
        with self._camera_lock:
            self.camera.release()

    def _notify(self, callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.logger.warning(f"Scan callback {getattr(callback, '__name__', callback)} failed: {e}")


def build_scan_loop(app, camera_index=None, cooldown_ms=None):
    """
    Assemble a camera-backed ScanLoop from application config.

    Args:
        app: Flask application instance
        camera_index: Override CAMERA_INDEX
        cooldown_ms: Override SCAN_COOLDOWN_MS

    Returns:
        ScanLoop: Not yet started
    """
    from app.services.check_in_service import CheckInService
    from app.services.qr_code_service import OpenCVCamera, QRCodeDecoder

    config = app.config
    camera = OpenCVCamera(
        index=config['CAMERA_INDEX'] if camera_index is None else camera_index,
        width=config['CAMERA_WIDTH'],
        height=config['CAMERA_HEIGHT'],
        facing_mode=config['CAMERA_FACING_MODE'],
    )
    coordinator = CheckInService(timeout=config.get('CHECK_IN_TIMEOUT_SECONDS'), app=app)

    return ScanLoop(
        camera=camera,
        decoder=QRCodeDecoder(),
        coordinator=coordinator,
        cooldown_ms=config['SCAN_COOLDOWN_MS'] if cooldown_ms is None else cooldown_ms,
        hint=config.get('SCAN_IDLE_HINT', DEFAULT_HINT),
        busy_policy=config.get('SCAN_BUSY_POLICY', BusyPolicy.DROP),
        app=app,
        frame_interval=config.get('SCAN_FRAME_INTERVAL', 0.03),
    )
