# routes/check_in.py
"""
Check-in routes for QR code scanning.
Handles decoded QR text posted by browser scanners and controls the
camera-backed scanner attached to this server.
"""

import atexit
import logging
import threading
from collections import deque

from flask import Blueprint, current_app, jsonify, request

from app.services.check_in_service import CheckInError, CheckInService, OutcomeKind
from app.services.payload import CheckInRequest, PayloadClass, classify
from app.services.qr_code_service import (
    CAMERA_ERROR_MESSAGES, CameraErrorCause, OpenCVCamera, classify_camera_error
)
from app.services.scan_loop import build_scan_loop

# Initialize blueprint
check_in_bp = Blueprint('check_in', __name__)

logger = logging.getLogger('check_in')

_scanner_lock = threading.Lock()
RECENT_SCANS_LIMIT = 20


def _record_scan(app, entry):
    app.extensions['rsvp_recent_scans'].appendleft(entry)


def get_station_scanner(app=None):
    """Return the ScanLoop bound to this app, creating it on first use."""
    app = app or current_app._get_current_object()
    with _scanner_lock:
        scanner = app.extensions.get('rsvp_scanner')
        if scanner is None:
            scanner = build_scan_loop(app)
            app.extensions['rsvp_scanner'] = scanner
            app.extensions['rsvp_recent_scans'] = deque(maxlen=RECENT_SCANS_LIMIT)
            atexit.register(scanner.stop)
        return scanner


def get_coordinator(app=None):
    """Return the check-in coordinator shared by this app's request handlers."""
    app = app or current_app._get_current_object()
    with _scanner_lock:
        coordinator = app.extensions.get('rsvp_check_in')
        if coordinator is None:
            coordinator = CheckInService(timeout=app.config.get('CHECK_IN_TIMEOUT_SECONDS'), app=app)
            app.extensions['rsvp_check_in'] = coordinator
        return coordinator


@check_in_bp.route('/verify', methods=['POST'])
def verify():
    """
    Check in the RSVP encoded in a decoded QR code.
    Codes that are not RSVP payloads are echoed back untouched.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get('qr_data'), str):
        return jsonify({
            'success': False,
            'message': 'No QR data provided',
            'error_code': 'missing_data'
        }), 400

    qr_data = data['qr_data']
    scan = classify(qr_data)

    if not scan.is_valid:
        invalid = scan.classification == PayloadClass.INVALID
        logger.info(f"Non-actionable scan ({scan.classification}): {scan.reason}")
        return jsonify({
            'success': False,
            'status': scan.classification,
            'message': 'Recognized code is not a valid RSVP' if invalid else 'Foreign code',
            'error_code': CheckInError.INVALID_PAYLOAD if invalid else CheckInError.FOREIGN_CODE,
            'raw': qr_data
        }), 422

    outcome = get_coordinator().check_in(CheckInRequest.from_payload(scan.payload))

    logger.info(f"Check-in via verify: token={outcome.token}, outcome={outcome.kind}")

    status_code = 200
    if outcome.kind == OutcomeKind.NOT_FOUND:
        status_code = 404
    elif outcome.kind == OutcomeKind.STORE_ERROR:
        status_code = 503
    return jsonify(outcome.to_dict()), status_code


@check_in_bp.route('/scanner/config')
def scanner_config():
    """Camera constraints for browser-side decoders."""
    config = current_app.config
    if config.get('REQUIRE_SECURE_CONTEXT') and not request.is_secure:
        return jsonify({
            'success': False,
            'cause': CameraErrorCause.INSECURE_CONTEXT,
            'message': CAMERA_ERROR_MESSAGES[CameraErrorCause.INSECURE_CONTEXT]
        }), 400

    camera = OpenCVCamera(width=config['CAMERA_WIDTH'], height=config['CAMERA_HEIGHT'],
                          facing_mode=config['CAMERA_FACING_MODE'])
    return jsonify({
        'success': True,
        'constraints': camera.constraints(),
        'cooldown_ms': config['SCAN_COOLDOWN_MS'],
        'hint': config['SCAN_IDLE_HINT']
    })


@check_in_bp.route('/camera-error', methods=['POST'])
def camera_error():
    """Classify a camera failure reported by a browser scanner."""
    data = request.get_json(silent=True) or {}
    cause = classify_camera_error(str(data.get('name', '')))
    logger.warning(f"Browser camera failure: {data.get('name')} -> {cause}")
    return jsonify({
        'success': True,
        'cause': cause,
        'message': CAMERA_ERROR_MESSAGES[cause]
    })


@check_in_bp.route('/scanner/start', methods=['POST'])
def start_scanner():
    """Start the camera scanner attached to this server."""
    app = current_app._get_current_object()
    scanner = get_station_scanner(app)

    def on_recognized(outcome):
        logger.info(f"Station check-in: token={outcome.token}, outcome={outcome.kind}")
        _record_scan(app, {'type': 'check_in', **outcome.to_dict()})

    def on_foreign(raw_text, classification):
        _record_scan(app, {'type': classification, 'raw': raw_text})

    def on_error(error):
        logger.error(f"Station scanner error: {error}")

    started = scanner.start(on_recognized=on_recognized, on_foreign=on_foreign, on_error=on_error)
    state = scanner.state
    return jsonify({
        'success': started,
        'message': state.status,
        'scanner': state.to_dict()
    }), 200 if started else 503


@check_in_bp.route('/scanner/stop', methods=['POST'])
def stop_scanner():
    """Stop the camera scanner and release the device."""
    scanner = current_app.extensions.get('rsvp_scanner')
    if scanner is not None:
        scanner.stop()
        state = scanner.state.to_dict()
    else:
        state = {'phase': 'idle'}
    return jsonify({'success': True, 'message': 'Stopped', 'scanner': state})


@check_in_bp.route('/scanner/status')
def scanner_status():
    """Current scanner state and the latest scans."""
    scanner = current_app.extensions.get('rsvp_scanner')
    if scanner is None:
        return jsonify({'success': True, 'scanner': {'phase': 'idle'}, 'recent_scans': []})
    return jsonify({
        'success': True,
        'scanner': scanner.state.to_dict(),
        'recent_scans': list(current_app.extensions.get('rsvp_recent_scans', []))
    })
