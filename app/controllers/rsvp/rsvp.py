# routes/rsvp.py
"""
RSVP routes: submit guest details, receive a token and QR code.
"""

import io
import logging

from flask import jsonify, send_file

from app.services.rsvp_service import IdentityValidationError, RsvpError, RsvpService
from app.services.rsvp_store import DuplicateTokenError, RsvpStore, StoreError
from .forms import RsvpForm
from . import rsvp_bp

logger = logging.getLogger('rsvp')


@rsvp_bp.route('/', methods=['POST'])
def create_rsvp():
    """Validate guest details, save the RSVP and return the generated QR code."""
    form = RsvpForm()

    if not form.validate_on_submit():
        return jsonify({
            'success': False,
            'message': 'Please correct the highlighted fields.',
            'error_code': RsvpError.VALIDATION_FAILED,
            'errors': {field: messages[0] for field, messages in form.errors.items()}
        }), 400

    try:
        result = RsvpService().generate_and_register(form.identity(), form.confirm_coming.data)
    except IdentityValidationError as e:
        return jsonify({
            'success': False,
            'message': 'Please correct the highlighted fields.',
            'error_code': RsvpError.VALIDATION_FAILED,
            'errors': e.errors
        }), 400
    except DuplicateTokenError:
        return jsonify({
            'success': False,
            'message': 'Failed to generate QR. Please try again.',
            'error_code': RsvpError.TOKEN_CONFLICT
        }), 409
    except StoreError:
        return jsonify({
            'success': False,
            'message': 'Failed to generate QR. Please try again.',
            'error_code': RsvpError.STORE_ERROR
        }), 503

    return jsonify({
        'success': True,
        'message': 'RSVP saved and QR generated.',
        'token': result.token,
        'payload': result.payload,
        'qr_data_url': result.data_url
    }), 201


@rsvp_bp.route('/<token>')
def get_rsvp(token):
    """Return the stored RSVP record."""
    try:
        record = RsvpStore().read(token)
    except StoreError:
        return jsonify({
            'success': False,
            'message': 'Attendance store unavailable',
            'error_code': RsvpError.STORE_ERROR
        }), 503

    if record is None:
        return jsonify({
            'success': False,
            'message': 'RSVP not found',
            'error_code': RsvpError.NOT_FOUND
        }), 404

    return jsonify({'success': True, 'record': record.to_dict()})


@rsvp_bp.route('/<token>/qr.png')
def download_qr(token):
    """Download the QR code PNG for an RSVP."""
    try:
        result = RsvpService().render_artifact(token)
    except StoreError:
        return jsonify({
            'success': False,
            'message': 'Attendance store unavailable',
            'error_code': RsvpError.STORE_ERROR
        }), 503

    if result is None:
        return jsonify({
            'success': False,
            'message': 'RSVP not found',
            'error_code': RsvpError.NOT_FOUND
        }), 404

    logger.info(f"QR download for {token}")
    return send_file(
        io.BytesIO(result.png_bytes),
        mimetype='image/png',
        as_attachment=True,
        download_name=f"rsvp-{token}.png"
    )
