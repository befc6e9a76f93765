# services/rsvp_service.py
"""
RSVP registration service.
Validates an invitee's identity, issues a token, stores the record and
renders the QR artifact that will be presented at check-in.
"""

import logging
import re
from dataclasses import dataclass

from flask import current_app

from app.models.rsvp import Rsvp, RsvpStatus
from app.services import payload as payload_serializer
from app.services.qr_code_service import QRCodeService
from app.services.rsvp_store import DuplicateTokenError, RsvpStore
from app.services.token_service import DEFAULT_TOKEN_LENGTH, generate_token

EMAIL_PATTERN = r'^[^\s@]+@[^\s@]+\.[^\s@]+$'
PHONE_PATTERN = r'^[0-9+\-\s]{7,15}$'

MAX_TOKEN_ATTEMPTS = 3


class RsvpError:
    """RSVP service error codes."""
    VALIDATION_FAILED = 'validation_failed'
    TOKEN_CONFLICT = 'token_conflict'
    STORE_ERROR = 'store_error'
    NOT_FOUND = 'not_found'


class IdentityValidationError(ValueError):
    """One or more identity fields are malformed."""

    def __init__(self, errors):
        super().__init__('; '.join(f"{field}: {message}" for field, message in errors.items()))
        self.errors = errors


@dataclass(frozen=True)
class RegistrationResult:
    token: str
    payload: str
    artifact: object  # PIL image

    @property
    def data_url(self):
        return QRCodeService.to_data_url(self.artifact)

    @property
    def png_bytes(self):
        return QRCodeService.to_png_bytes(self.artifact)


def validate_identity(identity):
    """
    Check name, email and phone.

    Returns:
        dict: field -> error message, empty when valid
    """
    errors = {}
    name = (identity.get('name') or '').strip()
    email = (identity.get('email') or '').strip()
    phone = (identity.get('phone') or '').strip()

    if not name:
        errors['name'] = 'Name is required.'
    if not email:
        errors['email'] = 'Email is required.'
    elif not re.match(EMAIL_PATTERN, email):
        errors['email'] = 'Enter a valid email.'
    if not phone:
        errors['phone'] = 'Phone is required.'
    elif not re.match(PHONE_PATTERN, phone):
        errors['phone'] = 'Enter a valid phone.'

    return errors


class RsvpService:
    """Issues tokens and QR artifacts for invitees."""

    def __init__(self, store=None, token_length=None, qr_options=None):
        self.store = store or RsvpStore()
        self._token_length = token_length
        self._qr_options = qr_options
        self.logger = logging.getLogger('rsvp_service')

    @property
    def token_length(self):
        if self._token_length is not None:
            return self._token_length
        return current_app.config.get('RSVP_TOKEN_LENGTH', DEFAULT_TOKEN_LENGTH)

    @property
    def qr_options(self):
        if self._qr_options is not None:
            return self._qr_options
        return {
            'target_width': current_app.config.get('QR_TARGET_WIDTH', 512),
            'margin': current_app.config.get('QR_MARGIN', 2),
            'error_correction': current_app.config.get('QR_ERROR_CORRECTION', 'M'),
        }

    def generate_and_register(self, identity, intent):
        """
        Register an invitee and produce their QR artifact.

        Args:
            identity: Mapping with name, email and phone
            intent: Declared RSVP intent (True if coming)

        Returns:
            RegistrationResult: token, payload text and QR image

        Raises:
            IdentityValidationError: If identity fields are malformed
            DuplicateTokenError: If every generated token collided
            StoreError: On database faults
        """
        errors = validate_identity(identity)
        if errors:
            self.logger.info(f"RSVP rejected: {', '.join(errors)}")
            raise IdentityValidationError(errors)

        record = None
        for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
            token = generate_token(self.token_length)
            try:
                record = self.store.create(Rsvp(
                    token=token,
                    name=identity['name'].strip(),
                    email=identity['email'].strip(),
                    phone=identity['phone'].strip(),
                    coming=bool(intent),
                    status=RsvpStatus.INVITED,
                ))
                break
            except DuplicateTokenError:
                self.logger.warning(f"Token collision on attempt {attempt}, regenerating")
                if attempt == MAX_TOKEN_ATTEMPTS:
                    raise

        text = payload_serializer.serialize(record)
        artifact = QRCodeService.encode(text, **self.qr_options)

        self.logger.info(f"RSVP saved and QR generated for {record.token}")
        return RegistrationResult(token=record.token, payload=text, artifact=artifact)

    def render_artifact(self, token):
        """
        Re-render the QR artifact for an existing record.

        Returns:
            RegistrationResult or None if the token is unknown
        """
        record = self.store.read(token)
        if record is None:
            return None
        text = payload_serializer.serialize(record)
        return RegistrationResult(token=record.token, payload=text,
                                  artifact=QRCodeService.encode(text, **self.qr_options))
