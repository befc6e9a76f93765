# services/payload.py
"""
QR payload envelope.

The QR code carries compact JSON:
    {"t":"rsvp","token":"...","name":"...","email":"...","phone":"...","coming":true}

Only "token" is used for lookups. The other fields are a copy for people
reading the code without a store round trip and are never trusted.
"""

import json
import logging
from dataclasses import dataclass

PAYLOAD_KIND = 'rsvp'

logger = logging.getLogger('payload')


class PayloadClass:
    """Classification of decoded QR text."""
    VALID = 'valid'
    INVALID = 'invalid'  # JSON object, but not a usable rsvp payload
    FOREIGN = 'foreign'  # not a JSON object at all


class PayloadError(ValueError):
    """Decoded text is not an actionable rsvp payload."""

    def __init__(self, classification, reason, raw_text):
        super().__init__(reason)
        self.classification = classification
        self.reason = reason
        self.raw_text = raw_text


@dataclass(frozen=True)
class ScanPayload:
    kind: str
    token: str
    name: str = ''
    email: str = ''
    phone: str = ''
    coming: bool = False


@dataclass(frozen=True)
class CheckInRequest:
    """The only data a scan hands to the check-in coordinator."""
    token: str

    @classmethod
    def from_payload(cls, payload):
        return cls(token=payload.token)


@dataclass(frozen=True)
class ScanClassification:
    classification: str
    raw_text: str
    payload: ScanPayload = None
    reason: str = None

    @property
    def is_valid(self):
        return self.classification == PayloadClass.VALID


def serialize(record):
    """
    Encode a record as compact payload JSON.

    Args:
        record: Rsvp model, ScanPayload or mapping with token/name/email/phone/coming

    Returns:
        str: Payload text to embed in the QR code
    """
    def field(key, default=''):
        if isinstance(record, dict):
            return record.get(key, default)
        return getattr(record, key, default)

    return json.dumps({
        't': PAYLOAD_KIND,
        'token': field('token'),
        'name': field('name') or '',
        'email': field('email') or '',
        'phone': field('phone') or '',
        'coming': bool(field('coming', False)),
    }, separators=(',', ':'))


def deserialize(text):
    """
    Parse and validate decoded QR text.

    Args:
        text: Raw decoded string

    Returns:
        ScanPayload: The validated payload

    Raises:
        PayloadError: classification FOREIGN for non-JSON or non-object text,
            INVALID for a JSON object with a wrong kind or unusable token
    """
    try:
        data = json.loads(text)
    except (ValueError, TypeError, RecursionError):
        # ValueError covers JSONDecodeError; RecursionError comes from deeply nested arrays
        raise PayloadError(PayloadClass.FOREIGN, 'Not JSON', text)

    if not isinstance(data, dict):
        raise PayloadError(PayloadClass.FOREIGN, 'Not a JSON object', text)

    if data.get('t') != PAYLOAD_KIND:
        raise PayloadError(PayloadClass.INVALID, f"Unexpected payload kind: {data.get('t')!r}", text)

    token = data.get('token')
    if not isinstance(token, str) or not token.strip():
        raise PayloadError(PayloadClass.INVALID, 'Missing token', text)

    def text_field(key):
        value = data.get(key)
        return value if isinstance(value, str) else ''

    return ScanPayload(
        kind=PAYLOAD_KIND,
        token=token,
        name=text_field('name'),
        email=text_field('email'),
        phone=text_field('phone'),
        coming=data.get('coming') is True,
    )


def classify(text):
    """Classify decoded text without raising."""
    try:
        payload = deserialize(text)
    except PayloadError as e:
        logger.debug(f"Scan classified as {e.classification}: {e.reason}")
        return ScanClassification(e.classification, text, reason=e.reason)
    return ScanClassification(PayloadClass.VALID, text, payload=payload)
