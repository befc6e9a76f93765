# models/__init__.py
from .rsvp import Rsvp, RsvpStatus

__all__ = [
    'Rsvp',
    'RsvpStatus',
]
