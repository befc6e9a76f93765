from flask import Blueprint

rsvp_bp = Blueprint('rsvp', __name__)

from . import rsvp  # noqa: E402,F401
