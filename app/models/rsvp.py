# models/rsvp.py
from datetime import datetime

from sqlalchemy import Index

from app.extensions import db


class RsvpStatus:
    INVITED = 'invited'
    CHECKED_IN = 'checked_in'
    CANCELLED = 'cancelled'

    ALL = (INVITED, CHECKED_IN, CANCELLED)


class Rsvp(db.Model):
    """
    One invitee's attendance record, keyed by the token printed in their QR code.

    Identity fields and the declared intent are written once at creation.
    The only transition performed on a record is invited -> checked_in.
    """
    __tablename__ = 'rsvp'

    token = db.Column(db.String(64), primary_key=True)

    # Identity, immutable after creation
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    coming = db.Column(db.Boolean, default=False, nullable=False)

    status = db.Column(db.String(20), default=RsvpStatus.INVITED, nullable=False)
    checked_in_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    __table_args__ = (
        Index('idx_rsvp_status', 'status'),
        Index('idx_rsvp_email', 'email'),
    )

    @property
    def is_checked_in(self):
        return self.status == RsvpStatus.CHECKED_IN

    def to_dict(self):
        """JSON-ready view of the record; timestamps as ISO 8601 strings."""
        def iso(value):
            return value.isoformat() if value else None

        return {
            'token': self.token,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'coming': self.coming,
            'status': self.status,
            'checked_in_at': iso(self.checked_in_at),
            'created_at': iso(self.created_at),
        }

    def __repr__(self):
        return f'<Rsvp {self.name} ({self.token}) {self.status}>'
