# services/rsvp_store.py
"""
Durable token -> RSVP record map on top of SQLAlchemy.

The store exposes three primitives: create (fails on an existing token),
point read, and a conditional update that only applies while the record's
status still equals an expected value. The conditional update is a single
UPDATE ... WHERE token = :token AND status = :expected statement, so two
scanner stations racing on the same token cannot both win.
"""

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models.rsvp import Rsvp


class StoreError(Exception):
    """Transport or availability fault in the underlying database."""


class DuplicateTokenError(StoreError):
    """A record with this token already exists."""

    def __init__(self, token):
        super().__init__(f"Token already registered: {token}")
        self.token = token


class UpdateResult:
    """Outcome codes of a conditional update."""
    APPLIED = 'applied'
    STALE = 'stale'
    NOT_FOUND = 'not_found'


class RsvpStore:
    """SQL-backed registrant store."""

    IMMUTABLE_FIELDS = ('token', 'name', 'email', 'phone', 'created_at')

    def __init__(self, session=None):
        self._session = session
        self.logger = logging.getLogger('rsvp_store')

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def create(self, record):
        """
        Insert a new record.

        Args:
            record: Unsaved Rsvp instance

        Returns:
            Rsvp: The persisted record

        Raises:
            DuplicateTokenError: If the token is already taken
            StoreError: On any other database fault
        """
        try:
            self.session.add(record)
            self.session.commit()
            self.logger.info(f"Created RSVP record {record.token}")
            return record
        except IntegrityError as e:
            self.session.rollback()
            self.logger.warning(f"Duplicate token rejected: {record.token}")
            raise DuplicateTokenError(record.token) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            self.logger.error(f"Database error creating RSVP {record.token}: {str(e)}")
            raise StoreError(str(e)) from e

    def read(self, token):
        """
        Point read by token.

        Returns:
            Rsvp or None: The current record, refreshed from the database
        """
        try:
            record = self.session.get(Rsvp, token, populate_existing=True)
            return record
        except SQLAlchemyError as e:
            self.session.rollback()
            self.logger.error(f"Database error reading RSVP {token}: {str(e)}")
            raise StoreError(str(e)) from e

    def update_if_status(self, token, expected_status, changes):
        """
        Apply changes only if the record's status still equals expected_status.

        Args:
            token: Record key
            expected_status: Status the record must hold at write time
            changes: Column -> value mapping to write

        Returns:
            str: One of UpdateResult.APPLIED, STALE or NOT_FOUND

        Raises:
            StoreError: On database faults
        """
        forbidden = set(changes) & set(self.IMMUTABLE_FIELDS)
        if forbidden:
            raise ValueError(f"Cannot modify immutable fields: {', '.join(sorted(forbidden))}")

        try:
            result = self.session.execute(
                update(Rsvp)
                .where(Rsvp.token == token, Rsvp.status == expected_status)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 1:
                self.session.commit()
                self.logger.info(f"Conditional update applied to {token}: {expected_status} -> "
                                 f"{changes.get('status', expected_status)}")
                return UpdateResult.APPLIED

            self.session.rollback()

            exists = self.session.get(Rsvp, token, populate_existing=True) is not None
            if exists:
                self.logger.info(f"Conditional update on {token} found stale status")
                return UpdateResult.STALE
            return UpdateResult.NOT_FOUND

        except SQLAlchemyError as e:
            self.session.rollback()
            self.logger.error(f"Database error updating RSVP {token}: {str(e)}")
            raise StoreError(str(e)) from e
