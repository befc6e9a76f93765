# services/check_in_service.py
"""
Check-in coordination.
Turns a scanned token into the invited -> checked_in transition using the
store's conditional update, so repeated or concurrent scans of the same code
converge on a single check-in.
"""

import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime

from app.models.rsvp import RsvpStatus
from app.services.payload import CheckInRequest
from app.services.rsvp_store import RsvpStore, StoreError, UpdateResult


class CheckInError:
    """Check-in error codes."""
    NOT_FOUND = 'not_found'
    STORE_ERROR = 'store_error'
    INVALID_PAYLOAD = 'invalid_payload'
    FOREIGN_CODE = 'foreign_code'


class OutcomeKind:
    SUCCEEDED = 'succeeded'
    ALREADY_CHECKED_IN = 'already_checked_in'
    NOT_FOUND = 'not_found'
    STORE_ERROR = 'store_error'


OUTCOME_MESSAGES = {
    OutcomeKind.SUCCEEDED: 'Checked in successfully',
    OutcomeKind.ALREADY_CHECKED_IN: 'Already checked in',
    OutcomeKind.NOT_FOUND: 'RSVP not found',
    OutcomeKind.STORE_ERROR: 'Could not reach the attendance store. Please rescan.',
}


@dataclass(frozen=True)
class CheckInOutcome:
    kind: str
    token: str
    record: dict = None
    error: str = None

    @property
    def success(self):
        return self.kind in (OutcomeKind.SUCCEEDED, OutcomeKind.ALREADY_CHECKED_IN)

    @property
    def message(self):
        return OUTCOME_MESSAGES[self.kind]

    def to_dict(self):
        result = {
            'success': self.success,
            'status': self.kind,
            'message': self.message,
            'token': self.token,
            'record': self.record,
        }
        if self.kind == OutcomeKind.NOT_FOUND:
            result['error_code'] = CheckInError.NOT_FOUND
        elif self.kind == OutcomeKind.STORE_ERROR:
            result['error_code'] = CheckInError.STORE_ERROR
        return result


class CheckInService:
    """Coordinates the read / conditional-write protocol for one check-in."""

    def __init__(self, store=None, timeout=None, app=None, clock=datetime.now):
        """
        Args:
            store: RsvpStore-compatible object
            timeout: Seconds to wait for the store round trip, None to run inline
            app: Flask app whose context wraps store calls on the timeout executor
            clock: Callable returning the check-in timestamp
        """
        self.store = store or RsvpStore()
        self.timeout = timeout
        self.clock = clock
        self._app = app
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='check-in') if timeout else None
        self.logger = logging.getLogger('check_in_service')

    def check_in(self, request):
        """
        Check in the registrant named by a token.

        Args:
            request: CheckInRequest or plain token string

        Returns:
            CheckInOutcome: succeeded, already_checked_in, not_found or store_error
        """
        token = request.token if isinstance(request, CheckInRequest) else request

        if self._executor is None:
            return self._guarded_check_in(token)

        future = self._executor.submit(self._run_in_context, token)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            self.logger.error(f"Check-in for {token} timed out after {self.timeout}s")
            return CheckInOutcome(OutcomeKind.STORE_ERROR, token, error='timeout')

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def _run_in_context(self, token):
        context = self._app.app_context() if self._app is not None else contextlib.nullcontext()
        with context:
            return self._guarded_check_in(token)

    def _guarded_check_in(self, token):
        try:
            return self._check_in(token)
        except StoreError as e:
            self.logger.error(f"Store error during check-in for {token}: {str(e)}")
            return CheckInOutcome(OutcomeKind.STORE_ERROR, token, error=str(e))
        except Exception as e:
            self.logger.error(f"Unexpected error during check-in for {token}: {str(e)}", exc_info=True)
            return CheckInOutcome(OutcomeKind.STORE_ERROR, token, error=str(e))

    def _check_in(self, token):
        record = self.store.read(token)
        if record is None:
            self.logger.warning(f"Check-in failed: RSVP {token} not found")
            return CheckInOutcome(OutcomeKind.NOT_FOUND, token)

        if record.status == RsvpStatus.CHECKED_IN:
            self.logger.info(f"Duplicate check-in attempt for {token}")
            return CheckInOutcome(OutcomeKind.ALREADY_CHECKED_IN, token, record=record.to_dict())

        if record.status == RsvpStatus.CANCELLED:
            self.logger.warning(f"Check-in refused: RSVP {token} was cancelled")
            return CheckInOutcome(OutcomeKind.NOT_FOUND, token, record=record.to_dict())

        # Physical presence overrides the declared intent
        result = self.store.update_if_status(token, RsvpStatus.INVITED, {
            'status': RsvpStatus.CHECKED_IN,
            'coming': True,
            'checked_in_at': self.clock(),
        })

        if result == UpdateResult.APPLIED:
            record = self.store.read(token)
            self.logger.info(f"Checked in {token}")
            return CheckInOutcome(OutcomeKind.SUCCEEDED, token, record=record.to_dict())

        if result == UpdateResult.NOT_FOUND:
            return CheckInOutcome(OutcomeKind.NOT_FOUND, token)

        # Another station won the race between our read and write
        record = self.store.read(token)
        if record is None:
            return CheckInOutcome(OutcomeKind.NOT_FOUND, token)
        if record.status == RsvpStatus.CANCELLED:
            return CheckInOutcome(OutcomeKind.NOT_FOUND, token, record=record.to_dict())
        self.logger.info(f"Check-in for {token} lost a race; record is {record.status}")
        return CheckInOutcome(OutcomeKind.ALREADY_CHECKED_IN, token, record=record.to_dict())
