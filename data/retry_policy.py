"""
retry_policy.py

Classifies errors coming from the Sheets API and retries the transient ones
with exponential backoff and jitter.

Rules:
- RATE_LIMITED and TRANSIENT are retried up to max_attempts (total attempts).
- AUTH, NOT_FOUND and PERMANENT are raised on the first attempt.
- Appends are not idempotent. They are retried after a rate limit or a
  failure that happened before the request was sent. Any other transient
  failure is only retried when `verify()` confirms the first attempt did not
  land; if it did land, the call counts as applied.
"""

import enum
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests
from google.auth import exceptions as google_auth_exceptions
from gspread import exceptions as gspread_exceptions

from data.errors import (
    AuthError,
    NotFoundError,
    PermanentError,
    RateLimitedError,
    RetryExhaustedError,
    SheetsStoreError,
    TransientError,
)

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("rate_limit_exceeded", "ratelimitexceeded", "quota exceeded", "resource_exhausted")


class ErrorKind(enum.Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    PERMANENT = "permanent"


_KIND_TO_ERROR = {
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.TRANSIENT: TransientError,
    ErrorKind.AUTH: AuthError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.PERMANENT: PermanentError,
}

_ERROR_TO_KIND = [
    (RateLimitedError, ErrorKind.RATE_LIMITED),
    (TransientError, ErrorKind.TRANSIENT),
    (AuthError, ErrorKind.AUTH),
    (NotFoundError, ErrorKind.NOT_FOUND),
]


def _status_code(exc: BaseException) -> Optional[int]:
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if code is None:
        code = getattr(exc, "code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, SheetsStoreError):
        for error_type, kind in _ERROR_TO_KIND:
            if isinstance(exc, error_type):
                return kind
        return ErrorKind.PERMANENT

    if isinstance(exc, (gspread_exceptions.WorksheetNotFound, gspread_exceptions.SpreadsheetNotFound)):
        return ErrorKind.NOT_FOUND

    if isinstance(exc, google_auth_exceptions.GoogleAuthError):
        if isinstance(exc, google_auth_exceptions.TransportError):
            return ErrorKind.TRANSIENT
        return ErrorKind.AUTH

    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return ErrorKind.TRANSIENT

    if isinstance(exc, gspread_exceptions.APIError):
        status = _status_code(exc)
        text = str(exc).lower()
        if status == 429 or any(marker in text for marker in _QUOTA_MARKERS):
            return ErrorKind.RATE_LIMITED
        if status is not None and status >= 500:
            return ErrorKind.TRANSIENT
        if status in (401, 403):
            return ErrorKind.AUTH
        if status == 404:
            return ErrorKind.NOT_FOUND
        return ErrorKind.PERMANENT

    return ErrorKind.PERMANENT


def _may_have_landed(exc: BaseException) -> bool:
    """False only for failures where the request clearly never got applied."""
    if classify_error(exc) is ErrorKind.RATE_LIMITED:
        return False
    if isinstance(exc, requests.exceptions.ConnectTimeout):
        return False
    return True


def to_store_error(exc: BaseException, table: Optional[str] = None, call: Optional[str] = None) -> SheetsStoreError:
    if isinstance(exc, SheetsStoreError):
        if call and not exc.call:
            exc.call = call
        return exc.with_context(table=table)
    error_type = _KIND_TO_ERROR[classify_error(exc)]
    return error_type(str(exc) or exc.__class__.__name__, table=table, call=call, cause=exc)


def _reraise(error: SheetsStoreError, original: BaseException):
    if error is original:
        raise error
    raise error from original


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.1
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        # below 1/3 the jittered doubling still strictly grows: 2 * (1 - j) > 1 + j
        if not 0 <= self.jitter < 1 / 3:
            raise ValueError("jitter must be in [0, 1/3)")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-based). Never shrinks as attempts grow."""
        delay = self.base_delay * (2 ** attempt)
        if self.jitter:
            delay *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return min(delay, self.max_delay)

    def call(
        self,
        fn: Callable[[], Any],
        idempotent: bool = True,
        verify: Optional[Callable[[], bool]] = None,
        table: Optional[str] = None,
        call: Optional[str] = None,
    ) -> Any:
        attempt = 0
        while True:
            try:
                return fn()
            except Exception as exc:
                error = to_store_error(exc, table=table, call=call)
                kind = classify_error(error)
                attempt += 1

                if kind not in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT):
                    _reraise(error, exc)

                if not idempotent and _may_have_landed(exc):
                    if verify is None:
                        _reraise(error, exc)
                    if verify():
                        logger.warning(
                            "%s on %s failed ambiguously but the write landed; not retrying",
                            call, table,
                        )
                        return None

                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(
                        f"giving up after {attempt} attempts: {error.message}",
                        attempts=attempt,
                        last_error=error,
                        table=table,
                        call=call,
                    ) from exc

                sleep_for = self.delay_for(attempt - 1)
                logger.warning(
                    "retrying %s on %s (%s), attempt %d/%d in %.2fs",
                    call, table, kind.value, attempt + 1, self.max_attempts, sleep_for,
                )
                self.sleep(sleep_for)
