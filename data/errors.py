"""
errors.py

Error taxonomy of the sheets data layer.

Every error raised by the client or the repository is a SheetsStoreError
subclass, annotated with the table and the operation that failed.
Validation problems are NOT exceptions at the validator level: they are
returned as data (see schema_validator.ValidationResult). The repository
only wraps them in RecordValidationError when a write has to be refused.
"""

from typing import Any, List, Optional


class SheetsStoreError(Exception):

    retryable = False

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        call: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.table = table
        self.operation = operation
        self.call = call
        self.cause = cause

    def with_context(self, table: Optional[str] = None, operation: Optional[str] = None):
        """Fill table/operation if still unknown. Returns self for `raise`."""
        if table and not self.table:
            self.table = table
        if operation and not self.operation:
            self.operation = operation
        return self

    def __str__(self) -> str:
        where = []
        if self.operation:
            where.append(self.operation)
        if self.table:
            where.append(f"table={self.table}")
        if self.call:
            where.append(f"call={self.call}")
        if not where:
            return self.message
        return f"[{' '.join(where)}] {self.message}"


class AuthError(SheetsStoreError):
    pass


class NotFoundError(SheetsStoreError):
    pass


class UnknownTableError(NotFoundError):
    pass


class RateLimitedError(SheetsStoreError):
    retryable = True


class TransientError(SheetsStoreError):
    retryable = True


class PermanentError(SheetsStoreError):
    pass


class RetryExhaustedError(SheetsStoreError):

    def __init__(self, message: str, attempts: int, last_error: BaseException, **kwargs):
        super().__init__(message, cause=last_error, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class RecordValidationError(PermanentError):

    def __init__(self, errors: List[Any], **kwargs):
        summary = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Data validation failed: {summary}", **kwargs)
        self.errors = list(errors)


class BatchOperationError(SheetsStoreError):

    def __init__(self, message: str, result: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.result = result


class QueryError(ValueError):
    pass
