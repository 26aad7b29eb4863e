"""Error classification for operations against the backing store."""

from __future__ import annotations

import asyncio
import sqlite3
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    STORE_UNAVAILABLE = "store_unavailable"
    CONSTRAINT_VIOLATION = "constraint_violation"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TIMEOUT, ErrorKind.STORE_UNAVAILABLE)

    @property
    def terminal(self) -> bool:
        """Kinds that no amount of retrying can change."""

        return self in (ErrorKind.CONSTRAINT_VIOLATION, ErrorKind.NOT_FOUND)


class StoreError(Exception):
    """Base class for classified store failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str = "", *, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        if kind is not None:
            self.kind = kind


class StoreTimeout(StoreError):
    kind = ErrorKind.TIMEOUT


class StoreUnavailable(StoreError):
    kind = ErrorKind.STORE_UNAVAILABLE


class ConstraintViolation(StoreError):
    kind = ErrorKind.CONSTRAINT_VIOLATION


class NotFound(StoreError):
    kind = ErrorKind.NOT_FOUND


class UnknownStoreError(StoreError):
    kind = ErrorKind.UNKNOWN


_ERROR_TYPES = {
    ErrorKind.TIMEOUT: StoreTimeout,
    ErrorKind.STORE_UNAVAILABLE: StoreUnavailable,
    ErrorKind.CONSTRAINT_VIOLATION: ConstraintViolation,
    ErrorKind.NOT_FOUND: NotFound,
    ErrorKind.UNKNOWN: UnknownStoreError,
}


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the :class:`ErrorKind` for ``exc`` based on its type only."""

    if isinstance(exc, StoreError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, sqlite3.IntegrityError):
        return ErrorKind.CONSTRAINT_VIOLATION
    if isinstance(exc, (sqlite3.DatabaseError, sqlite3.InterfaceError, ConnectionError)):
        return ErrorKind.STORE_UNAVAILABLE
    return ErrorKind.UNKNOWN


def as_store_error(exc: BaseException) -> StoreError:
    """Wrap ``exc`` in the matching :class:`StoreError` subclass."""

    if isinstance(exc, StoreError):
        return exc
    kind = classify_error(exc)
    error = _ERROR_TYPES[kind](str(exc) or exc.__class__.__name__)
    error.__cause__ = exc
    return error
