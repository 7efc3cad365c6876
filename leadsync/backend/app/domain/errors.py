# app/domain/errors.py
from __future__ import annotations

import asyncio

from sqlalchemy import exc as sa_exc


class SyncError(Exception):
    """Base for everything the sync core classifies."""


class TransientInfraError(SyncError):
    """Timeout / unavailable / rate-limited. Retried with backoff up to the attempt cap."""


class MalformedSourceRecord(SyncError):
    """Payload cannot be shaped into an envelope. Dropped at the adapter, never retried."""


class PermanentWriteError(SyncError):
    """Schema or permission failure from the store. Dead-lettered with zero retries."""


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    sa_exc.OperationalError,
    sa_exc.TimeoutError,  # connection pool exhausted
    sa_exc.InterfaceError,
    ConnectionError,
    OSError,
)

_PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    sa_exc.IntegrityError,
    sa_exc.ProgrammingError,
    sa_exc.DataError,
    sa_exc.StatementError,
    TypeError,
    ValueError,
)


# SQLite reports schema and permission failures as OperationalError, next to
# lock contention and I/O trouble. These message fragments are the ones a
# retry cannot fix.
_PERMANENT_OPERATIONAL_MARKERS: tuple[str, ...] = (
    "no such table",
    "no such column",
    "has no column named",
    "readonly database",
    "read-only database",
    "not authorized",
    "access permission denied",
    "syntax error",
)


def _is_permanent_operational(err: sa_exc.OperationalError) -> bool:
    msg = str(err.orig if err.orig is not None else err).lower()
    return any(marker in msg for marker in _PERMANENT_OPERATIONAL_MARKERS)


def classify_write_error(err: BaseException) -> SyncError:
    """
    Map whatever the store raised into the sync taxonomy.

    Order matters: OperationalError and IntegrityError are both StatementError
    subclasses, so the transient check runs first. Schema and permission
    failures that arrive as OperationalError or PermissionError are pulled out
    before it. Unknown errors are treated as transient; the attempt cap still
    bounds them.
    """
    if isinstance(err, SyncError):
        return err

    if isinstance(err, sa_exc.DBAPIError) and err.connection_invalidated:
        return TransientInfraError(f"connection invalidated: {err}")

    if isinstance(err, PermissionError) or (
        isinstance(err, sa_exc.OperationalError) and _is_permanent_operational(err)
    ):
        return PermanentWriteError(str(err) or type(err).__name__)

    if isinstance(err, _TRANSIENT_TYPES):
        msg = str(err) or type(err).__name__
        return TransientInfraError(msg)

    if isinstance(err, _PERMANENT_TYPES):
        return PermanentWriteError(str(err) or type(err).__name__)

    return TransientInfraError(f"{type(err).__name__}: {err}")
