"""Map database driver failures onto ErrorKind at the point of failure."""

from __future__ import annotations

from sqlalchemy import exc as sa_exc

from app.core.errors import CustomError, ErrorKind


# PostgreSQL SQLSTATE codes.
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

# sqlite3 extended result names (Error.sqlite_errorname).
_SQLITE_DUPLICATE = {"SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"}
_SQLITE_FOREIGN_KEY = {"SQLITE_CONSTRAINT_FOREIGNKEY"}


def _sqlstate(orig: BaseException | None) -> str | None:
    # asyncpg (through SQLAlchemy's adapter) and psycopg expose sqlstate;
    # psycopg2 uses pgcode.
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if isinstance(code, str) and code:
            return code
    return None


def _integrity_kind(err: sa_exc.IntegrityError) -> ErrorKind:
    orig = err.orig
    code = _sqlstate(orig)
    if code == UNIQUE_VIOLATION:
        return ErrorKind.DB_DUPLICATE
    if code == FOREIGN_KEY_VIOLATION:
        return ErrorKind.DB_CONSTRAINT

    name = getattr(orig, "sqlite_errorname", None)
    if name in _SQLITE_DUPLICATE:
        return ErrorKind.DB_DUPLICATE
    if name in _SQLITE_FOREIGN_KEY:
        return ErrorKind.DB_CONSTRAINT
    if name is None and "UNIQUE constraint failed" in str(orig):
        return ErrorKind.DB_DUPLICATE
    return ErrorKind.DB_CONSTRAINT


def classify_kind(err: BaseException) -> ErrorKind:
    if isinstance(err, sa_exc.NoResultFound):
        return ErrorKind.DB_NOT_FOUND
    if isinstance(err, sa_exc.IntegrityError):
        return _integrity_kind(err)
    if isinstance(err, sa_exc.DBAPIError) and _is_disconnect(err):
        return ErrorKind.DB_CONNECTION
    if isinstance(err, (sa_exc.DisconnectionError, OSError)):
        # OSError covers ConnectionRefusedError and socket timeouts.
        return ErrorKind.DB_CONNECTION
    return ErrorKind.DB_OPERATION


def _is_disconnect(err: sa_exc.DBAPIError) -> bool:
    if err.connection_invalidated or isinstance(err, sa_exc.InterfaceError):
        return True
    if isinstance(err.orig, OSError):
        return True
    # SQLSTATE class 08: connection exception.
    code = _sqlstate(err.orig)
    return code is not None and code.startswith("08")


def classify_db_error(err: BaseException, message: str | None = None) -> CustomError:
    """Wrap `err` in the matching database ErrorKind, keeping it as cause."""

    if isinstance(err, CustomError):
        return err
    return classify_kind(err).new(message, cause=err)
