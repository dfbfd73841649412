import sqlite3
from typing import Optional

# Primary SQLite result codes, keyed by number.
PRIMARY_CODES = {
    1: "SQLITE_ERROR",
    2: "SQLITE_INTERNAL",
    3: "SQLITE_PERM",
    4: "SQLITE_ABORT",
    5: "SQLITE_BUSY",
    6: "SQLITE_LOCKED",
    7: "SQLITE_NOMEM",
    8: "SQLITE_READONLY",
    9: "SQLITE_INTERRUPT",
    10: "SQLITE_IOERR",
    11: "SQLITE_CORRUPT",
    12: "SQLITE_NOTFOUND",
    13: "SQLITE_FULL",
    14: "SQLITE_CANTOPEN",
    15: "SQLITE_PROTOCOL",
    16: "SQLITE_EMPTY",
    17: "SQLITE_SCHEMA",
    18: "SQLITE_TOOBIG",
    19: "SQLITE_CONSTRAINT",
    20: "SQLITE_MISMATCH",
    21: "SQLITE_MISUSE",
    22: "SQLITE_NOLFS",
    23: "SQLITE_AUTH",
    24: "SQLITE_FORMAT",
    25: "SQLITE_RANGE",
    26: "SQLITE_NOTADB",
    27: "SQLITE_NOTICE",
    28: "SQLITE_WARNING",
}
ERRNO_BY_CODE = {name: number for number, name in PRIMARY_CODES.items()}

SQLITE_ERROR = "SQLITE_ERROR"
SQLITE_BUSY = "SQLITE_BUSY"
SQLITE_CANTOPEN = "SQLITE_CANTOPEN"
SQLITE_CONSTRAINT = "SQLITE_CONSTRAINT"
SQLITE_MISUSE = "SQLITE_MISUSE"
SQLITE_RANGE = "SQLITE_RANGE"


class SqliteError(Exception):
    """Error reported by the engine.

    ``code`` is the primary result code name (``SQLITE_CANTOPEN`` and so on),
    ``errno`` its number, ``extended_code`` the extended name when sqlite3
    exposes one.
    """

    def __init__(self, code: str, message: str, errno: Optional[int] = None, extended_code: Optional[str] = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.errno = errno if errno is not None else ERRNO_BY_CODE.get(code)
        self.extended_code = extended_code or code
        self.reason = message

    @classmethod
    def from_exception(cls, exc: BaseException) -> "SqliteError":
        if isinstance(exc, SqliteError):
            return exc
        message = str(exc)
        extended = getattr(exc, "sqlite_errorcode", None)
        if extended is not None:
            errno = extended & 0xFF
            code = PRIMARY_CODES.get(errno, SQLITE_ERROR)
            error = cls(code, message, errno, getattr(exc, "sqlite_errorname", None))
        else:
            error = cls(_guess_code(exc), message)
        error.__cause__ = exc
        return error


def _guess_code(exc: BaseException) -> str:
    # sqlite3 before 3.11 does not carry result codes on its exceptions.
    message = str(exc).lower()
    if isinstance(exc, sqlite3.IntegrityError):
        return SQLITE_CONSTRAINT
    if isinstance(exc, sqlite3.ProgrammingError):
        return SQLITE_RANGE if "binding" in message else SQLITE_MISUSE
    if "unable to open" in message:
        return SQLITE_CANTOPEN
    if "locked" in message:
        return SQLITE_BUSY
    return SQLITE_ERROR


def misuse(message: str) -> SqliteError:
    return SqliteError(SQLITE_MISUSE, message)
