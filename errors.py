# errors.py
from typing import Optional


class LanShareError(Exception):
    """
    Base for conditions that reach the HTTP boundary with a status code.
    """
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(LanShareError):
    status_code = 400


class InvalidOperation(LanShareError):
    status_code = 400


class PathNotFound(LanShareError):
    status_code = 404


class IOFailure(LanShareError):
    status_code = 500

    @classmethod
    def wrap(cls, exc: OSError) -> "IOFailure":
        err = cls(f"{type(exc).__name__}: {exc}")
        err.__cause__ = exc
        return err


class CommandExecutionFailure(LanShareError):
    """
    An external browse/share/name query could not run or failed.
    Scanners absorb this and degrade to an empty result.
    """
    status_code = 500

    def __init__(self, command: str, message: str, returncode: Optional[int] = None):
        super().__init__(f"{command}: {message}")
        self.command = command
        self.returncode = returncode
