"""Exceptions raised by dupfind.

Per-file errors (TraversalEntryError, HashReadError) are recovered where they
occur and only logged. RootPathError, OutputSinkError and SettingsError end the
run.
"""
from pathlib import Path


class DupfindError(Exception):
    pass


class RootPathError(DupfindError):
    """The scan root does not exist or is not a directory."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path


class OutputSinkError(DupfindError):
    """The report destination cannot be opened, created or written."""

    def __init__(self, destination: str, cause: OSError):
        super().__init__(f"cannot write report to {destination}: {cause.strerror or cause}")
        self.destination = destination


class SettingsError(DupfindError):
    pass


class TraversalEntryError(DupfindError):
    """Metadata of one filesystem entry could not be read."""

    def __init__(self, path: Path, cause: OSError):
        super().__init__(f"cannot read metadata of {path}: {cause.strerror or cause}")
        self.path = path
        self.cause = cause


class HashReadError(DupfindError):
    """A file could not be read while computing its digest."""

    def __init__(self, path: Path, cause: BaseException | None = None, message: str | None = None):
        if message is None:
            if isinstance(cause, OSError):
                message = f"cannot hash {path}: {cause.strerror or cause}"
            else:
                message = f"cannot hash {path}: {cause}"
        super().__init__(message)
        self.path = path
        self.cause = cause


class HashTimeoutError(HashReadError):
    def __init__(self, path: Path, timeout: float):
        super().__init__(path, message=f"hashing {path} did not finish within {timeout}s")
        self.timeout = timeout
