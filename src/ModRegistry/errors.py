"""
errors.py
Exception types raised by the registry, one per semantic error kind.

  NotFoundError          — referenced file / section / key absent
  InvalidDataError       — malformed bool or int, single value vs array mismatch,
                           unparseable line (MissingSectionError: required section absent)
  InvalidInputError      — missing extension, malformed request
  PermissionDeniedError  — existence can neither be confirmed nor denied
  UnsupportedError       — business rule violation (e.g. foreign load order keys)
  WorkerError            — background worker failed to rejoin
  ModError               — anything else

Several failures of one operation are reported as a single MergedError whose
text joins every message; the individual errors stay available in .errors.
"""

from __future__ import annotations

from typing import Iterable


class ModError(Exception):
    """Base class; also used directly for the "other" kind."""

    kind = "Other"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def add_msg(self, msg: str, new_line: bool = False) -> "ModError":
        """Append msg to this error's text. Returns self for chaining."""
        joiner = "\n" if new_line else ", "
        self.message = f"{self.message}{joiner}{msg}" if self.message else msg
        self.args = (self.message,)
        return self


class NotFoundError(ModError):
    kind = "NotFound"


class InvalidDataError(ModError):
    kind = "InvalidData"


class MissingSectionError(InvalidDataError):
    """A required section is absent from an otherwise readable file."""


class InvalidInputError(ModError):
    kind = "InvalidInput"


class PermissionDeniedError(ModError):
    kind = "PermissionDenied"


class UnsupportedError(ModError):
    kind = "Unsupported"


class WorkerError(ModError):
    kind = "BrokenPipe"


class MergedError(ModError):
    """Compound error; str() concatenates every underlying message."""

    def __init__(self, errors: list[Exception], new_line: bool = True):
        if not errors:
            raise ValueError("Tried to merge 0 errors")
        joiner = "\n" if new_line else ", "
        super().__init__(joiner.join(str(e) for e in errors))
        self.errors = list(errors)
        first = errors[0]
        self.kind = getattr(first, "kind", ModError.kind)


def merge_errors(errors: Iterable[Exception], new_line: bool = True) -> Exception | None:
    """Return None, the only error, or a MergedError of all of them."""
    errors = list(errors)
    if not errors:
        return None
    if len(errors) == 1:
        return errors[0]
    return MergedError(errors, new_line)


def wrap_os_error(err: OSError, context: str = "") -> ModError:
    """Translate an OSError raised by the filesystem into the matching kind."""
    text = f"{context}: {err}" if context else str(err)
    if isinstance(err, FileNotFoundError):
        return NotFoundError(text)
    if isinstance(err, PermissionError):
        return PermissionDeniedError(text)
    if isinstance(err, BrokenPipeError):
        return WorkerError(text)
    return ModError(text)
