"""Exception types raised by :mod:`dd_sketch`."""
from __future__ import annotations


class SketchError(Exception):
    """Base class for every error raised by the sketch and its codecs."""


class InvalidArgumentError(SketchError, ValueError):
    """A contract violation: bad parameter, unknown wire tag or out-of-range index."""


class SketchIOError(SketchError):
    """Failure while reading or writing the byte stream.

    ``kind`` names the failure category (e.g. ``"UnexpectedEof"``) so callers
    can branch on it without parsing the message.
    """

    def __init__(self, kind: str, message: str = "") -> None:
        super().__init__(f"IO error: {kind}" + (f" ({message})" if message else ""))
        self.kind = kind
