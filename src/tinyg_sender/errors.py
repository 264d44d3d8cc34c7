"""
Error types raised by the TinyG sender.

Every error the package raises derives from TinyGError so callers can catch
the whole family in one place.
"""


class TinyGError(Exception):
    """Base class for all tinyg_sender errors."""


class NoPortFound(TinyGError):
    """No candidate serial port answered the probe."""


class AlreadyOpen(TinyGError):
    """open_first() was called on a connection that is already open."""


class AlreadyOpening(TinyGError):
    """open_first() was called while another open attempt is in progress."""


class NotOpen(TinyGError):
    """An operation needing an open connection was called while closed."""


class TransportError(TinyGError, OSError):
    """I/O failure on a serial channel (disconnect, write error, ...)."""
