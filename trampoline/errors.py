"""
Trampoline error types.

Every failure is fatal to the current invocation. Errors are raised where
they are detected and reported once, by the entry point, as a single
"ERROR: ..." line on stderr with exit code 1.
"""


class TrampolineError(Exception):
    """Base class. The message is shown to the user as-is."""


class ConfigurationError(TrampolineError):
    """Required configuration (the server port) is missing or invalid."""


class TransportError(TrampolineError):
    """Connect, send or receive failed at the socket layer."""


class ProtocolError(TrampolineError):
    """A frame violates the wire format (e.g. exceeds the buffer capacity)."""


class LocalIOError(TrampolineError):
    """Reading our own standard input failed mid-stream."""
