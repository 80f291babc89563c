"""Exception types for torrent queue manager."""


class TqmError(Exception):
    """Base class for all tqm errors."""


class ConfigError(TqmError, ValueError):
    """Missing or invalid configuration. Fatal at startup."""


class CompileError(TqmError):
    """A filter expression could not be compiled. Fatal at startup."""

    def __init__(self, message: str, expression: str = '', position: int = -1):
        self.expression = expression
        self.position = position
        if expression:
            where = f" at position {position}" if position >= 0 else ''
            message = f"{message}{where} in expression {expression!r}"
        super().__init__(message)


class ConnectError(TqmError):
    """The torrent client could not be reached or rejected the login."""


class EvalError(TqmError):
    """A compiled expression failed while being evaluated against a torrent."""


class ActionError(TqmError):
    """A remove, relabel or retag call against the client failed."""


class TrackerError(TqmError):
    """A tracker API lookup failed."""
