"""Exception taxonomy for lanegraph.

Missing parent commits are not errors: the layout treats them as graph
boundaries. Everything else that can go wrong in the pipeline surfaces as
one of the exceptions below.
"""


class LanegraphError(Exception):
    """Base class for all lanegraph errors."""
    pass


class ConfigError(LanegraphError):
    """Raised when a configuration file cannot be read or validated."""
    pass


class GraphDataError(LanegraphError):
    """Raised when the commit input is malformed (e.g. duplicate hashes)."""
    pass


class ProviderError(LanegraphError):
    """Raised when commits cannot be loaded from a repository or file."""
    pass


class EncodingError(LanegraphError):
    """Raised when a row range cannot be rasterized or encoded.

    Fatal for that row range only; other ranges stay usable.
    """

    def __init__(self, message: str, start: int | None = None, stop: int | None = None):
        super().__init__(message)
        self.start = start
        self.stop = stop


class ProtocolMismatchError(LanegraphError):
    """Raised when the output stream cannot display inline images."""
    pass


class CacheCorruptionError(LanegraphError):
    """Raised when a persisted cache entry fails to decode."""
    pass


class TerminalTooSmallError(LanegraphError):
    """Raised when the terminal is too narrow for the graph image."""

    def __init__(self, required_columns: int, terminal_columns: int):
        super().__init__(
            f"Terminal too small ({terminal_columns} columns). "
            f"The current graph needs at least {required_columns} columns to display properly."
        )
        self.required_columns = required_columns
        self.terminal_columns = terminal_columns
