class ScriptManagerError(Exception):
    """Base class for errors raised by scriptmanager."""


class NotFoundError(ScriptManagerError):
    """Raised when an operation targets a reference that is not on the page."""

    def __init__(self, message: str, *, title: str = ""):
        self.title = title
        super().__init__(message)


class CodecMismatch(ScriptManagerError):
    """Raised inside the capture codec for a malformed wrapper block or item."""


class TransportFailure(ScriptManagerError):
    """Raised by a WikiEditService when fetching or saving a page fails."""


class MoveIncompleteError(ScriptManagerError):
    """Raised when a move installed the script on the new target but could not remove it from the old one.

    The script is then installed on both targets. Running uninstall on
    ``source_target`` again finishes the move.
    """

    def __init__(self, message: str, *, source_target: str, new_target: str):
        self.source_target = source_target
        self.new_target = new_target
        super().__init__(message)
