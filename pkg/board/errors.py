"""
Error taxonomy for the board.

Stores and the guard raise these; board_server.py turns them into
``{"message": ...}`` responses with the matching HTTP status.
"""


class BoardError(Exception):
    """Base class for expected, caller-visible failures."""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotFound(BoardError):
    """No item with that id exists (for any owner)."""
    status_code = 404


class Forbidden(BoardError):
    """Item exists but belongs to another owner."""
    status_code = 401


class ValidationFailure(BoardError):
    """Malformed or missing fields, unknown patch keys, bad reorder payload."""
    status_code = 400


class Unauthenticated(BoardError):
    """Missing, invalid or expired credential."""
    status_code = 401


class StorageUnavailable(BoardError):
    """Underlying persistence failed. Not retried by the server."""
    status_code = 500
