"""Exceptions raised inside the reconciliation engine."""


class ReconcilerError(Exception):
    """Base class for reconciliation errors."""


class MalformedDiffError(ReconcilerError):
    """A patch contains a hunk header that cannot be parsed."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number


class AmbiguousLineError(ReconcilerError):
    """No valid diff line lies within the search window around a finding."""

    def __init__(self, line: int, window: int) -> None:
        super().__init__(f"No valid diff line within {window} lines of line {line}")
        self.line = line
        self.window = window


class MalformedMarkerError(ReconcilerError):
    """A comment holds a fingerprint marker that cannot be parsed."""

    def __init__(self, comment_id: str, malformed: int) -> None:
        super().__init__(
            f"Comment {comment_id} has {malformed} malformed fingerprint marker(s)"
        )
        self.comment_id = comment_id
        self.malformed = malformed
