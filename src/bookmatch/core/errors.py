"""Exception types raised at the edges of the matching engine."""


class BookmatchError(Exception):
    """Base class for all bookmatch errors."""


class InvalidRecordError(BookmatchError):
    """A transaction, document or line item payload could not be parsed."""

    def __init__(self, kind: str, record_id: str | None, message: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"Invalid {kind} {record_id or '<no id>'}: {message}")


class RepositoryError(BookmatchError):
    """A repository read or write failed."""
