"""Exceptions raised by the matching and response-lifecycle services.

Routes translate these to HTTP errors; the services never catch their own
errors so a failed operation rolls back the whole request transaction.
"""


class MatchingError(Exception):
    """Base class for matching-core failures."""


class NotFoundError(MatchingError):
    """An alert, donor, hospital or response id does not resolve."""

    def __init__(self, kind: str, ident):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind.capitalize()} {ident} not found")


class InvalidStateError(MatchingError):
    """The requested transition is not legal from the current status."""
