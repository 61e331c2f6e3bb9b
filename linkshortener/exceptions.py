"""Domain exceptions for the link shortener core, independent of the web framework."""

__all__ = [
    "LinkShortenerError",
    "InvalidInputError",
    "NotFoundError",
    "ConflictError",
    "NoOpError",
    "WatchClosedError",
]


class LinkShortenerError(Exception):
    """Base class for every error raised by the core."""


class InvalidInputError(LinkShortenerError):
    """Raised when a long URL is not a syntactically valid absolute URL."""

    def __init__(self, message: str, value: str | None = None):
        self.value = value
        super().__init__(message)


class NotFoundError(LinkShortenerError):
    """Raised when a short code does not resolve to a link."""

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"Short link '{short_code}' not found")


class ConflictError(LinkShortenerError):
    """Raised on a short-code collision or a failed check-and-set commit.

    Callers are expected to re-read and retry; the failed write left the
    store untouched.
    """

    def __init__(self, short_code: str, reason: str):
        self.short_code = short_code
        self.reason = reason
        super().__init__(f"Conflict on '{short_code}': {reason}")


class NoOpError(LinkShortenerError):
    """Raised when an update would not change anything."""

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__("The new URL is the same as the current one")


class WatchClosedError(LinkShortenerError):
    """Terminal failure of a change subscription.

    Not a deletion signal: consumers may simply resubscribe.
    """

    def __init__(self, short_code: str, reason: str):
        self.short_code = short_code
        self.reason = reason
        super().__init__(f"Watch on '{short_code}' closed: {reason}")
