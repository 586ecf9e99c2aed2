"""Domain exceptions raised by the shortener core.

Each exception carries the HTTP status it is surfaced with; ``main.py``
registers a single handler that renders them as ``{"detail": message}``.

Classes:
    ShortLinkError:
        Generic base class.

    LinkNotFoundError:
        The code does not resolve to any stored link.

    LinkGoneError:
        The link resolved but is inactive or expired.

    AliasConflictError:
        The requested alias (or a generated code) is already claimed.

    ValidationError:
        Malformed long URL, bad alias charset/length or reserved word.

    CapacityExhaustedError:
        The code generator ran out of room below its length ceiling.
"""


class ShortLinkError(Exception):
    """Generic base class for shortener exceptions."""

    status_code = 400


class LinkNotFoundError(ShortLinkError):
    """Raised when a code does not resolve to any stored link."""

    status_code = 404


class LinkGoneError(ShortLinkError):
    """Raised when a link is inactive or past its expiry."""

    status_code = 410


class AliasConflictError(ShortLinkError):
    """Raised when an alias or code is already taken."""

    status_code = 409


class ValidationError(ShortLinkError):
    """Raised on malformed input, before anything is persisted."""

    status_code = 400


class CapacityExhaustedError(ShortLinkError):
    """Raised when no free code exists up to the configured length ceiling."""

    status_code = 503
