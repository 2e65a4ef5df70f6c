"""Exceptions raised by short URL repositories.

Classes:
    RepositoryError:  Base class for repository failures.
    DataStoreError:  The backing store failed (connection, timeout, constraint).
    ShortUrlNotFoundError:  An update targeted an id that does not exist.
"""

__all__ = ["RepositoryError", "DataStoreError", "ShortUrlNotFoundError"]


class RepositoryError(Exception):
    """Base class for repository failures."""


class DataStoreError(RepositoryError):
    """The backing store failed, e.g. connection issues or timeouts."""


class ShortUrlNotFoundError(RepositoryError):
    """No short URL record exists for the requested id."""
