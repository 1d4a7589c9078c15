"""Exception hierarchy for the pool health service.

Source failures degrade to "no data this cycle"; only a failed cursor write
is meant to propagate out of an ingestion cycle.
"""


class PoolHealthError(Exception):
    """Base exception for all pool-health errors."""

    pass


class SourceError(PoolHealthError):
    """Errors talking to the external yield-data provider."""

    pass


class SourceUnavailable(SourceError):
    """The provider could not be reached or returned an unusable response."""

    pass


class RateLimited(SourceError):
    """The provider answered with HTTP 429."""

    pass


class InsufficientHistory(PoolHealthError):
    """A pool's series is shorter than the minimum day count."""

    pass


class MalformedRecord(PoolHealthError):
    """A catalog row is missing required fields."""

    pass


class StorageError(PoolHealthError):
    """Errors reading or writing the durable key-value store."""

    pass


class CursorPersistError(StorageError):
    """The advanced rotation cursor could not be written."""

    pass


class CycleInProgress(PoolHealthError):
    """An ingestion cycle was requested while another one is running."""

    pass
