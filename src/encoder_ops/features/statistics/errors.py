"""Statistics failures."""


class StatisticsError(Exception):
    """A rollup could not be computed (driver error or malformed data)."""


class StoreUnavailableError(StatisticsError):
    """The job store is not reachable, so no rollup was attempted."""
