"""Error kinds raised by the aggregation engine."""


class AggregationError(Exception):
    """Base class for aggregation engine errors."""


class InvalidArgumentError(AggregationError, ValueError):
    """A caller supplied malformed input; the request is rejected without partial results."""


class InvalidResolutionError(InvalidArgumentError):
    """A resolution is out of range or finer than the cell it is applied to."""


class UnresolvableLocationError(AggregationError):
    """A counted response carries no location that maps to a cell."""

    def __init__(self, poll_id: str, user_id: str) -> None:
        self.poll_id = poll_id
        self.user_id = user_id
        super().__init__(f"No resolvable cell for respondent {user_id} in poll {poll_id}")


class RollupFailureError(AggregationError):
    """A full rebuild of one poll failed; the poll stays dirty."""

    def __init__(self, poll_id: str, message: str) -> None:
        self.poll_id = poll_id
        super().__init__(f"Rollup of poll {poll_id} failed: {message}")


class BatchSizeExceededError(AggregationError):
    """A batched lookup asked for more ids than the store accepts in one call."""

    def __init__(self, requested: int, limit: int) -> None:
        self.requested = requested
        self.limit = limit
        super().__init__(f"Batch of {requested} ids exceeds the limit of {limit}")
