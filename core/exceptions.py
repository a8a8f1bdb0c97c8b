"""Order domain errors raised by the service layer and translated by the views."""


class OrderError(Exception):
    """Base class for order lifecycle / numbering / aggregation errors."""


class OrderValidationError(OrderError):
    """Order payload rejected before anything is written."""


class InvalidTransition(OrderError):
    """Status change not on the order channel's path. The order is left unchanged."""

    def __init__(self, current, target, channel=None):
        self.current = current
        self.target = target
        self.channel = channel
        if channel:
            msg = f'Invalid transition from {current} to {target} for {channel} order'
        else:
            msg = f'Invalid transition from {current} to {target}'
        super().__init__(msg)


class InvalidPaymentStatus(OrderError):
    """Payment status change refused (unknown value or total not finalized)."""


class AllocationRaceFailure(OrderError):
    """Placeholder order number collided on insert; retried with a fresh placeholder."""


class OrderCreationFailed(OrderError):
    """Order could not be inserted after the bounded placeholder retries."""


class NumberingReconcileFailure(OrderError):
    """Rename from placeholder to final order number failed after a successful insert.

    Never propagated to the caller: the order stays valid under its placeholder and a
    NumberingIssue row is recorded for offline repair.
    """

    def __init__(self, order_id, placeholder, cause=None):
        self.order_id = order_id
        self.placeholder = placeholder
        self.cause = cause
        super().__init__(f'Could not assign final number to order {order_id} ({placeholder}): {cause}')


class AggregationInconsistency(OrderError):
    """Incremental aggregates diverged from the full recompute beyond tolerance."""

    def __init__(self, differences):
        self.differences = differences
        super().__init__(f'Aggregates diverged: {differences}')
