"""
Order lifecycle: per-channel status paths, transition checks, and the canonical
status buckets used by every report and by the live feed.

Paths:
    dine-in          pending -> preparing -> ready -> served
    takeaway         pending -> preparing -> ready -> completed
    delivery/online  pending -> preparing -> ready -> out_for_delivery -> delivered
Any non-terminal status may also move to cancelled.
"""
from core.exceptions import InvalidTransition
from core.models import OrderChannel, OrderStatus

CHANNEL_PATHS = {
    OrderChannel.DINE_IN: (
        OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.SERVED,
    ),
    OrderChannel.TAKEAWAY: (
        OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED,
    ),
    OrderChannel.DELIVERY: (
        OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY,
        OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED,
    ),
    OrderChannel.ONLINE: (
        OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY,
        OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED,
    ),
}

TERMINAL_STATUSES = frozenset({
    OrderStatus.SERVED,
    OrderStatus.COMPLETED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})

# --- Canonical buckets ---

BUCKET_PENDING = 'pending'
BUCKET_PREPARING = 'preparing'
BUCKET_READY = 'ready'
BUCKET_SERVED = 'served'
BUCKET_CANCELLED = 'cancelled'

BUCKETS = (BUCKET_PENDING, BUCKET_PREPARING, BUCKET_READY, BUCKET_SERVED, BUCKET_CANCELLED)

_BUCKET_OF = {
    'pending': BUCKET_PENDING,
    'preparing': BUCKET_PREPARING,
    'ready': BUCKET_READY,
    # en route; counted with ready
    'out_for_delivery': BUCKET_READY,
    'served': BUCKET_SERVED,
    'completed': BUCKET_SERVED,
    'delivered': BUCKET_SERVED,
    'paid': BUCKET_SERVED,
    'cancelled': BUCKET_CANCELLED,
}


def normalize_status(raw) -> str:
    """Map any raw status to one of BUCKETS. Unknown or empty -> pending."""
    if not raw:
        return BUCKET_PENDING
    key = str(raw).strip().lower().replace('-', '_').replace(' ', '_')
    return _BUCKET_OF.get(key, BUCKET_PENDING)


def empty_bucket_counts():
    return {b: 0 for b in BUCKETS}


def channel_path(channel):
    """Status path for channel; unknown channels are rejected."""
    try:
        return CHANNEL_PATHS[channel]
    except KeyError:
        raise ValueError(f'Unknown order channel: {channel!r}')


def is_terminal(status) -> bool:
    return status in TERMINAL_STATUSES


def next_status(channel, current):
    """Immediate successor of current on the channel path, or None at the end."""
    path = channel_path(channel)
    if current not in path:
        return None
    idx = path.index(current)
    return path[idx + 1] if idx + 1 < len(path) else None


def allowed_transitions(channel, current):
    """Statuses reachable from current in one step."""
    if is_terminal(current):
        return []
    out = []
    nxt = next_status(channel, current)
    if nxt:
        out.append(nxt)
    out.append(OrderStatus.CANCELLED)
    return out


def can_transition(channel, current, target) -> bool:
    return target in allowed_transitions(channel, current)


def check_transition(channel, current, target):
    """Raise InvalidTransition unless current -> target is allowed for channel."""
    if not can_transition(channel, current, target):
        raise InvalidTransition(current, target, channel)


def is_valid_history(channel, statuses) -> bool:
    """
    True when statuses (starting at pending) walks the channel path, optionally ending
    with a single cancelled from a non-terminal point.
    """
    if not statuses or statuses[0] != OrderStatus.PENDING:
        return False
    for prev, curr in zip(statuses, statuses[1:]):
        if not can_transition(channel, prev, curr):
            return False
    return True
