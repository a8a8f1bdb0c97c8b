"""
Per-connection merged view of a restaurant's orders.

A full snapshot (on connect, on sync, after reconnect) and the published event
stream are folded into one view keyed by order id, newest first. The reconciler
remembers the last status it saw for every order this session so it can report
transitions; whether a transition becomes a notice is the emitter's call.

Events for one order may arrive late or twice. The later timestamp wins and
anything older than what the view already holds is dropped.
"""
import enum
import logging
from datetime import datetime, timezone as dt_timezone

from core.aggregation import parse_timestamp as _ts
from core.constants import EVENT_ORDER_CREATED, EVENT_PAYMENT_CHANGED, pos_setting
from core.lifecycle import empty_bucket_counts, normalize_status

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=dt_timezone.utc)


class ReconcilerState(enum.Enum):
    BOOTSTRAPPING = 'bootstrapping'
    LIVE = 'live'


class LiveOrder:
    """One order in the view. data is the serialized order as last received."""
    __slots__ = ('order_id', 'order_number', 'status', 'created_at', 'updated_at', 'data')

    def __init__(self, data, updated_at=None):
        self.data = dict(data)
        self.order_id = self.data['id']
        self.order_number = self.data.get('order_number') or ''
        self.status = self.data.get('status')
        self.created_at = _ts(self.data.get('created_at'))
        self.updated_at = _ts(updated_at or self.data.get('updated_at')) or self.created_at

    @classmethod
    def from_event(cls, payload):
        if payload.get('order'):
            return cls(payload['order'], payload.get('timestamp'))
        return cls({
            'id': payload['order_id'],
            'order_number': payload.get('order_number'),
            'status': payload.get('status'),
            'payment_status': payload.get('payment_status'),
            'total': payload.get('total'),
            'channel': payload.get('channel'),
            'created_at': payload.get('created_at'),
        }, payload.get('timestamp'))

    def newer_than(self, other):
        if self.updated_at is None or other.updated_at is None:
            return False
        return self.updated_at > other.updated_at

    def apply(self, payload):
        """Fold a status or payment event into this entry."""
        self.status = payload.get('status') or self.status
        self.data['status'] = self.status
        if payload.get('payment_status'):
            self.data['payment_status'] = payload['payment_status']
        if payload.get('order_number'):
            self.order_number = payload['order_number']
            self.data['order_number'] = self.order_number
        ts = _ts(payload.get('timestamp'))
        if ts is not None:
            self.updated_at = ts
            self.data['updated_at'] = ts.isoformat()

    def sort_key(self):
        return (self.created_at or _EPOCH, self.order_id)

    def to_dict(self):
        return dict(self.data)


class Transition:
    """A status change observed by the reconciler."""
    __slots__ = ('order_id', 'order_number', 'previous_status', 'status', 'actor_name')

    def __init__(self, order_id, order_number, previous_status, status, actor_name=None):
        self.order_id = order_id
        self.order_number = order_number
        self.previous_status = previous_status
        self.status = status
        self.actor_name = actor_name

    def __repr__(self):
        return f'<Transition {self.order_number}: {self.previous_status} -> {self.status}>'


class ReconcileBatch:
    """
    Result of merging one snapshot or one group of simultaneous events.
    initial is True for anything observed before the first snapshot merge finished.
    """

    def __init__(self, initial=False):
        self.initial = initial
        self.transitions = []
        self.created = []

    def __bool__(self):
        return bool(self.transitions or self.created)


class LiveReconciler:

    def __init__(self, failure_threshold=None):
        if failure_threshold is None:
            failure_threshold = pos_setting('POS_RESYNC_FAILURE_THRESHOLD')
        self.failure_threshold = failure_threshold
        self.state = ReconcilerState.BOOTSTRAPPING
        self.resync_failures = 0
        self._view = {}
        # order_id -> last status seen this session; survives reconnects
        self._known = {}

    @property
    def is_live(self):
        return self.state is ReconcilerState.LIVE

    @property
    def stale(self):
        return self.resync_failures >= self.failure_threshold

    def __len__(self):
        return len(self._view)

    def __contains__(self, order_id):
        return order_id in self._view

    def get(self, order_id):
        return self._view.get(order_id)

    def known_status(self, order_id):
        return self._known.get(order_id)

    def orders(self):
        """The view, newest created_at first."""
        return sorted(self._view.values(), key=LiveOrder.sort_key, reverse=True)

    def to_list(self):
        return [o.to_dict() for o in self.orders()]

    def status_counts(self):
        counts = empty_bucket_counts()
        for entry in self._view.values():
            counts[normalize_status(entry.status)] += 1
        return counts

    def _observe(self, batch, entry, actor_name=None):
        previous = self._known.get(entry.order_id)
        if previous is not None and previous != entry.status:
            batch.transitions.append(
                Transition(entry.order_id, entry.order_number, previous, entry.status, actor_name)
            )
        self._known[entry.order_id] = entry.status

    def merge_snapshot(self, orders, taken_at=None):
        """
        Replace the view with a fresh snapshot. Entries the view already holds that
        changed after the snapshot was taken (or after the snapshot's copy) are kept.
        The first merge moves the reconciler to LIVE.
        """
        taken_at = _ts(taken_at)
        batch = ReconcileBatch(initial=not self.is_live)
        fresh = {}
        for data in orders:
            entry = LiveOrder(data)
            current = self._view.get(entry.order_id)
            if current is not None and current.newer_than(entry):
                entry = current
            fresh[entry.order_id] = entry
        if taken_at is not None:
            for order_id, current in self._view.items():
                if order_id not in fresh and current.updated_at and current.updated_at > taken_at:
                    fresh[order_id] = current
        for entry in fresh.values():
            self._observe(batch, entry)
        self._view = fresh
        self.resync_failures = 0
        if not self.is_live:
            self.state = ReconcilerState.LIVE
            logger.debug('Live reconciler initialized with %s orders', len(fresh))
        return batch

    def apply_event(self, payload):
        return self.apply_events([payload])

    def apply_events(self, payloads):
        """Fold a group of simultaneous events into the view as one batch."""
        batch = ReconcileBatch(initial=not self.is_live)
        for payload in payloads:
            self._apply(batch, payload)
        return batch

    def _apply(self, batch, payload):
        order_id = payload.get('order_id')
        if order_id is None:
            return
        incoming = LiveOrder.from_event(payload)
        current = self._view.get(order_id)
        if current is not None and current.newer_than(incoming):
            logger.debug('Dropping stale %s for order %s', payload.get('event_type'), order_id)
            return

        if payload.get('event_type') == EVENT_ORDER_CREATED:
            is_new = order_id not in self._known
            if current is None:
                self._view[order_id] = incoming
            else:
                current.apply(payload)
            self._observe(batch, self._view[order_id], payload.get('actor_name'))
            if is_new:
                batch.created.append(self._view[order_id])
            return

        if current is None:
            current = self._view[order_id] = incoming
        else:
            current.apply(payload)
        if payload.get('event_type') != EVENT_PAYMENT_CHANGED:
            self._observe(batch, current, payload.get('actor_name'))

    def record_resync_failure(self):
        """Count a failed snapshot fetch. Returns True once the view should be flagged out of date."""
        self.resync_failures += 1
        logger.warning('Live resync failed (%s/%s)', self.resync_failures, self.failure_threshold)
        return self.stale
