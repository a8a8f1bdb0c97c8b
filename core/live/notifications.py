"""
Turns reconciler batches into short-lived notices for the order screen.

Two categories:
- transition: an order moved to a new status (never back to pending). At most one per
  batch; the first match wins and the rest of that batch is dropped.
- created: a new order arrived. One per new order.
Nothing is emitted for a batch observed before the reconciler went live, so the
initial snapshot never produces a burst of notices.
"""
import logging
from datetime import timedelta

from django.utils import timezone

from core.constants import pos_setting
from core.lifecycle import BUCKET_PENDING, normalize_status

logger = logging.getLogger(__name__)

KIND_TRANSITION = 'transition'
KIND_CREATED = 'created'


class Notice:
    __slots__ = ('kind', 'order_id', 'order_number', 'status', 'actor_name', 'created_at', 'expires_at')

    def __init__(self, kind, order_id, order_number, status, actor_name, created_at, ttl):
        self.kind = kind
        self.order_id = order_id
        self.order_number = order_number
        self.status = status
        self.actor_name = actor_name
        self.created_at = created_at
        self.expires_at = created_at + ttl

    @property
    def message(self):
        if self.kind == KIND_CREATED:
            text = f'New order {self.order_number}'
        else:
            text = f'Order {self.order_number} is now {self.status.replace("_", " ")}'
        if self.actor_name:
            text += f' by {self.actor_name}'
        return text

    def is_expired(self, now=None):
        return (now or timezone.now()) >= self.expires_at

    def to_dict(self):
        return {
            'kind': self.kind,
            'order_id': self.order_id,
            'order_number': self.order_number,
            'status': self.status,
            'actor_name': self.actor_name,
            'message': self.message,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
        }


def is_notifiable(transition):
    """prev known, status actually changed, and the new status is not pending."""
    return (
        transition.previous_status is not None
        and transition.previous_status != transition.status
        and normalize_status(transition.status) != BUCKET_PENDING
    )


class NotificationEmitter:

    def __init__(self, ttl_seconds=None):
        if ttl_seconds is None:
            ttl_seconds = pos_setting('POS_NOTICE_TTL_SECONDS')
        self.ttl = timedelta(seconds=float(ttl_seconds))
        self._active = []

    def process(self, batch, now=None):
        """Notices for one reconciler batch (possibly none)."""
        if batch.initial:
            return []
        now = now or timezone.now()
        notices = [
            Notice(KIND_CREATED, o.order_id, o.order_number, o.status,
                   o.data.get('employee_name'), now, self.ttl)
            for o in batch.created
        ]
        for transition in batch.transitions:
            if is_notifiable(transition):
                notices.append(Notice(
                    KIND_TRANSITION, transition.order_id, transition.order_number,
                    transition.status, transition.actor_name, now, self.ttl,
                ))
                break
        self._active.extend(notices)
        return notices

    def active(self, now=None):
        """Notices not yet expired; expired ones are dropped."""
        now = now or timezone.now()
        self._active = [n for n in self._active if not n.is_expired(now)]
        return list(self._active)
