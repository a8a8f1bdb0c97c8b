"""
Full snapshot of a restaurant's live orders, used on connect, on sync and by the
HTTP resync endpoint. Window: everything created this business day plus any order
still in progress, newest first, capped at POS_LIVE_SNAPSHOT_LIMIT.
"""
from django.db.models import Q
from django.utils import timezone

from core.aggregation import business_day_bounds, business_today
from core.constants import pos_setting
from core.lifecycle import TERMINAL_STATUSES
from core.models import Order
from core.reports import load_order_log
from core.utils import order_to_dict


def load_live_snapshot(restaurant_id, limit=None):
    """Return {'taken_at', 'date', 'orders'} for the restaurant's live view."""
    if limit is None:
        limit = pos_setting('POS_LIVE_SNAPSHOT_LIMIT')
    # taken before the read so later events are kept by the reconciler
    taken_at = timezone.now()
    day = business_today(taken_at)
    start, end = business_day_bounds(day)
    qs = (
        Order.objects.filter(restaurant_id=restaurant_id)
        .filter(Q(created_at__gte=start, created_at__lt=end) | ~Q(status__in=TERMINAL_STATUSES))
        .select_related('employee')
        .prefetch_related('items')
        .order_by('-created_at', '-id')[:limit]
    )
    return {
        'taken_at': taken_at.isoformat(),
        'date': day.isoformat(),
        'orders': [order_to_dict(o, include_items=True) for o in qs],
    }


def load_today_facts(restaurant_id, day=None):
    """Today's order log for seeding the live dashboard aggregator."""
    day = day or business_today()
    start, end = business_day_bounds(day)
    return load_order_log([restaurant_id], start, end)
