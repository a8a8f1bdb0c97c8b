"""
Broadcast order creation / status changes to the restaurant's live subscribers.
Call through transaction.on_commit so only committed state changes are published.
Delivery is best-effort: no queue, no replay. A subscriber that misses events
recovers by fetching a fresh snapshot.
"""
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

from core.constants import EVENT_ORDER_CREATED

logger = logging.getLogger(__name__)


def restaurant_group(restaurant_id):
    """Channel layer group for one restaurant's live order feed."""
    return f'orders_restaurant_{restaurant_id}'


def build_order_event(order, event_type, previous_status=None, actor=None):
    """
    Event payload: eventType, orderId, orderNumber, status, total, channel, timestamp,
    plus attribution and, for creations, the full order with items.
    """
    from core.utils import order_to_dict

    payload = {
        'event_type': event_type,
        'order_id': order.id,
        'order_number': order.order_number,
        'status': order.status,
        'previous_status': previous_status,
        'payment_status': order.payment_status,
        'total': str(order.total),
        'channel': order.channel,
        'restaurant_id': order.restaurant_id,
        'created_at': order.created_at.isoformat() if order.created_at else None,
        'timestamp': (order.updated_at or timezone.now()).isoformat(),
        'actor_id': actor.pk if actor is not None else None,
        'actor_name': actor.display_name if actor is not None else None,
    }
    if event_type == EVENT_ORDER_CREATED:
        payload['order'] = order_to_dict(order, include_items=True)
    return payload


def publish_order_event(order, event_type, previous_status=None, actor=None):
    """
    Send the event to the restaurant group. Returns True if handed to the channel layer.
    Failures are logged and swallowed; the committed order is never affected.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.info('No channel layer configured; skipping %s for order %s', event_type, order.id)
        return False
    payload = build_order_event(order, event_type, previous_status=previous_status, actor=actor)
    try:
        async_to_sync(channel_layer.group_send)(
            restaurant_group(order.restaurant_id),
            {'type': 'order.event', 'payload': payload},
        )
    except Exception as e:
        logger.exception('Publishing %s for order %s failed: %s', event_type, order.id, e)
        return False
    return True
