"""
WebSocket for a restaurant's live order screen.
URL: /ws/orders/<restaurant_id>/?token=...

On connect the client gets a full snapshot; after that every published order event
is folded into a per-connection reconciler and forwarded, followed by any notice and
the refreshed dashboard figures. Send {"action": "sync"} to re-fetch the snapshot.

Messages sent: snapshot, order_event, notice, dashboard, stale, error.
"""
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.db import DatabaseError
from rest_framework.authtoken.models import Token

from core.aggregation import IncrementalAggregator, OrderFacts, business_today, reconcile
from core.constants import EVENT_ORDER_CREATED, EVENT_STATUS_CHANGED
from core.live.notifications import NotificationEmitter
from core.live.reconciler import LiveReconciler
from core.live.snapshot import load_live_snapshot, load_today_facts
from core.order_events import restaurant_group

logger = logging.getLogger(__name__)


def _get_user_from_token(token_key):
    """Resolve User from DRF Token. Returns (user, None) or (None, error)."""
    try:
        token = Token.objects.select_related('user').get(key=token_key)
    except Token.DoesNotExist:
        return None, 'Invalid token'
    if not token.user.is_active:
        return None, 'Invalid token'
    return token.user, None


@database_sync_to_async
def authenticate_for_restaurant(restaurant_id, token_key):
    """Resolve the token and check the restaurant is in the user's scope. Returns (user, error)."""
    from core.utils import get_user_restaurant_ids

    user, err = _get_user_from_token(token_key)
    if err:
        return None, err
    if restaurant_id not in get_user_restaurant_ids(user):
        return None, 'Forbidden'
    return user, None


fetch_snapshot = database_sync_to_async(load_live_snapshot)
fetch_today_facts = database_sync_to_async(load_today_facts)


class OrdersConsumer(AsyncJsonWebsocketConsumer):

    async def connect(self):
        self.restaurant_id = self.scope['url_route']['kwargs'].get('restaurant_id')
        if not self.restaurant_id:
            await self.close(code=4000)
            return
        params = parse_qs(self.scope.get('query_string', b'').decode())
        token = (params.get('token') or [None])[0]
        if not token:
            await self.close(code=4001)
            return
        user, err = await authenticate_for_restaurant(int(self.restaurant_id), token)
        if err:
            logger.info('Live feed for restaurant %s refused: %s', self.restaurant_id, err)
            await self.close(code=4001 if err == 'Invalid token' else 4003)
            return
        self.user = user
        self.reconciler = LiveReconciler()
        self.emitter = NotificationEmitter()
        self.aggregator = None
        self.group_name = restaurant_group(self.restaurant_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.resync()

    async def disconnect(self, close_code):
        if hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        action = content.get('action') if isinstance(content, dict) else None
        if action == 'sync':
            await self.resync()
        else:
            await self.send_json({'type': 'error', 'error': f'Unknown action: {action}'})

    async def resync(self):
        """Fetch a fresh snapshot and replace the view. Returns False if the fetch failed."""
        try:
            snapshot = await fetch_snapshot(self.restaurant_id)
            facts = await fetch_today_facts(self.restaurant_id)
        except DatabaseError as e:
            logger.warning('Snapshot for restaurant %s failed: %s', self.restaurant_id, e)
            if self.reconciler.record_resync_failure():
                await self.send_json({
                    'type': 'stale',
                    'stale': True,
                    'failures': self.reconciler.resync_failures,
                })
            return False

        batch = self.reconciler.merge_snapshot(snapshot['orders'], snapshot['taken_at'])
        if self.aggregator is None:
            self.aggregator = IncrementalAggregator(facts)
        else:
            reconcile(self.aggregator, facts)
        await self.send_json({
            'type': 'snapshot',
            'state': self.reconciler.state.value,
            'taken_at': snapshot['taken_at'],
            'orders': self.reconciler.to_list(),
            'status_counts': self.reconciler.status_counts(),
        })
        await self._send_notices(self.emitter.process(batch))
        await self._send_dashboard()
        return True

    async def order_event(self, event):
        """Handle broadcast from core.order_events.publish_order_event."""
        payload = event.get('payload', {})
        batch = self.reconciler.apply_event(payload)
        await self.send_json({'type': 'order_event', 'event': payload})
        self._aggregate(payload)
        await self._send_notices(self.emitter.process(batch))
        await self._send_dashboard()

    def _aggregate(self, payload):
        if self.aggregator is None:
            return
        event_type = payload.get('event_type')
        if event_type == EVENT_ORDER_CREATED and payload.get('order'):
            facts = OrderFacts.from_dict(payload['order'])
            if facts.day == business_today():
                self.aggregator.apply(facts)
        elif event_type == EVENT_STATUS_CHANGED:
            self.aggregator.apply_status(payload.get('order_id'), payload.get('status'))

    async def _send_notices(self, notices):
        for notice in notices:
            await self.send_json({'type': 'notice', 'notice': notice.to_dict()})

    async def _send_dashboard(self):
        if self.aggregator is None:
            return
        day = business_today()
        await self.send_json({
            'type': 'dashboard',
            'date': day.isoformat(),
            'figures': self.aggregator.snapshot.day(day).to_dict(),
        })
