"""Shared constants and POS settings lookup."""
from decimal import Decimal

from django.conf import settings

POS_DEFAULTS = {
    'POS_ORDER_NUMBER_PREFIX': 'ORD',
    'POS_ORDER_NUMBER_WIDTH': 6,
    'POS_PLACEHOLDER_PREFIX': 'TMP',
    'POS_PLACEHOLDER_RETRIES': 3,
    'POS_BUSINESS_DAY_UTC_OFFSET_HOURS': 8,
    'POS_DEFAULT_TAX_PERCENT': Decimal('10'),
    'POS_TOP_ITEMS_LIMIT': 5,
    'POS_AGGREGATION_TOLERANCE': Decimal('0.01'),
    'POS_NOTICE_TTL_SECONDS': 1.5,
    'POS_RESYNC_FAILURE_THRESHOLD': 3,
    'POS_LIVE_SNAPSHOT_LIMIT': 200,
}

MONEY_PLACES = Decimal('0.01')

# Activity log actions
ACTION_CREATE_ORDER = 'CREATE_ORDER'
ACTION_UPDATE_ORDER_STATUS = 'UPDATE_ORDER_STATUS'
ACTION_UPDATE_PAYMENT_STATUS = 'UPDATE_PAYMENT_STATUS'
ACTION_RECONCILE_ORDER_NUMBER = 'RECONCILE_ORDER_NUMBER'

# Published event types
EVENT_ORDER_CREATED = 'order_created'
EVENT_STATUS_CHANGED = 'order_status_changed'
EVENT_PAYMENT_CHANGED = 'order_payment_changed'


def pos_setting(name):
    """Return settings.<name>, falling back to the built-in default."""
    return getattr(settings, name, POS_DEFAULTS.get(name))


def to_money(value) -> Decimal:
    """Quantize to 2 decimal places; None/'' become 0.00."""
    if value is None or value == '':
        return Decimal('0.00')
    return Decimal(str(value)).quantize(MONEY_PLACES)
