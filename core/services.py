"""
Order service layer: creation, lifecycle transitions and payment status.
Views, the public endpoint and tests go through these so totals, history,
activity logs and live events stay consistent.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone

from core import lifecycle, numbering
from core.constants import (
    ACTION_CREATE_ORDER,
    ACTION_UPDATE_ORDER_STATUS,
    ACTION_UPDATE_PAYMENT_STATUS,
    EVENT_ORDER_CREATED,
    EVENT_PAYMENT_CHANGED,
    EVENT_STATUS_CHANGED,
    pos_setting,
    to_money,
)
from core.exceptions import InvalidPaymentStatus, OrderValidationError
from core.models import (
    ActivityLog,
    MenuItem,
    Order,
    OrderChannel,
    OrderItem,
    OrderStatus,
    OrderStatusChange,
    PaymentMethod,
    PaymentStatus,
)
from core.order_events import publish_order_event

logger = logging.getLogger(__name__)


def tax_percent_for(restaurant):
    if restaurant.tax_percent is not None:
        return Decimal(restaurant.tax_percent)
    return Decimal(str(pos_setting('POS_DEFAULT_TAX_PERCENT')))


def compute_totals(line_totals, tax_percent, discount):
    """Return (subtotal, tax, total) with total = subtotal + tax - discount."""
    subtotal = to_money(sum(line_totals, Decimal('0')))
    tax = to_money(subtotal * Decimal(tax_percent) / Decimal('100'))
    total = to_money(subtotal + tax - to_money(discount))
    return subtotal, tax, total


def _parse_lines(restaurant, items):
    """Validate raw item payloads against the restaurant menu. Returns list of (menu_item, qty, notes)."""
    if not items or not isinstance(items, (list, tuple)):
        raise OrderValidationError('Order must contain at least one item')
    ids = []
    for raw in items:
        if not isinstance(raw, dict) or raw.get('menu_item_id') in (None, ''):
            raise OrderValidationError('Each item needs a menu_item_id')
        try:
            ids.append(int(raw['menu_item_id']))
        except (TypeError, ValueError):
            raise OrderValidationError(f"Invalid menu_item_id: {raw.get('menu_item_id')!r}")
    menu = {
        m.id: m for m in MenuItem.objects.filter(
            restaurant=restaurant, id__in=ids, is_active=True
        )
    }
    lines = []
    for raw, menu_item_id in zip(items, ids):
        menu_item = menu.get(menu_item_id)
        if menu_item is None:
            raise OrderValidationError(f'Menu item {menu_item_id} not found')
        if not menu_item.is_available:
            raise OrderValidationError(f'{menu_item.name} is currently unavailable')
        try:
            quantity = int(raw.get('quantity', 1))
        except (TypeError, ValueError):
            raise OrderValidationError(f'Invalid quantity for {menu_item.name}')
        if quantity < 1:
            raise OrderValidationError(f'Quantity for {menu_item.name} must be at least 1')
        lines.append((menu_item, quantity, (raw.get('special_instructions') or '').strip()))
    return lines


def create_order(
    restaurant,
    items,
    channel=OrderChannel.DINE_IN,
    employee=None,
    payment_method='',
    discount=0,
    customer_name='',
    customer_phone='',
    table_number='',
    notes='',
    ip_address='',
):
    """
    Create an order in pending with its line items.

    Prices, names and cost of goods are copied from the menu at this moment so later
    menu edits never change the order or its profit figures.
    Raises OrderValidationError or OrderCreationFailed.
    """
    if channel not in OrderChannel.values:
        raise OrderValidationError(f'Invalid order channel: {channel}')
    if payment_method and payment_method not in PaymentMethod.values:
        raise OrderValidationError(f'Invalid payment method: {payment_method}')
    try:
        discount = to_money(discount)
    except (InvalidOperation, ValueError):
        raise OrderValidationError('Invalid discount')
    if discount < 0:
        raise OrderValidationError('Discount cannot be negative')

    lines = _parse_lines(restaurant, items)
    tax_percent = tax_percent_for(restaurant)
    line_totals = [to_money(m.price * q) for m, q, _ in lines]
    subtotal, tax, total = compute_totals(line_totals, tax_percent, discount)
    if total < 0:
        raise OrderValidationError('Discount exceeds order total')

    with transaction.atomic():
        order = numbering.allocate({
            'restaurant': restaurant,
            'employee': employee,
            'channel': channel,
            'payment_method': payment_method or '',
            'customer_name': customer_name or '',
            'customer_phone': customer_phone or '',
            'table_number': table_number or '',
            'notes': notes or '',
            'subtotal': subtotal,
            'tax_percent': tax_percent,
            'tax': tax,
            'discount': discount,
            'total': total,
        })
        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                menu_item=menu_item,
                position=position,
                name=menu_item.name,
                quantity=quantity,
                unit_price=menu_item.price,
                total_price=line_total,
                cost_of_goods=menu_item.cost_of_goods,
                special_instructions=instructions,
            )
            for position, ((menu_item, quantity, instructions), line_total)
            in enumerate(zip(lines, line_totals))
        ])
        ActivityLog.objects.create(
            user=employee,
            action=ACTION_CREATE_ORDER,
            details=f'Created order: {order.order_number}',
            ip_address=ip_address or '',
        )
        transaction.on_commit(
            lambda: publish_order_event(order, EVENT_ORDER_CREATED, actor=employee)
        )
    logger.info('Order %s created (%s, total %s)', order.order_number, channel, total)
    return order


def transition_order(order_id, target, actor=None, ip_address=''):
    """
    Move an order one step along its channel path (or to cancelled).
    Stamps completed_at once on entering a terminal status.
    Raises InvalidTransition (order unchanged) or Order.DoesNotExist.
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)
        previous = order.status
        lifecycle.check_transition(order.channel, previous, target)
        order.status = target
        update_fields = ['status', 'updated_at']
        if lifecycle.is_terminal(target) and order.completed_at is None:
            order.completed_at = timezone.now()
            update_fields.append('completed_at')
        order.save(update_fields=update_fields)
        OrderStatusChange.objects.create(
            order=order,
            from_status=previous,
            to_status=target,
            changed_by=actor,
        )
        ActivityLog.objects.create(
            user=actor,
            action=ACTION_UPDATE_ORDER_STATUS,
            details=f'Changed order {order.order_number} status from {previous} to {target}',
            ip_address=ip_address or '',
        )
        transaction.on_commit(
            lambda: publish_order_event(order, EVENT_STATUS_CHANGED, previous_status=previous, actor=actor)
        )
    logger.info('Order %s: %s -> %s', order.order_number, previous, target)
    return order


def is_total_finalized(order):
    """Total is final once the order has line items summing to its subtotal, a positive total, and is not cancelled."""
    if order.status == OrderStatus.CANCELLED:
        return False
    if order.total is None or order.total <= 0:
        return False
    line_totals = list(order.items.values_list('total_price', flat=True))
    if not line_totals:
        return False
    return to_money(sum(line_totals, Decimal('0'))) == to_money(order.subtotal)


def set_payment_status(order_id, payment_status, actor=None, ip_address=''):
    """
    Change payment status independently of the lifecycle.
    paid requires a finalized total; refunded only follows paid.
    """
    if payment_status not in PaymentStatus.values:
        raise InvalidPaymentStatus(f'Invalid payment status: {payment_status}')
    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)
        previous = order.payment_status
        if previous == payment_status:
            return order
        if payment_status == PaymentStatus.PAID and not is_total_finalized(order):
            raise InvalidPaymentStatus(f'Order {order.order_number} total is not finalized')
        if payment_status == PaymentStatus.REFUNDED and previous != PaymentStatus.PAID:
            raise InvalidPaymentStatus(f'Order {order.order_number} was not paid')
        order.payment_status = payment_status
        order.save(update_fields=['payment_status', 'updated_at'])
        ActivityLog.objects.create(
            user=actor,
            action=ACTION_UPDATE_PAYMENT_STATUS,
            details=f'Changed order {order.order_number} payment status to {payment_status}',
            ip_address=ip_address or '',
        )
        transaction.on_commit(
            lambda: publish_order_event(order, EVENT_PAYMENT_CHANGED, actor=actor)
        )
    return order
