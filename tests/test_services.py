from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.utils import timezone

from core import lifecycle, services
from core.exceptions import InvalidPaymentStatus, InvalidTransition, OrderValidationError
from core.models import ActivityLog, Order, OrderChannel, OrderItem, OrderStatusChange


@pytest.mark.django_db
class TestCreateOrder:

    def test_totals_include_tax_and_discount(self, restaurant, waiter, burger, fries):
        restaurant.tax_percent = Decimal('10')
        restaurant.save()
        order = services.create_order(
            restaurant,
            [{'menu_item_id': burger.id, 'quantity': 2}, {'menu_item_id': fries.id}],
            employee=waiter,
            discount='3',
        )
        assert order.subtotal == Decimal('25.00')
        assert order.tax == Decimal('2.50')
        assert order.discount == Decimal('3.00')
        assert order.total == Decimal('24.50')
        assert order.status == 'pending'
        assert order.completed_at is None

    def test_default_tax_applies_when_restaurant_has_none(self, restaurant, waiter, burger):
        restaurant.tax_percent = None
        restaurant.save()
        order = services.create_order(restaurant, [{'menu_item_id': burger.id}], employee=waiter)
        assert order.tax_percent == Decimal('10')
        assert order.total == Decimal('11.00')

    def test_lines_snapshot_name_price_and_cost(self, make_order, burger):
        order = make_order(quantity=2)
        burger.name = 'Big Burger'
        burger.price = Decimal('99')
        burger.cost_of_goods = Decimal('50')
        burger.save()
        line = OrderItem.objects.get(order=order)
        assert line.name == 'Burger'
        assert line.unit_price == Decimal('10.00')
        assert line.total_price == Decimal('20.00')
        assert line.cost_of_goods == Decimal('4.00')

    def test_creation_is_logged(self, make_order, waiter):
        order = make_order()
        log = ActivityLog.objects.get(action='CREATE_ORDER')
        assert log.user == waiter
        assert order.order_number in log.details

    @pytest.mark.parametrize('items', [None, [], [{}], [{'menu_item_id': 'abc'}], [{'menu_item_id': 99999}]])
    def test_invalid_items_are_rejected(self, restaurant, items):
        with pytest.raises(OrderValidationError):
            services.create_order(restaurant, items)
        assert Order.objects.count() == 0

    def test_unavailable_item_is_rejected(self, restaurant, burger):
        burger.is_available = False
        burger.save()
        with pytest.raises(OrderValidationError):
            services.create_order(restaurant, [{'menu_item_id': burger.id}])

    def test_zero_quantity_is_rejected(self, restaurant, burger):
        with pytest.raises(OrderValidationError):
            services.create_order(restaurant, [{'menu_item_id': burger.id, 'quantity': 0}])

    def test_unknown_channel_and_payment_method_are_rejected(self, restaurant, burger):
        items = [{'menu_item_id': burger.id}]
        with pytest.raises(OrderValidationError):
            services.create_order(restaurant, items, channel='drone')
        with pytest.raises(OrderValidationError):
            services.create_order(restaurant, items, payment_method='barter')

    def test_discount_larger_than_total_is_rejected(self, restaurant, burger):
        with pytest.raises(OrderValidationError):
            services.create_order(restaurant, [{'menu_item_id': burger.id}], discount=50)


@pytest.mark.django_db
class TestTransitions:

    def test_dine_in_walks_its_path_and_records_history(self, make_order, waiter):
        order = make_order()
        for status in ('preparing', 'ready', 'served'):
            services.transition_order(order.pk, status, actor=waiter)
        order.refresh_from_db()
        assert order.status == 'served'
        history = list(
            OrderStatusChange.objects.filter(order=order).order_by('id').values_list('to_status', flat=True)
        )
        assert lifecycle.is_valid_history(order.channel, ['pending'] + history)
        assert ActivityLog.objects.filter(action='UPDATE_ORDER_STATUS').count() == 3

    def test_invalid_transition_leaves_order_unchanged(self, make_order):
        order = make_order()
        with pytest.raises(InvalidTransition):
            services.transition_order(order.pk, 'served')
        order.refresh_from_db()
        assert order.status == 'pending'
        assert not OrderStatusChange.objects.filter(order=order).exists()

    def test_cancelled_is_never_exited(self, make_order):
        order = make_order()
        services.transition_order(order.pk, 'cancelled')
        with pytest.raises(InvalidTransition):
            services.transition_order(order.pk, 'preparing')
        order.refresh_from_db()
        assert order.status == 'cancelled'

    def test_completed_at_set_once_on_terminal(self, make_order):
        order = make_order(channel=OrderChannel.TAKEAWAY)
        services.transition_order(order.pk, 'preparing')
        order.refresh_from_db()
        assert order.completed_at is None
        services.transition_order(order.pk, 'ready')
        services.transition_order(order.pk, 'completed')
        order.refresh_from_db()
        assert order.completed_at is not None

    def test_completed_at_cannot_be_rewritten(self, make_order):
        order = make_order()
        services.transition_order(order.pk, 'cancelled')
        order.refresh_from_db()
        stamped = order.completed_at
        order.completed_at = timezone.now() + timedelta(days=1)
        order.notes = 'late edit'
        order.save()
        order.refresh_from_db()
        assert order.completed_at == stamped
        assert order.notes == 'late edit'

    def test_terminal_status_cannot_be_changed_by_direct_save(self, make_order):
        order = make_order()
        services.transition_order(order.pk, 'cancelled')
        order.refresh_from_db()
        order.status = 'pending'
        with pytest.raises(InvalidTransition):
            order.save()


@pytest.mark.django_db
class TestPaymentStatus:

    def test_paid_then_refunded(self, make_order):
        order = make_order()
        assert services.set_payment_status(order.pk, 'paid').payment_status == 'paid'
        assert services.set_payment_status(order.pk, 'refunded').payment_status == 'refunded'

    def test_payment_is_independent_of_lifecycle(self, make_order):
        order = make_order()
        services.set_payment_status(order.pk, 'paid')
        order.refresh_from_db()
        assert order.status == 'pending'

    def test_refund_requires_paid(self, make_order):
        order = make_order()
        with pytest.raises(InvalidPaymentStatus):
            services.set_payment_status(order.pk, 'refunded')

    def test_cancelled_order_cannot_be_paid(self, make_order):
        order = make_order()
        services.transition_order(order.pk, 'cancelled')
        with pytest.raises(InvalidPaymentStatus):
            services.set_payment_status(order.pk, 'paid')

    def test_unknown_payment_status(self, make_order):
        order = make_order()
        with pytest.raises(InvalidPaymentStatus):
            services.set_payment_status(order.pk, 'maybe')


@pytest.mark.django_db
class TestPublishOnCommit:

    def test_events_published_after_commit(self, make_order, django_capture_on_commit_callbacks):
        with mock.patch('core.services.publish_order_event') as publish:
            with django_capture_on_commit_callbacks(execute=True):
                order = make_order()
            with django_capture_on_commit_callbacks(execute=True):
                services.transition_order(order.pk, 'preparing')
        event_types = [c.args[1] for c in publish.call_args_list]
        assert event_types == ['order_created', 'order_status_changed']
        assert publish.call_args_list[1].kwargs['previous_status'] == 'pending'

    def test_rejected_transition_publishes_nothing(self, make_order, django_capture_on_commit_callbacks):
        order = make_order()
        with mock.patch('core.services.publish_order_event') as publish:
            with django_capture_on_commit_callbacks(execute=True) as callbacks:
                with pytest.raises(InvalidTransition):
                    services.transition_order(order.pk, 'served')
        assert callbacks == []
        publish.assert_not_called()
