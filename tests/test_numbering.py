import threading
from unittest import mock

import pytest
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, connection

from core import numbering
from core.aggregation import business_day, compute_aggregates
from core.exceptions import OrderCreationFailed
from core.models import ActivityLog, NumberingIssue, Order
from core.reports import load_order_log
from core.services import create_order, transition_order


def test_final_number_is_prefix_plus_zero_padded_id():
    assert numbering.final_number(42) == 'ORD000042'
    assert numbering.final_number(1234567) == 'ORD1234567'


def test_wider_pad_keeps_numbers_sorting_lexically(settings):
    assert numbering.final_number(1000000) < numbering.final_number(999999)
    settings.POS_ORDER_NUMBER_WIDTH = 8
    assert numbering.final_number(999999) < numbering.final_number(1000000)


def test_placeholder_numbers_are_recognised():
    placeholder = numbering.placeholder_number()
    assert numbering.is_placeholder(placeholder)
    assert not numbering.is_placeholder('ORD000001')
    assert not numbering.is_placeholder('')


@pytest.mark.django_db
def test_sequential_orders_get_distinct_increasing_numbers(make_order):
    orders = [make_order() for _ in range(5)]
    numbers = [o.order_number for o in orders]
    assert len(set(numbers)) == 5
    assert numbers == sorted(numbers)
    for o in orders:
        o.refresh_from_db()
        assert o.order_number == numbering.final_number(o.pk)


@pytest.mark.django_db(transaction=True)
def test_concurrent_creations_get_distinct_numbers_in_id_order(restaurant, burger):
    workers = 8
    start = threading.Barrier(workers)
    errors = []

    def place_order():
        try:
            start.wait()
            create_order(restaurant, [{'menu_item_id': burger.id}])
        except Exception as e:
            errors.append(e)
        finally:
            connection.close()

    threads = [threading.Thread(target=place_order) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    orders = list(Order.objects.filter(restaurant=restaurant).order_by('pk'))
    numbers = [o.order_number for o in orders]
    assert len(orders) == workers
    assert len(set(numbers)) == workers
    assert numbers == [numbering.final_number(o.pk) for o in orders]
    assert numbers == sorted(numbers)


@pytest.mark.django_db
def test_placeholder_collision_is_retried(make_order):
    real_create = Order.objects.create
    calls = {'n': 0}

    def flaky_create(**kwargs):
        calls['n'] += 1
        if calls['n'] == 1:
            raise IntegrityError('UNIQUE constraint failed: core_order.order_number')
        return real_create(**kwargs)

    with mock.patch.object(Order.objects, 'create', side_effect=flaky_create):
        order = make_order()
    assert calls['n'] == 2
    assert order.order_number == numbering.final_number(order.pk)


@pytest.mark.django_db
def test_creation_fails_after_bounded_retries(make_order, settings):
    settings.POS_PLACEHOLDER_RETRIES = 2
    with mock.patch.object(Order.objects, 'create', side_effect=IntegrityError('dup')) as create:
        with pytest.raises(OrderCreationFailed):
            make_order()
    assert create.call_count == 2
    assert Order.objects.count() == 0


@pytest.mark.django_db
def test_rename_failure_keeps_placeholder_and_reports_once(make_order):
    with mock.patch('core.numbering._write_order_number', side_effect=DatabaseError('disk full')):
        order = make_order()

    order.refresh_from_db()
    assert numbering.is_placeholder(order.order_number)
    issues = NumberingIssue.objects.filter(order=order)
    assert issues.count() == 1
    assert issues.get().placeholder == order.order_number

    # still a normal order: it moves through its lifecycle and is aggregated
    for status in ('preparing', 'ready', 'served'):
        transition_order(order.pk, status)
    facts = load_order_log([order.restaurant_id])
    assert [f.order_number for f in facts] == [order.order_number]
    day = compute_aggregates(facts).day(business_day(order.created_at))
    assert day.revenue == order.total


@pytest.mark.django_db
def test_numbering_failure_is_recorded_once_per_order(make_order):
    with mock.patch('core.numbering._write_order_number', side_effect=DatabaseError('locked')):
        order = make_order()
        numbering.assign_final_number(order)
    assert NumberingIssue.objects.filter(order=order).count() == 1


@pytest.mark.django_db
def test_reconcile_command_renames_placeholders(make_order):
    with mock.patch('core.numbering._write_order_number', side_effect=DatabaseError('locked')):
        broken = make_order()
    healthy = make_order()

    call_command('reconcile_order_numbers', '--dry-run')
    broken.refresh_from_db()
    assert numbering.is_placeholder(broken.order_number)

    call_command('reconcile_order_numbers')
    broken.refresh_from_db()
    healthy.refresh_from_db()
    assert broken.order_number == numbering.final_number(broken.pk)
    assert healthy.order_number == numbering.final_number(healthy.pk)
    assert NumberingIssue.objects.get(order=broken).resolved_at is not None
    assert ActivityLog.objects.filter(action='RECONCILE_ORDER_NUMBER').count() == 1
