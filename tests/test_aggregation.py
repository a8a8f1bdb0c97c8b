from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from core import reports, services
from core.aggregation import (
    IncrementalAggregator,
    LineFacts,
    OrderFacts,
    business_day,
    business_day_bounds,
    check_consistency,
    compute_aggregates,
    margin_percent,
    reconcile,
)
from core.exceptions import AggregationInconsistency
from core.lifecycle import BUCKETS
from core.models import Order, OrderItem

T0 = datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc)  # 12:00 on 2026-03-10 at UTC+8
DAY = date(2026, 3, 10)


def facts(order_id, status, total, minutes=0, lines=()):
    return OrderFacts(
        order_id=order_id,
        order_number=f'ORD{order_id:06d}',
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
        total=total,
        lines=lines,
    )


def line(menu_item_id, quantity, total, cost, position=0, name=None):
    unit = Decimal(str(total)) / quantity
    return LineFacts(menu_item_id, name or f'item-{menu_item_id}', quantity, unit, total, cost, position)


class TestBusinessDay:

    def test_day_uses_fixed_utc_offset(self):
        assert business_day(datetime(2026, 3, 9, 16, 0, tzinfo=timezone.utc)) == date(2026, 3, 10)
        assert business_day(datetime(2026, 3, 9, 15, 59, tzinfo=timezone.utc)) == date(2026, 3, 9)

    def test_naive_timestamps_are_utc(self):
        assert business_day(datetime(2026, 3, 9, 16, 0)) == date(2026, 3, 10)

    def test_bounds_cover_one_offset_day(self):
        start, end = business_day_bounds(DAY)
        assert start == datetime(2026, 3, 9, 16, 0, tzinfo=timezone.utc)
        assert end - start == timedelta(days=1)

    def test_offset_is_configurable(self, settings):
        settings.POS_BUSINESS_DAY_UTC_OFFSET_HOURS = 0
        assert business_day(datetime(2026, 3, 9, 16, 0, tzinfo=timezone.utc)) == date(2026, 3, 9)


class TestFullRecompute:

    def test_only_served_bucket_counts_as_revenue(self):
        log = [
            facts(1, 'served', 100),
            facts(2, 'cancelled', 200),
            facts(3, 'preparing', 300),
            facts(4, 'delivered', 50),
            facts(5, 'completed', 25),
        ]
        day = compute_aggregates(log).day(DAY)
        assert day.revenue == Decimal('175')
        assert day.order_count == 5
        assert day.fulfilled_count == 3

    def test_bucket_counts_sum_to_order_count(self):
        raw = ['pending', 'preparing', 'ready', 'out_for_delivery', 'served', 'completed',
               'delivered', 'paid', 'cancelled', 'weird', '']
        log = [facts(i, s, 10, minutes=i) for i, s in enumerate(raw, start=1)]
        day = compute_aggregates(log).day(DAY)
        assert set(day.status_counts) == set(BUCKETS)
        assert sum(day.status_counts.values()) == day.order_count == len(raw)
        assert day.status_counts['ready'] == 2
        assert day.status_counts['served'] == 4
        assert day.status_counts['pending'] == 3

    def test_item_cost_profit_and_margin(self):
        order = facts(1, 'served', 20, lines=[line(7, 2, 20, 4)])
        item = order.lines[0]
        assert item.cost == Decimal('8.00')
        assert item.profit == Decimal('12.00')
        assert margin_percent(item.profit, item.total_price) == Decimal('60.00')
        day = compute_aggregates([order]).day(DAY)
        assert day.cost == Decimal('8.00')
        assert day.profit == Decimal('12.00')
        assert day.margin == Decimal('60.00')

    def test_margin_is_zero_without_revenue(self):
        assert margin_percent(Decimal('-5'), Decimal('0')) == Decimal('0.00')
        assert compute_aggregates([facts(1, 'pending', 10)]).day(DAY).margin == Decimal('0.00')

    def test_month_figures_group_by_business_month(self):
        late = OrderFacts(9, 'served', datetime(2026, 3, 31, 17, 0, tzinfo=timezone.utc), 40)
        snap = compute_aggregates([facts(1, 'served', 10), late])
        assert snap.month('2026-03').revenue == Decimal('10')
        assert snap.month('2026-04').revenue == Decimal('40')

    def test_top_items_rank_by_quantity_then_discovery(self):
        log = [
            facts(1, 'served', 30, minutes=0, lines=[line(10, 1, 10, 1, name='Tea'), line(20, 2, 20, 1, position=1, name='Cake')]),
            facts(2, 'served', 30, minutes=5, lines=[line(30, 2, 20, 1, name='Soup'), line(10, 1, 10, 1, position=1, name='Tea')]),
            facts(3, 'cancelled', 90, minutes=6, lines=[line(40, 9, 90, 1, name='Pie')]),
        ]
        top = compute_aggregates(log).day(DAY).top_items()
        assert [t['name'] for t in top] == ['Tea', 'Cake', 'Soup']
        assert [t['quantity'] for t in top] == [2, 2, 2]

    def test_top_items_limit(self, settings):
        settings.POS_TOP_ITEMS_LIMIT = 1
        log = [facts(1, 'served', 30, lines=[line(1, 3, 30, 1), line(2, 1, 10, 1, position=1)])]
        assert [t['menu_item_id'] for t in compute_aggregates(log).top_items(DAY)] == [1]


class TestIncremental:

    def _events(self):
        """Creation of three orders, then a stream of transitions."""
        created = [
            facts(1, 'pending', 100, lines=[line(1, 2, 100, 10)]),
            facts(2, 'pending', 200, minutes=1, lines=[line(2, 1, 200, 50)]),
            facts(3, 'pending', 300, minutes=2, lines=[line(1, 3, 300, 10)]),
        ]
        transitions = [
            (1, 'preparing'), (2, 'cancelled'), (1, 'ready'), (3, 'preparing'),
            (1, 'served'), (3, 'ready'), (3, 'served'),
        ]
        return created, transitions

    def test_incremental_matches_full_recompute(self):
        created, transitions = self._events()
        inc = IncrementalAggregator()
        latest = {}
        for f in created:
            inc.apply(f)
            latest[f.order_id] = f
        for order_id, status in transitions:
            inc.apply_status(order_id, status)
            latest[order_id] = latest[order_id].with_status(status)
            check_consistency(inc, latest.values())
        day = inc.snapshot.day(DAY)
        assert day.revenue == Decimal('400')
        assert day.status_counts == compute_aggregates(latest.values()).day(DAY).status_counts

    def test_replaying_the_same_facts_is_idempotent(self):
        created, _ = self._events()
        inc = IncrementalAggregator(created)
        for f in created:
            inc.apply(f)
        assert len(inc) == 3
        assert inc.snapshot.day(DAY).order_count == 3

    def test_withdrawing_served_order_removes_items(self):
        served = facts(1, 'served', 10, lines=[line(5, 1, 10, 1)])
        inc = IncrementalAggregator([served])
        assert inc.snapshot.day(DAY).top_items()
        inc.remove(1)
        assert inc.snapshot.days == {}

    def test_unknown_order_status_update_is_ignored(self):
        inc = IncrementalAggregator()
        assert inc.apply_status(42, 'served') is False

    def test_divergence_falls_back_to_full_recompute(self):
        log = [facts(1, 'served', 100), facts(2, 'served', 50, minutes=1)]
        inc = IncrementalAggregator(log[:1])
        with pytest.raises(AggregationInconsistency):
            check_consistency(inc, log)
        diffs = reconcile(inc, log)
        assert diffs
        assert inc.snapshot.day(DAY).revenue == Decimal('150')
        assert reconcile(inc, log) == []

    def test_differences_within_tolerance_are_accepted(self):
        inc = IncrementalAggregator([facts(1, 'served', Decimal('100.00'))])
        assert reconcile(inc, [facts(1, 'served', Decimal('100.01'))]) == []

    def test_drifted_item_quantities_fall_back_to_full_recompute(self):
        log = [facts(1, 'served', 20, lines=[line(7, 2, 20, 4, name='Burger')])]
        inc = IncrementalAggregator(log)
        inc.snapshot.days[DAY].items.clear()
        assert inc.snapshot.top_items(DAY) == []

        diffs = reconcile(inc, log)
        assert any('items' in d for d in diffs)
        assert inc.snapshot.top_items(DAY) == [{'menu_item_id': 7, 'name': 'Burger', 'quantity': 2}]
        assert inc.snapshot.top_items(DAY) == compute_aggregates(log).top_items(DAY)


def _set_created(order, when):
    Order.objects.filter(pk=order.pk).update(created_at=when)


@pytest.mark.django_db
class TestReportsFromStore:

    def test_revenue_counts_served_orders_only(self, make_order, burger, restaurant):
        burger.price = Decimal('100')
        burger.save()
        orders = [make_order(quantity=q) for q in (1, 2, 3)]
        for o in orders:
            _set_created(o, T0)
        services.transition_order(orders[1].pk, 'cancelled')

        def revenue():
            return reports.compute_aggregates(reports.load_order_log([restaurant.pk])).day(DAY).revenue

        assert revenue() == Decimal('0')
        for o in (orders[0], orders[2]):
            for status in ('preparing', 'ready', 'served'):
                services.transition_order(o.pk, status)
        assert revenue() == Decimal('400')

    def test_profit_uses_cost_captured_at_order_time(self, make_order, burger, restaurant):
        order = make_order(quantity=2)
        burger.cost_of_goods = Decimal('9')
        burger.save()
        for status in ('preparing', 'ready', 'served'):
            services.transition_order(order.pk, status)
        row = reports.profit_breakdown([restaurant.pk])[0]
        item = row['items'][0]
        assert item['item_cost'] == '8.00'
        assert item['item_profit'] == '12.00'
        assert item['profit_margin'] == '60.00'

    def test_legacy_line_without_cost_uses_current_menu_cost(self, make_order, burger, restaurant):
        order = make_order()
        OrderItem.objects.filter(order=order).update(cost_of_goods=None)
        burger.cost_of_goods = Decimal('7')
        burger.save()
        assert reports.load_order_log([restaurant.pk])[0].cost == Decimal('7.00')

    def test_status_counts_sum_to_order_count(self, make_order, restaurant):
        orders = [make_order() for _ in range(4)]
        services.transition_order(orders[0].pk, 'preparing')
        services.transition_order(orders[1].pk, 'cancelled')
        log = reports.load_order_log([restaurant.pk])
        counts = reports.status_counts_for(log)
        assert sum(counts.values()) == 4
        assert counts['pending'] == 2

    def test_daily_sales_split_by_payment_method(self, make_order, restaurant):
        cash = make_order(payment_method='cash')
        card = make_order(quantity=2, payment_method='card')
        make_order()
        for o in (cash, card):
            _set_created(o, T0)
            for status in ('preparing', 'ready', 'served'):
                services.transition_order(o.pk, status)
        report = reports.daily_sales([restaurant.pk], DAY)
        assert report['total_orders'] == 2
        assert report['total_revenue'] == '30.00'
        assert report['cash_orders'] == 1
        assert report['card_revenue'] == '20.00'
        assert report['average_order_value'] == '15.00'

    def test_hourly_sales_use_business_hours(self, make_order, restaurant):
        order = make_order()
        _set_created(order, T0)
        hours = reports.hourly_sales([restaurant.pk], DAY)
        assert len(hours) == 24
        assert hours[12]['order_count'] == 1
        assert hours[4]['order_count'] == 0

    def test_employee_performance_skips_public_orders(self, make_order, restaurant, waiter, other_waiter, burger):
        make_order()
        make_order(employee=other_waiter)
        services.create_order(restaurant, [{'menu_item_id': burger.id}], channel='online')
        rows = reports.employee_performance([restaurant.pk])
        assert {r['employee_id'] for r in rows} == {waiter.pk, other_waiter.pk}

    def test_verify_aggregates_command(self, make_order, restaurant):
        order = make_order()
        services.transition_order(order.pk, 'preparing')
        assert reports.verify_aggregates([restaurant.pk]) == []
        call_command('verify_aggregates', '--restaurant', str(restaurant.pk))
        with pytest.raises(CommandError):
            call_command('verify_aggregates', '--restaurant', '99999')
