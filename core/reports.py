"""
Read contract of the aggregation engine for views, the live feed and commands.
Loads OrderFacts from the store and shapes report payloads. Everything here is
read-only and safe to re-run; a concurrently committed order may or may not be seen.
"""
import logging
from decimal import Decimal

from core.aggregation import (
    IncrementalAggregator,
    OrderFacts,
    business_day,
    business_day_bounds,
    business_hour,
    business_month_bounds,
    business_today,
    compute_aggregates,
    diff_snapshots,
    margin_percent,
)
from core.constants import to_money
from core.lifecycle import BUCKETS
from core.models import Order, PaymentMethod

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


def order_log_queryset(restaurant_ids, start=None, end=None, employee_id=None, order_id=None):
    qs = (
        Order.objects.filter(restaurant_id__in=restaurant_ids)
        .select_related('employee')
        .prefetch_related('items__menu_item')
        .order_by('created_at', 'id')
    )
    if start is not None:
        qs = qs.filter(created_at__gte=start)
    if end is not None:
        qs = qs.filter(created_at__lt=end)
    if employee_id is not None:
        qs = qs.filter(employee_id=employee_id)
    if order_id is not None:
        qs = qs.filter(pk=order_id)
    return qs


def load_order_log(restaurant_ids, start=None, end=None, employee_id=None, order_id=None):
    """Authoritative order log as OrderFacts, oldest first."""
    return [
        OrderFacts.from_order(o)
        for o in order_log_queryset(restaurant_ids, start, end, employee_id, order_id)
    ]


def _range(date_from, date_to):
    start = business_day_bounds(date_from)[0] if date_from else None
    end = business_day_bounds(date_to)[1] if date_to else None
    return start, end


def dashboard_summary(restaurant_ids, day=None, employee_id=None):
    """Status distribution, revenue and top items for day, plus month-to-date revenue."""
    day = day or business_today()
    start, end = business_month_bounds(day)
    snap = compute_aggregates(load_order_log(restaurant_ids, start, end, employee_id))
    today = snap.day(day)
    return {
        'date': day.isoformat(),
        'today': {
            'total_orders': today.order_count,
            'revenue': str(to_money(today.revenue)),
            'status_counts': dict(today.status_counts),
        },
        'month': day.strftime('%Y-%m'),
        'month_revenue': str(to_money(snap.month(day).revenue)),
        'top_items': today.top_items(),
    }


def income_analysis(restaurant_ids, day=None, employee_id=None):
    """Gross, cost, net and margin for the business day and its month."""
    day = day or business_today()
    start, end = business_month_bounds(day)
    snap = compute_aggregates(load_order_log(restaurant_ids, start, end, employee_id))

    def _figures(f):
        return {
            'gross': str(to_money(f.revenue)),
            'cost': str(to_money(f.cost)),
            'net': str(to_money(f.profit)),
            'profit_margin': str(f.margin),
        }

    return {
        'daily': _figures(snap.day(day)),
        'monthly': _figures(snap.month(day)),
        'date': day.isoformat(),
        'month': day.strftime('%Y-%m'),
    }


def profit_breakdown(restaurant_ids, day=None, order_id=None, employee_id=None):
    """Per fulfilled order: items with cost/profit/margin, order totals. Newest first."""
    start, end = business_day_bounds(day) if day else (None, None)
    rows = []
    for facts in reversed(load_order_log(restaurant_ids, start, end, employee_id, order_id)):
        if not facts.fulfilled:
            continue
        items = [
            {
                'menu_item_id': line.menu_item_id,
                'name': line.name,
                'quantity': line.quantity,
                'unit_price': str(line.unit_price),
                'total_price': str(line.total_price),
                'cost_of_goods': str(line.cost_of_goods),
                'item_cost': str(to_money(line.cost)),
                'item_profit': str(to_money(line.profit)),
                'profit_margin': str(margin_percent(line.profit, line.total_price)),
            }
            for line in facts.lines
        ]
        rows.append({
            'order_id': facts.order_id,
            'order_number': facts.order_number,
            'order_total': str(facts.total),
            'created_at': facts.created_at.isoformat(),
            'items': items,
            'total_cost': str(to_money(facts.cost)),
            'total_profit': str(to_money(facts.profit)),
            'profit_margin': str(margin_percent(facts.profit, facts.total)),
        })
    return rows


def daily_sales(restaurant_ids, day, employee_id=None):
    """Served-only totals for one business day, split by payment method."""
    start, end = business_day_bounds(day)
    orders = load_order_log(restaurant_ids, start, end, employee_id)
    served = [f for f in orders if f.fulfilled]
    revenue = sum((f.total for f in served), ZERO)
    report = {
        'date': day.isoformat(),
        'total_orders': len(orders),
        'total_revenue': str(to_money(revenue)),
        'subtotal': str(to_money(sum((f.subtotal for f in served), ZERO))),
        'total_tax': str(to_money(sum((f.tax for f in served), ZERO))),
        'total_discount': str(to_money(sum((f.discount for f in served), ZERO))),
        'average_order_value': str(to_money(revenue / len(served)) if served else to_money(0)),
    }
    for method in PaymentMethod.values:
        paid_with = [f for f in served if f.payment_method == method]
        report[f'{method}_orders'] = len(paid_with)
        report[f'{method}_revenue'] = str(to_money(sum((f.total for f in paid_with), ZERO)))
    return report


def hourly_sales(restaurant_ids, day, employee_id=None):
    """24 business-hour buckets: order count (all) and revenue (served)."""
    start, end = business_day_bounds(day)
    hours = [{'hour': f'{h:02d}', 'order_count': 0, 'revenue': ZERO} for h in range(24)]
    for facts in load_order_log(restaurant_ids, start, end, employee_id):
        slot = hours[business_hour(facts.created_at)]
        slot['order_count'] += 1
        if facts.fulfilled:
            slot['revenue'] += facts.total
    for slot in hours:
        slot['revenue'] = str(to_money(slot['revenue']))
    return hours


def channel_analysis(restaurant_ids, date_from=None, date_to=None, employee_id=None):
    """Per channel: order count, served revenue and average served order value."""
    start, end = _range(date_from, date_to)
    per_channel = {}
    for facts in load_order_log(restaurant_ids, start, end, employee_id):
        row = per_channel.setdefault(facts.channel, {'count': 0, 'served': 0, 'revenue': ZERO})
        row['count'] += 1
        if facts.fulfilled:
            row['served'] += 1
            row['revenue'] += facts.total
    out = [
        {
            'channel': channel,
            'order_count': row['count'],
            'revenue': str(to_money(row['revenue'])),
            'average_order_value': str(to_money(row['revenue'] / row['served']) if row['served'] else to_money(0)),
        }
        for channel, row in per_channel.items()
    ]
    out.sort(key=lambda r: Decimal(r['revenue']), reverse=True)
    return out


def employee_performance(restaurant_ids, date_from=None, date_to=None):
    """Per staff member: orders taken, fulfilled, cancelled, served revenue. Public orders are skipped."""
    start, end = _range(date_from, date_to)
    per_employee = {}
    for facts in load_order_log(restaurant_ids, start, end):
        if facts.employee_id is None:
            continue
        row = per_employee.setdefault(facts.employee_id, {
            'employee_id': facts.employee_id,
            'employee_name': facts.employee_name,
            'total_orders': 0,
            'completed_orders': 0,
            'cancelled_orders': 0,
            'revenue': ZERO,
        })
        row['total_orders'] += 1
        if facts.fulfilled:
            row['completed_orders'] += 1
            row['revenue'] += facts.total
        elif facts.bucket == 'cancelled':
            row['cancelled_orders'] += 1
    out = []
    for row in per_employee.values():
        done = row['completed_orders']
        row['average_order_value'] = str(to_money(row['revenue'] / done) if done else to_money(0))
        row['revenue'] = str(to_money(row['revenue']))
        out.append(row)
    out.sort(key=lambda r: Decimal(r['revenue']), reverse=True)
    return out


def status_counts_for(orders_or_facts, day=None):
    """Bucket counts over facts (optionally one business day). Sum equals the number of orders counted."""
    counts = {b: 0 for b in BUCKETS}
    for facts in orders_or_facts:
        if day is not None and business_day(facts.created_at) != day:
            continue
        counts[facts.bucket] += 1
    return counts


def verify_aggregates(restaurant_ids, date_from=None, date_to=None, tolerance=None):
    """
    Replay the log through the incremental path (creation in pending, then the current
    status) and compare with a full recompute. Returns the list of differences.
    """
    start, end = _range(date_from, date_to)
    orders = load_order_log(restaurant_ids, start, end)
    incremental = IncrementalAggregator()
    for facts in orders:
        incremental.apply(facts.with_status('pending'))
        incremental.apply_status(facts.order_id, facts.status)
    diffs = diff_snapshots(incremental.snapshot, compute_aggregates(orders), tolerance)
    if diffs:
        logger.warning('Aggregate verification found %s difference(s)', len(diffs))
    return diffs
