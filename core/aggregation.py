"""
Revenue / cost / profit aggregation over the order log.

Two ways to the same figures:
- compute_aggregates(orders): single pass over the authoritative log.
- IncrementalAggregator: add/remove per-order contributions as orders and
  transitions arrive (live dashboards).
The incremental path is an optimization only; reconcile() compares it with a
full recompute and replaces it on divergence.

Orders are grouped by business day: created_at shifted by the fixed
POS_BUSINESS_DAY_UTC_OFFSET_HOURS, never by server or client local time.
Only orders in the served bucket contribute revenue, cost and top items.
"""
import logging
from datetime import datetime, time, timedelta, timezone as dt_timezone
from decimal import Decimal

from core.constants import MONEY_PLACES, pos_setting, to_money
from core.exceptions import AggregationInconsistency
from core.lifecycle import BUCKET_SERVED, empty_bucket_counts, normalize_status

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


# --- Business day ---

def business_tz():
    return dt_timezone(timedelta(hours=pos_setting('POS_BUSINESS_DAY_UTC_OFFSET_HOURS')))


def _aware(dt):
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt


def business_day(dt):
    """Reporting date of a timestamp (naive timestamps are taken as UTC)."""
    return _aware(dt).astimezone(business_tz()).date()


def business_month(dt):
    return business_day(dt).strftime('%Y-%m')


def business_hour(dt):
    return _aware(dt).astimezone(business_tz()).hour


def business_today(now=None):
    return business_day(now or datetime.now(dt_timezone.utc))


def business_day_bounds(day):
    """[start, end) of a business day as UTC datetimes."""
    start = datetime.combine(day, time.min, tzinfo=business_tz()).astimezone(dt_timezone.utc)
    return start, start + timedelta(days=1)


def business_month_bounds(day):
    """[start, end) of the business month containing day, as UTC datetimes."""
    first = day.replace(day=1)
    nxt = (first + timedelta(days=32)).replace(day=1)
    start, _ = business_day_bounds(first)
    end, _ = business_day_bounds(nxt)
    return start, end


def parse_timestamp(value):
    """ISO-8601 string or datetime -> aware datetime (naive taken as UTC). None stays None."""
    if value is None or value == '':
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    return _aware(value)


# --- Facts ---

class LineFacts:
    """One order line as the aggregation engine sees it."""
    __slots__ = ('menu_item_id', 'name', 'quantity', 'unit_price', 'total_price', 'cost_of_goods', 'position')

    def __init__(self, menu_item_id, name, quantity, unit_price, total_price, cost_of_goods, position=0):
        self.menu_item_id = menu_item_id
        self.name = name
        self.quantity = int(quantity)
        self.unit_price = to_money(unit_price)
        self.total_price = to_money(total_price)
        self.cost_of_goods = to_money(cost_of_goods)
        self.position = position

    @property
    def cost(self):
        return self.cost_of_goods * self.quantity

    @property
    def profit(self):
        return self.total_price - self.cost


class OrderFacts:
    """Immutable view of one order: enough to aggregate without touching the store."""
    __slots__ = (
        'order_id', 'order_number', 'status', 'channel', 'created_at', 'subtotal', 'tax',
        'discount', 'total', 'payment_method', 'employee_id', 'employee_name', 'lines',
    )

    def __init__(self, order_id, status, created_at, total, lines=(), order_number='', channel='',
                 subtotal=None, tax=None, discount=None, payment_method='', employee_id=None,
                 employee_name=None):
        self.order_id = order_id
        self.order_number = order_number
        self.status = status
        self.channel = channel
        self.created_at = parse_timestamp(created_at)
        self.total = to_money(total)
        self.subtotal = to_money(subtotal if subtotal is not None else total)
        self.tax = to_money(tax)
        self.discount = to_money(discount)
        self.payment_method = payment_method or ''
        self.employee_id = employee_id
        self.employee_name = employee_name
        self.lines = tuple(lines)

    @classmethod
    def from_order(cls, order):
        """From an Order with prefetched items__menu_item. Lines without a cost snapshot use the menu's current cost."""
        lines = []
        for i in order.items.all():
            cost = i.cost_of_goods
            if cost is None:
                cost = i.menu_item.cost_of_goods if i.menu_item_id else ZERO
            lines.append(LineFacts(i.menu_item_id, i.name, i.quantity, i.unit_price, i.total_price, cost, i.position))
        employee = order.employee if order.employee_id else None
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            channel=order.channel,
            created_at=order.created_at,
            subtotal=order.subtotal,
            tax=order.tax,
            discount=order.discount,
            total=order.total,
            payment_method=order.payment_method,
            employee_id=order.employee_id,
            employee_name=employee.display_name if employee else None,
            lines=lines,
        )

    @classmethod
    def from_dict(cls, d):
        """From core.utils.order_to_dict(order, include_items=True) output."""
        lines = [
            LineFacts(
                i.get('menu_item_id'), i.get('name') or '', i.get('quantity') or 0,
                i.get('unit_price'), i.get('total_price'), i.get('cost_of_goods'),
                i.get('position') or 0,
            )
            for i in d.get('items') or []
        ]
        return cls(
            order_id=d['id'],
            order_number=d.get('order_number') or '',
            status=d.get('status'),
            channel=d.get('channel') or '',
            created_at=d.get('created_at'),
            subtotal=d.get('subtotal'),
            tax=d.get('tax'),
            discount=d.get('discount'),
            total=d.get('total'),
            payment_method=d.get('payment_method'),
            employee_id=d.get('employee_id'),
            employee_name=d.get('employee_name'),
            lines=lines,
        )

    def with_status(self, status):
        clone = OrderFacts.__new__(OrderFacts)
        for name in self.__slots__:
            setattr(clone, name, getattr(self, name))
        clone.status = status
        return clone

    @property
    def bucket(self):
        return normalize_status(self.status)

    @property
    def fulfilled(self):
        return self.bucket == BUCKET_SERVED

    @property
    def day(self):
        return business_day(self.created_at)

    @property
    def month(self):
        return business_month(self.created_at)

    @property
    def cost(self):
        return sum((line.cost for line in self.lines), ZERO)

    @property
    def profit(self):
        return self.total - self.cost

    def line_key(self, line):
        """Discovery order of a line: (created_at, order id, position)."""
        return (self.created_at, self.order_id, line.position)


def margin_percent(profit, total):
    """profit / total * 100, 0 when total is 0."""
    total = Decimal(total or 0)
    if total == 0:
        return Decimal('0.00')
    return (Decimal(profit) / total * Decimal('100')).quantize(MONEY_PLACES)


# --- Aggregates ---

class PeriodFigures:
    """Counts and money for one day or month."""
    __slots__ = ('order_count', 'fulfilled_count', 'revenue', 'cost')

    def __init__(self):
        self.order_count = 0
        self.fulfilled_count = 0
        self.revenue = ZERO
        self.cost = ZERO

    @property
    def profit(self):
        return self.revenue - self.cost

    @property
    def margin(self):
        return margin_percent(self.profit, self.revenue)

    def to_dict(self):
        return {
            'order_count': self.order_count,
            'fulfilled_count': self.fulfilled_count,
            'revenue': str(to_money(self.revenue)),
            'cost': str(to_money(self.cost)),
            'profit': str(to_money(self.profit)),
            'margin': str(self.margin),
        }


class DayFigures(PeriodFigures):
    __slots__ = ('status_counts', 'items')

    def __init__(self):
        super().__init__()
        self.status_counts = empty_bucket_counts()
        # menu_item_id -> {order_id: (quantity, discovery_key, name)}
        self.items = {}

    def item_quantities(self):
        return {
            menu_item_id: sum(q for q, _, _ in per_order.values())
            for menu_item_id, per_order in self.items.items() if per_order
        }

    def top_items(self, limit=None):
        """Menu items ranked by quantity sold; ties keep discovery order."""
        if limit is None:
            limit = pos_setting('POS_TOP_ITEMS_LIMIT')
        ranked = []
        for menu_item_id, per_order in self.items.items():
            if not per_order:
                continue
            quantity = sum(q for q, _, _ in per_order.values())
            first_key, name = min((k, n) for _, k, n in per_order.values())
            ranked.append((-quantity, first_key, menu_item_id, name, quantity))
        ranked.sort(key=lambda r: (r[0], r[1]))
        return [
            {'menu_item_id': mid, 'name': name, 'quantity': qty}
            for _, _, mid, name, qty in ranked[:limit]
        ]

    def to_dict(self, top_limit=None):
        d = super().to_dict()
        d['status_counts'] = dict(self.status_counts)
        d['top_items'] = self.top_items(top_limit)
        return d


class AggregateSnapshot:
    """Per-day and per-month figures keyed by business date / 'YYYY-MM'."""

    def __init__(self):
        self.days = {}
        self.months = {}

    def day(self, day):
        return self.days.get(day) or DayFigures()

    def month(self, key):
        if not isinstance(key, str):
            key = key.strftime('%Y-%m')
        return self.months.get(key) or PeriodFigures()

    def top_items(self, day, limit=None):
        return self.day(day).top_items(limit)

    def to_dict(self):
        return {
            'days': {d.isoformat(): f.to_dict() for d, f in sorted(self.days.items())},
            'months': {m: f.to_dict() for m, f in sorted(self.months.items())},
        }


def _add_line(day, facts, line):
    per_order = day.items.setdefault(line.menu_item_id, {})
    qty, key, _ = per_order.get(facts.order_id, (0, facts.line_key(line), line.name))
    per_order[facts.order_id] = (qty + line.quantity, min(key, facts.line_key(line)), line.name)


def compute_aggregates(orders):
    """Full recompute: one pass over the order log."""
    snap = AggregateSnapshot()
    for facts in orders:
        day = snap.days.get(facts.day)
        if day is None:
            day = snap.days[facts.day] = DayFigures()
        month = snap.months.get(facts.month)
        if month is None:
            month = snap.months[facts.month] = PeriodFigures()
        day.status_counts[facts.bucket] += 1
        day.order_count += 1
        month.order_count += 1
        if not facts.fulfilled:
            continue
        cost = facts.cost
        for period in (day, month):
            period.fulfilled_count += 1
            period.revenue += facts.total
            period.cost += cost
        for line in facts.lines:
            _add_line(day, facts, line)
    return snap


class IncrementalAggregator:
    """
    Live figures maintained by adding and removing per-order contributions.
    apply() is an upsert: the order's previous contribution is withdrawn first,
    so replaying the same facts is idempotent.
    """

    def __init__(self, orders=()):
        self.snapshot = AggregateSnapshot()
        self._orders = {}
        for facts in orders:
            self.apply(facts)

    def __contains__(self, order_id):
        return order_id in self._orders

    def __len__(self):
        return len(self._orders)

    def apply(self, facts):
        previous = self._orders.get(facts.order_id)
        if previous is not None:
            self._contribute(previous, -1)
        self._contribute(facts, 1)
        self._orders[facts.order_id] = facts

    def apply_status(self, order_id, status):
        """Status-only update for a known order. Returns False when the order is unknown."""
        facts = self._orders.get(order_id)
        if facts is None:
            return False
        if facts.status != status:
            self.apply(facts.with_status(status))
        return True

    def remove(self, order_id):
        facts = self._orders.pop(order_id, None)
        if facts is not None:
            self._contribute(facts, -1)

    def reset(self, orders):
        """Replace all state with a full recompute of orders."""
        orders = list(orders)
        self.snapshot = compute_aggregates(orders)
        self._orders = {f.order_id: f for f in orders}

    def _contribute(self, facts, sign):
        day = self.snapshot.days.setdefault(facts.day, DayFigures())
        month = self.snapshot.months.setdefault(facts.month, PeriodFigures())
        day.status_counts[facts.bucket] += sign
        day.order_count += sign
        month.order_count += sign
        if facts.fulfilled:
            cost = facts.cost
            for period in (day, month):
                period.fulfilled_count += sign
                period.revenue += sign * facts.total
                period.cost += sign * cost
            for line in facts.lines:
                per_order = day.items.setdefault(line.menu_item_id, {})
                if sign > 0:
                    _add_line(day, facts, line)
                else:
                    per_order.pop(facts.order_id, None)
                    if not per_order:
                        del day.items[line.menu_item_id]
        if day.order_count == 0:
            del self.snapshot.days[facts.day]
        if month.order_count == 0:
            del self.snapshot.months[facts.month]


# --- Consistency ---

def diff_snapshots(a, b, tolerance=None):
    """List of human-readable differences between two snapshots (empty when they agree)."""
    if tolerance is None:
        tolerance = Decimal(str(pos_setting('POS_AGGREGATION_TOLERANCE')))
    diffs = []

    def _cmp(label, fa, fb):
        if fa.order_count != fb.order_count:
            diffs.append(f'{label} order_count {fa.order_count} != {fb.order_count}')
        if fa.fulfilled_count != fb.fulfilled_count:
            diffs.append(f'{label} fulfilled_count {fa.fulfilled_count} != {fb.fulfilled_count}')
        if abs(fa.revenue - fb.revenue) > tolerance:
            diffs.append(f'{label} revenue {fa.revenue} != {fb.revenue}')
        if abs(fa.cost - fb.cost) > tolerance:
            diffs.append(f'{label} cost {fa.cost} != {fb.cost}')

    for day in sorted(set(a.days) | set(b.days)):
        da, db = a.day(day), b.day(day)
        _cmp(day.isoformat(), da, db)
        if da.status_counts != db.status_counts:
            diffs.append(f'{day.isoformat()} status_counts {da.status_counts} != {db.status_counts}')
        if da.item_quantities() != db.item_quantities():
            diffs.append(f'{day.isoformat()} items {da.item_quantities()} != {db.item_quantities()}')
    for month in sorted(set(a.months) | set(b.months)):
        _cmp(month, a.month(month), b.month(month))
    return diffs


def check_consistency(aggregator, orders, tolerance=None):
    """Raise AggregationInconsistency if the aggregator disagrees with a full recompute of orders."""
    diffs = diff_snapshots(aggregator.snapshot, compute_aggregates(orders), tolerance)
    if diffs:
        raise AggregationInconsistency(diffs)


def reconcile(aggregator, orders, tolerance=None):
    """
    Compare incremental figures with a full recompute of the authoritative log.
    On divergence, log it and fall back to the recompute. Returns the differences found.
    """
    orders = list(orders)
    try:
        check_consistency(aggregator, orders, tolerance)
    except AggregationInconsistency as e:
        logger.warning('Incremental aggregates diverged, recomputing: %s', e.differences)
        aggregator.reset(orders)
        return e.differences
    return []
