"""
Order number allocation.

Two steps, each with its own failure mode:
1. Insert the order under a short-lived unique placeholder (TMP + time + random).
   A unique-constraint collision is an AllocationRaceFailure and is retried with a
   fresh placeholder; after POS_PLACEHOLDER_RETRIES attempts it is OrderCreationFailed.
2. Rename to PREFIX + zero-padded surrogate id. Failure here is a
   NumberingReconcileFailure: logged, recorded once as a NumberingIssue, never raised.
   reconcile_placeholder_numbers() repairs such orders later.

Numbers follow the store's id sequence, so resetting the sequence restarts numbering at 1.
They sort lexically only while ids fit POS_ORDER_NUMBER_WIDTH digits; past that the
number grows wider, so order by id (every listing here does) or raise the width.
"""
import logging
import random
import time

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from core.constants import ACTION_RECONCILE_ORDER_NUMBER, pos_setting
from core.exceptions import AllocationRaceFailure, NumberingReconcileFailure, OrderCreationFailed
from core.models import ActivityLog, NumberingIssue, Order

logger = logging.getLogger(__name__)


def placeholder_number():
    """Temporary unique value: prefix + last 9 digits of epoch ms + 3 random digits."""
    millis = str(int(time.time() * 1000))[-9:]
    return f"{pos_setting('POS_PLACEHOLDER_PREFIX')}{millis}{random.randint(0, 999):03d}"


def final_number(order_id):
    """Display number for a surrogate id, e.g. 42 -> ORD000042. Ids wider than the pad are not truncated."""
    width = pos_setting('POS_ORDER_NUMBER_WIDTH')
    return f"{pos_setting('POS_ORDER_NUMBER_PREFIX')}{str(order_id).zfill(width)}"


def is_placeholder(order_number) -> bool:
    return bool(order_number) and order_number.startswith(pos_setting('POS_PLACEHOLDER_PREFIX'))


def _insert_with_placeholder(fields):
    """One insert attempt inside its own savepoint. Raises AllocationRaceFailure on collision."""
    placeholder = placeholder_number()
    try:
        with transaction.atomic():
            return Order.objects.create(order_number=placeholder, **fields)
    except IntegrityError as e:
        raise AllocationRaceFailure(f'Placeholder {placeholder} already taken: {e}') from e


def insert_order(fields):
    """Step 1: insert the order row under a placeholder, retrying collisions."""
    attempts = pos_setting('POS_PLACEHOLDER_RETRIES')
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            return _insert_with_placeholder(fields)
        except AllocationRaceFailure as e:
            last_error = e
            logger.warning('Order placeholder collision (attempt %s/%s): %s', attempt, attempts, e)
    raise OrderCreationFailed(f'Could not allocate an order number after {attempts} attempts') from last_error


def _write_order_number(order_id, number):
    return Order.objects.filter(pk=order_id).update(order_number=number)


def assign_final_number(order):
    """
    Step 2: rename the order from its placeholder to the final number.
    Returns True on success. On failure the order keeps its placeholder, the failure is
    logged and a NumberingIssue is recorded once.
    """
    placeholder = order.order_number
    number = final_number(order.pk)
    try:
        with transaction.atomic():
            updated = _write_order_number(order.pk, number)
        if not updated:
            raise DatabaseError('order row not found for rename')
    except DatabaseError as e:
        failure = NumberingReconcileFailure(order.pk, placeholder, e)
        logger.error('%s', failure)
        report_numbering_failure(order, failure)
        return False
    order.order_number = number
    return True


def report_numbering_failure(order, failure):
    """Record the failure for offline repair; one open NumberingIssue per order."""
    if NumberingIssue.objects.filter(order=order, resolved_at__isnull=True).exists():
        return None
    return NumberingIssue.objects.create(
        order=order,
        placeholder=failure.placeholder,
        error=str(failure.cause or failure),
    )


def allocate(fields):
    """Insert an order and give it its final number. Returns the saved Order."""
    order = insert_order(fields)
    assign_final_number(order)
    return order


def reconcile_placeholder_numbers(dry_run=False):
    """
    Background consistency pass: rename every placeholder-numbered order and resolve its
    NumberingIssue rows. Returns list of (order_id, old_number, new_number, ok).
    """
    prefix = pos_setting('POS_PLACEHOLDER_PREFIX')
    results = []
    for order in Order.objects.filter(order_number__startswith=prefix).order_by('id'):
        old = order.order_number
        new = final_number(order.pk)
        if dry_run:
            results.append((order.pk, old, new, True))
            continue
        try:
            with transaction.atomic():
                _write_order_number(order.pk, new)
                NumberingIssue.objects.filter(order=order, resolved_at__isnull=True).update(
                    resolved_at=timezone.now()
                )
                ActivityLog.objects.create(
                    action=ACTION_RECONCILE_ORDER_NUMBER,
                    details=f'Renamed order {old} to {new}',
                )
        except DatabaseError as e:
            logger.error('Reconcile of order %s (%s) failed: %s', order.pk, old, e)
            results.append((order.pk, old, new, False))
            continue
        logger.info('Reconciled order %s: %s -> %s', order.pk, old, new)
        results.append((order.pk, old, new, True))
    return results
