"""
Model-level guards for orders, independent of which code path saves them.
- completed_at is write-once: a save that clears or moves it keeps the stored value.
- A terminal order never changes lifecycle status again.
"""
import logging

from django.db.models.signals import pre_save
from django.dispatch import receiver

from core import lifecycle
from core.exceptions import InvalidTransition
from core.models import Order

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=Order)
def guard_order_lifecycle(sender, instance, raw=False, **kwargs):
    if raw or not instance.pk:
        return
    old = Order.objects.filter(pk=instance.pk).values('status', 'completed_at', 'channel').first()
    if old is None:
        return
    if old['completed_at'] is not None and instance.completed_at != old['completed_at']:
        logger.warning(
            'Ignoring change of completed_at on order %s (%s -> %s)',
            instance.pk, old['completed_at'], instance.completed_at,
        )
        instance.completed_at = old['completed_at']
    if lifecycle.is_terminal(old['status']) and instance.status != old['status']:
        raise InvalidTransition(old['status'], instance.status, old['channel'])
