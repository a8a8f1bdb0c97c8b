import pytest

from core import lifecycle
from core.exceptions import InvalidTransition
from core.lifecycle import BUCKETS, normalize_status
from core.models import OrderChannel, OrderStatus


@pytest.mark.parametrize('channel, path', [
    (OrderChannel.DINE_IN, ['pending', 'preparing', 'ready', 'served']),
    (OrderChannel.TAKEAWAY, ['pending', 'preparing', 'ready', 'completed']),
    (OrderChannel.DELIVERY, ['pending', 'preparing', 'ready', 'out_for_delivery', 'delivered']),
    (OrderChannel.ONLINE, ['pending', 'preparing', 'ready', 'out_for_delivery', 'delivered']),
])
def test_channel_paths_are_valid_histories(channel, path):
    assert lifecycle.is_valid_history(channel, path)
    assert lifecycle.is_terminal(path[-1])
    for status in path[:-1]:
        assert not lifecycle.is_terminal(status)


def test_cancel_allowed_from_any_non_terminal_status():
    for status in ['pending', 'preparing', 'ready', 'out_for_delivery']:
        assert lifecycle.can_transition(OrderChannel.DELIVERY, status, OrderStatus.CANCELLED)


def test_terminal_statuses_have_no_exits():
    for status in ['served', 'completed', 'delivered', 'cancelled']:
        assert lifecycle.allowed_transitions(OrderChannel.DINE_IN, status) == []
    assert not lifecycle.can_transition(OrderChannel.DINE_IN, 'cancelled', 'pending')


def test_skipping_a_step_is_rejected():
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.check_transition(OrderChannel.DINE_IN, 'pending', 'ready')
    assert exc.value.current == 'pending'
    assert exc.value.target == 'ready'


def test_branch_specific_terminal_is_rejected_on_other_channels():
    assert not lifecycle.can_transition(OrderChannel.DINE_IN, 'ready', 'completed')
    assert not lifecycle.can_transition(OrderChannel.TAKEAWAY, 'ready', 'served')
    assert not lifecycle.can_transition(OrderChannel.DINE_IN, 'ready', 'out_for_delivery')


def test_history_with_cancel_then_more_steps_is_invalid():
    assert lifecycle.is_valid_history(OrderChannel.DINE_IN, ['pending', 'preparing', 'cancelled'])
    assert not lifecycle.is_valid_history(OrderChannel.DINE_IN, ['pending', 'cancelled', 'preparing'])
    assert not lifecycle.is_valid_history(OrderChannel.DINE_IN, ['preparing', 'ready'])


def test_unknown_channel_raises_value_error():
    with pytest.raises(ValueError):
        lifecycle.channel_path('drone')


@pytest.mark.parametrize('raw, bucket', [
    ('pending', 'pending'),
    ('preparing', 'preparing'),
    ('ready', 'ready'),
    ('out_for_delivery', 'ready'),
    ('Out-For-Delivery', 'ready'),
    ('served', 'served'),
    ('completed', 'served'),
    ('delivered', 'served'),
    ('paid', 'served'),
    ('cancelled', 'cancelled'),
    ('', 'pending'),
    (None, 'pending'),
    ('mystery', 'pending'),
])
def test_normalize_status(raw, bucket):
    assert normalize_status(raw) == bucket


def test_every_raw_status_lands_in_a_bucket():
    for status in OrderStatus.values:
        assert normalize_status(status) in BUCKETS
