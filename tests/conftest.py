"""Shared fixtures: a restaurant with staff, a small menu and an order factory."""
from decimal import Decimal

import pytest
from rest_framework.authtoken.models import Token

from core import services
from core.models import MenuItem, Restaurant, Staff, User, UserRole


@pytest.fixture
def owner(db):
    return User.objects.create_user(username='owner', password='x', name='Olive Owner', role=UserRole.MANAGER)


@pytest.fixture
def restaurant(db, owner):
    # tax 0 so order totals equal item totals in money assertions
    return Restaurant.objects.create(name='Cafe One', slug='cafe-one', owner=owner, tax_percent=Decimal('0'))


@pytest.fixture
def waiter(db, restaurant):
    user = User.objects.create_user(username='waiter', password='x', name='Wes Waiter', role=UserRole.EMPLOYEE)
    Staff.objects.create(restaurant=restaurant, user=user)
    return user


@pytest.fixture
def other_waiter(db, restaurant):
    user = User.objects.create_user(username='waiter2', password='x', name='Wanda Waiter', role=UserRole.EMPLOYEE)
    Staff.objects.create(restaurant=restaurant, user=user)
    return user


@pytest.fixture
def outsider(db):
    return User.objects.create_user(username='outsider', password='x', role=UserRole.EMPLOYEE)


@pytest.fixture
def burger(db, restaurant):
    return MenuItem.objects.create(
        restaurant=restaurant, name='Burger', price=Decimal('10.00'), cost_of_goods=Decimal('4.00'),
    )


@pytest.fixture
def fries(db, restaurant):
    return MenuItem.objects.create(
        restaurant=restaurant, name='Fries', price=Decimal('5.00'), cost_of_goods=Decimal('1.00'),
    )


@pytest.fixture
def make_order(restaurant, waiter, burger):
    """make_order(quantity=1, menu_item=burger, **kwargs) -> Order created through the service layer."""
    def _make(quantity=1, menu_item=None, employee=waiter, **kwargs):
        item = menu_item or burger
        return services.create_order(
            restaurant,
            [{'menu_item_id': item.id, 'quantity': quantity}],
            employee=employee,
            **kwargs
        )
    return _make


def _auth(client, user):
    token, _ = Token.objects.get_or_create(user=user)
    client.defaults['HTTP_AUTHORIZATION'] = f'Bearer {token.key}'
    return client


@pytest.fixture
def owner_client(client, owner):
    return _auth(client, owner)


@pytest.fixture
def waiter_client(client, waiter):
    return _auth(client, waiter)
