"""
Shared helpers for API: order serialization (snake_case), restaurant scope, auth decorator.
"""
import json
from datetime import date, datetime
from decimal import Decimal
from functools import wraps

from django.http import JsonResponse


def _serialize_value(v):
    if v is None:
        return None
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, (date, datetime)):
        return v.isoformat()
    if hasattr(v, 'pk'):
        return v.pk
    return v


def order_item_to_dict(i):
    return {
        'id': i.id,
        'menu_item_id': i.menu_item_id,
        'position': i.position,
        'name': i.name,
        'quantity': i.quantity,
        'unit_price': _serialize_value(i.unit_price),
        'total_price': _serialize_value(i.total_price),
        'cost_of_goods': _serialize_value(i.cost_of_goods),
        'special_instructions': i.special_instructions or '',
    }


def order_to_dict(o, include_items=False):
    """
    Serialize an order for API responses, live snapshots and published events.
    Decimals are strings, datetimes ISO-8601.
    """
    employee = o.employee if o.employee_id else None
    d = {
        'id': o.id,
        'order_number': o.order_number,
        'restaurant_id': o.restaurant_id,
        'channel': o.channel,
        'status': o.status,
        'payment_status': o.payment_status,
        'payment_method': o.payment_method or '',
        'employee_id': o.employee_id,
        'employee_name': employee.display_name if employee else None,
        'customer_name': o.customer_name or '',
        'customer_phone': o.customer_phone or '',
        'table_number': o.table_number or '',
        'notes': o.notes or '',
        'subtotal': _serialize_value(o.subtotal),
        'tax': _serialize_value(o.tax),
        'discount': _serialize_value(o.discount),
        'total': _serialize_value(o.total),
        'created_at': _serialize_value(o.created_at),
        'completed_at': _serialize_value(o.completed_at),
        'updated_at': _serialize_value(o.updated_at),
    }
    if include_items:
        d['items'] = [order_item_to_dict(i) for i in o.items.all()]
    return d


def parse_json_body(request):
    """Return (body_dict, error_response)."""
    try:
        body = json.loads(request.body) if request.body else {}
    except json.JSONDecodeError:
        return None, JsonResponse({'error': 'Invalid JSON'}, status=400)
    if not isinstance(body, dict):
        return None, JsonResponse({'error': 'Invalid JSON'}, status=400)
    return body, None


def parse_date(s):
    """YYYY-MM-DD prefix -> date, else None."""
    if not s:
        return None
    try:
        return datetime.strptime(str(s)[:10], '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None


def client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', '') or ''


def get_restaurant_ids(request):
    """Restaurant IDs visible to request.user (see get_user_restaurant_ids)."""
    if not getattr(request, 'user', None) or not request.user.is_authenticated:
        return []
    return get_user_restaurant_ids(request.user)


def get_user_restaurant_ids(user):
    """
    Return list of restaurant IDs the user can access.
    - Super admin (is_superuser): all restaurant IDs.
    - Owner: restaurants owned by user, plus staff assignments.
    - Staff (manager/employee): restaurants from active Staff assignments.
    """
    from core.models import Restaurant, Staff

    if user is None:
        return []
    if getattr(user, 'is_superuser', False):
        return list(Restaurant.objects.values_list('id', flat=True))
    owned = set(Restaurant.objects.filter(owner=user).values_list('id', flat=True))
    staffed = set(
        Staff.objects.filter(user=user, is_suspend=False).values_list('restaurant_id', flat=True)
    )
    return sorted(owned | staffed)


def get_role(user):
    """Return role string: admin, manager, employee, delivery."""
    if not user or not getattr(user, 'is_authenticated', True):
        return None
    if getattr(user, 'is_superuser', False):
        return 'admin'
    return getattr(user, 'role', None) or 'employee'


def auth_required(view_func):
    """Decorator: set request.user from Authorization Bearer token (DRF Token only). Return 401 if invalid."""
    from rest_framework.authtoken.models import Token

    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        auth_header = request.META.get('HTTP_AUTHORIZATION')
        if not auth_header or not auth_header.startswith('Bearer '):
            return JsonResponse({'error': 'Authentication required'}, status=401)
        key = auth_header[7:].strip()
        try:
            token = Token.objects.select_related('user').get(key=key)
        except Token.DoesNotExist:
            return JsonResponse({'error': 'Invalid token'}, status=401)
        if not token.user.is_active:
            return JsonResponse({'error': 'User account is deactivated'}, status=401)
        request.user = token.user
        return view_func(request, *args, **kwargs)
    return wrapped
