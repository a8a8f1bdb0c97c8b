"""Order API: list, create, detail, status and payment updates, kitchen queue, live snapshot. Scoped by restaurant."""
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from core import services
from core.aggregation import business_day_bounds
from core.exceptions import InvalidPaymentStatus, InvalidTransition, OrderCreationFailed, OrderValidationError
from core.lifecycle import BUCKETS, TERMINAL_STATUSES, allowed_transitions, normalize_status
from core.live.snapshot import load_live_snapshot
from core.models import Order, OrderChannel, OrderStatus, Restaurant
from core.permissions import is_manager_or_admin, staff_required
from core.utils import (
    auth_required,
    client_ip,
    get_restaurant_ids,
    order_to_dict,
    parse_date,
    parse_json_body,
)

MAX_LIST_LIMIT = 500


def _scoped_orders(request):
    """Orders visible to the user: all in their restaurants for managers, own orders otherwise."""
    qs = Order.objects.filter(restaurant_id__in=get_restaurant_ids(request))
    if not is_manager_or_admin(request.user):
        qs = qs.filter(employee=request.user)
    return qs.select_related('employee')


def _get_scoped_order(request, pk):
    return get_object_or_404(_scoped_orders(request).prefetch_related('items'), pk=pk)


def _get_restaurant_order(request, pk):
    """Any order in the user's restaurants; kitchen and floor staff move orders they did not take."""
    qs = Order.objects.filter(restaurant_id__in=get_restaurant_ids(request))
    return get_object_or_404(qs.select_related('employee').prefetch_related('items'), pk=pk)


def _order_detail(o):
    d = order_to_dict(o, include_items=True)
    d['allowed_transitions'] = allowed_transitions(o.channel, o.status)
    d['status_history'] = [
        {
            'from_status': c.from_status,
            'to_status': c.to_status,
            'changed_by': c.changed_by.display_name if c.changed_by_id else None,
            'created_at': c.created_at.isoformat(),
        }
        for c in o.status_changes.select_related('changed_by').order_by('created_at', 'id')
    ]
    return d


def _pick_restaurant(request, body):
    """Restaurant for a new order: body restaurant_id if in scope, else the only one the user has."""
    rid = get_restaurant_ids(request)
    raw = body.get('restaurant_id')
    if raw in (None, ''):
        if len(rid) != 1:
            return None, JsonResponse({'error': 'restaurant_id is required'}, status=400)
        return Restaurant.objects.get(pk=rid[0]), None
    try:
        restaurant_id = int(raw)
    except (TypeError, ValueError):
        return None, JsonResponse({'error': 'Invalid restaurant_id'}, status=400)
    if restaurant_id not in rid:
        return None, JsonResponse({'error': 'Forbidden'}, status=403)
    return Restaurant.objects.get(pk=restaurant_id), None


@csrf_exempt
@auth_required
@staff_required
@require_http_methods(['GET', 'POST'])
def order_list(request):
    """GET: list orders (status bucket, date, employee, limit). POST: create an order."""
    if request.method == 'POST':
        return _order_create(request)
    qs = _scoped_orders(request).order_by('-created_at', '-id')
    bucket = (request.GET.get('status') or '').strip().lower()
    if bucket:
        if bucket not in BUCKETS:
            return JsonResponse({'error': f'Invalid status filter: {bucket}'}, status=400)
        statuses = [s for s in OrderStatus.values if normalize_status(s) == bucket]
        qs = qs.filter(status__in=statuses)
    day = parse_date(request.GET.get('date'))
    if day:
        start, end = business_day_bounds(day)
        qs = qs.filter(created_at__gte=start, created_at__lt=end)
    employee = request.GET.get('employee')
    if employee and employee.isdigit():
        qs = qs.filter(employee_id=int(employee))
    try:
        limit = min(int(request.GET.get('limit', 100)), MAX_LIST_LIMIT)
    except (TypeError, ValueError):
        limit = 100
    results = [order_to_dict(o) for o in qs[:max(limit, 1)]]
    return JsonResponse({'results': results, 'count': len(results)})


def _order_create(request):
    body, err = parse_json_body(request)
    if err:
        return err
    restaurant, err = _pick_restaurant(request, body)
    if err:
        return err
    try:
        order = services.create_order(
            restaurant,
            body.get('items'),
            channel=body.get('channel') or OrderChannel.DINE_IN,
            employee=request.user,
            payment_method=body.get('payment_method') or '',
            discount=body.get('discount') or 0,
            customer_name=body.get('customer_name') or '',
            customer_phone=body.get('customer_phone') or '',
            table_number=body.get('table_number') or '',
            notes=body.get('notes') or '',
            ip_address=client_ip(request),
        )
    except OrderValidationError as e:
        return JsonResponse({'error': str(e)}, status=400)
    except OrderCreationFailed as e:
        return JsonResponse({'error': str(e)}, status=503)
    order = Order.objects.select_related('employee').prefetch_related('items').get(pk=order.pk)
    return JsonResponse(_order_detail(order), status=201)


@auth_required
@staff_required
@require_http_methods(['GET'])
def order_detail(request, pk):
    return JsonResponse(_order_detail(_get_scoped_order(request, pk)))


@csrf_exempt
@auth_required
@staff_required
@require_http_methods(['PUT', 'PATCH'])
def order_status_update(request, pk):
    """Move the order along its channel path (or to cancelled)."""
    o = _get_restaurant_order(request, pk)
    body, err = parse_json_body(request)
    if err:
        return err
    target = (body.get('status') or '').strip()
    if not target:
        return JsonResponse({'error': 'status is required'}, status=400)
    try:
        services.transition_order(o.pk, target, actor=request.user, ip_address=client_ip(request))
    except InvalidTransition as e:
        return JsonResponse({'error': str(e)}, status=400)
    return JsonResponse(_order_detail(_get_restaurant_order(request, pk)))


@csrf_exempt
@auth_required
@staff_required
@require_http_methods(['PUT', 'PATCH'])
def order_payment_update(request, pk):
    o = _get_restaurant_order(request, pk)
    body, err = parse_json_body(request)
    if err:
        return err
    try:
        services.set_payment_status(
            o.pk, (body.get('payment_status') or '').strip(),
            actor=request.user, ip_address=client_ip(request),
        )
    except InvalidPaymentStatus as e:
        return JsonResponse({'error': str(e)}, status=400)
    return JsonResponse(_order_detail(_get_restaurant_order(request, pk)))


@auth_required
@staff_required
@require_http_methods(['GET'])
def active_orders(request):
    """Kitchen queue: every non-terminal order in scope, oldest first."""
    qs = (
        Order.objects.filter(restaurant_id__in=get_restaurant_ids(request))
        .exclude(status__in=TERMINAL_STATUSES)
        .select_related('employee')
        .prefetch_related('items')
        .order_by('created_at', 'id')
    )
    results = []
    for o in qs[:MAX_LIST_LIMIT]:
        d = order_to_dict(o, include_items=True)
        d['allowed_transitions'] = allowed_transitions(o.channel, o.status)
        results.append(d)
    return JsonResponse({'results': results})


@auth_required
@staff_required
@require_http_methods(['GET'])
def order_snapshot(request):
    """Full live snapshot for one restaurant (HTTP resync path of the live feed)."""
    rid = get_restaurant_ids(request)
    raw = request.GET.get('restaurant_id')
    if raw:
        if not raw.isdigit() or int(raw) not in rid:
            return JsonResponse({'error': 'Forbidden'}, status=403)
        restaurant_id = int(raw)
    elif len(rid) == 1:
        restaurant_id = rid[0]
    else:
        return JsonResponse({'error': 'restaurant_id is required'}, status=400)
    return JsonResponse(load_live_snapshot(restaurant_id))
