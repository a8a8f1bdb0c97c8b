"""Public API (no auth): restaurant and menu by slug, online ordering."""
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from core import services
from core.exceptions import OrderCreationFailed, OrderValidationError
from core.models import OrderChannel, Restaurant
from core.utils import client_ip, parse_json_body


def _restaurant_to_public_dict(r):
    return {
        'id': r.id,
        'name': r.name,
        'slug': r.slug,
        'address': r.address or '',
        'is_open': r.is_open,
    }


@require_http_methods(['GET'])
def public_restaurant_by_slug(request, slug):
    """GET /api/public/restaurant/<slug>/ - no auth. Returns restaurant info."""
    r = get_object_or_404(Restaurant, slug=slug)
    return JsonResponse(_restaurant_to_public_dict(r))


@require_http_methods(['GET'])
def public_restaurant_menu(request, slug):
    """GET /api/public/restaurant/<slug>/menu/ - no auth. Active items; cost is never exposed."""
    r = get_object_or_404(Restaurant, slug=slug)
    items = [
        {
            'id': m.id,
            'name': m.name,
            'price': str(m.price),
            'is_available': m.is_available,
        }
        for m in r.menu_items.filter(is_active=True).order_by('name')
    ]
    return JsonResponse({'restaurant': _restaurant_to_public_dict(r), 'results': items})


@csrf_exempt
@require_http_methods(['POST'])
def public_order_create(request, slug):
    """
    POST /api/public/<slug>/orders/ - no auth. Online order with no staff member attached.
    Body: {items: [{menu_item_id, quantity, special_instructions}], customer_name, customer_phone, notes}.
    """
    r = get_object_or_404(Restaurant, slug=slug)
    if not r.is_open:
        return JsonResponse({'error': 'Restaurant is not accepting orders'}, status=400)
    body, err = parse_json_body(request)
    if err:
        return err
    customer_name = (body.get('customer_name') or '').strip()
    customer_phone = (body.get('customer_phone') or '').strip()
    if not customer_name or not customer_phone:
        return JsonResponse({'error': 'customer_name and customer_phone are required'}, status=400)
    try:
        order = services.create_order(
            r,
            body.get('items'),
            channel=OrderChannel.ONLINE,
            customer_name=customer_name,
            customer_phone=customer_phone,
            notes=body.get('notes') or '',
            ip_address=client_ip(request),
        )
    except OrderValidationError as e:
        return JsonResponse({'error': str(e)}, status=400)
    except OrderCreationFailed as e:
        return JsonResponse({'error': str(e)}, status=503)
    return JsonResponse({
        'id': order.id,
        'order_number': order.order_number,
        'status': order.status,
        'total': str(order.total),
    }, status=201)
