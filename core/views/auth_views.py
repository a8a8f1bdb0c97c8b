"""
Function-based auth views: login, logout, current user.
Staff log in with username or phone; the DRF token is then sent as Authorization: Bearer <token>
on the JSON API and as ?token= on the live order websocket.
"""
from django.db.models import Q
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from rest_framework.authtoken.models import Token

from core.models import User
from core.permissions import is_manager_or_admin
from core.utils import auth_required, get_role, get_user_restaurant_ids, parse_json_body

LOGIN_ERROR_MSG = 'Invalid username or password.'


def _user_to_dict(user):
    return {
        'id': user.id,
        'username': user.username,
        'name': user.display_name,
        'phone': user.phone or '',
        'role': get_role(user),
        'is_manager': is_manager_or_admin(user),
        'restaurant_ids': get_user_restaurant_ids(user),
    }


@csrf_exempt
@require_http_methods(['POST'])
def login(request):
    """POST JSON {"username" or "phone", "password"}. Returns {"token", "user"} or 401."""
    body, err = parse_json_body(request)
    if err:
        return err
    login_id = (body.get('username') or body.get('phone') or '').strip()
    password = body.get('password', '')
    if not login_id:
        return JsonResponse({'error': 'username or phone required'}, status=400)
    if not password:
        return JsonResponse({'error': 'password required'}, status=400)
    user = User.objects.filter(Q(username=login_id) | Q(phone=login_id)).order_by('id').first()
    if not user or not user.check_password(password):
        return JsonResponse({'error': LOGIN_ERROR_MSG}, status=401)
    if not user.is_active:
        return JsonResponse({'error': 'Account disabled'}, status=403)
    token, _ = Token.objects.get_or_create(user=user)
    return JsonResponse({'token': token.key, 'user': _user_to_dict(user)})


@csrf_exempt
@require_http_methods(['POST'])
def logout(request):
    """Invalidate token if using Token auth (delete token)."""
    auth_header = request.META.get('HTTP_AUTHORIZATION')
    if auth_header and auth_header.startswith('Bearer '):
        Token.objects.filter(key=auth_header[7:].strip()).delete()
    return JsonResponse({'success': True})


@auth_required
@require_http_methods(['GET'])
def me(request):
    return JsonResponse(_user_to_dict(request.user))
