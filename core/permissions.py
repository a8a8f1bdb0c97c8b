"""
Role checks used by the order and report views.
Manager/admin: see every order in their restaurants and staff performance.
Employee: sees and reports on their own orders only.
"""
from functools import wraps
from django.http import JsonResponse

from core.models import UserRole


def is_manager_or_admin(user):
    """Return True iff user is superuser, admin/manager role, owner, or a manager Staff."""
    if not user or not getattr(user, 'is_authenticated', True):
        return False
    if getattr(user, 'is_superuser', False):
        return True
    if getattr(user, 'role', None) in (UserRole.ADMIN, UserRole.MANAGER):
        return True
    from core.models import Restaurant, Staff
    if Restaurant.objects.filter(owner=user).exists():
        return True
    return Staff.objects.filter(user=user, is_manager=True, is_suspend=False).exists()


def manager_required(view_func):
    """Decorator: after auth, require manager or admin."""
    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        if not is_manager_or_admin(request.user):
            return JsonResponse(
                {'detail': 'Manager or admin access required'},
                status=403
            )
        return view_func(request, *args, **kwargs)
    return wrapped


def staff_required(view_func):
    """Decorator: after auth, require the user to belong to at least one restaurant."""
    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        from core.utils import get_restaurant_ids
        if not get_restaurant_ids(request):
            return JsonResponse(
                {'detail': 'Restaurant staff access required'},
                status=403
            )
        return view_func(request, *args, **kwargs)
    return wrapped
