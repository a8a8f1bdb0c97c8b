"""
Report endpoints over the aggregation engine. Managers/admins see every order in their
restaurants; employees see figures for their own orders only.
"""
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from core import reports
from core.aggregation import business_today
from core.permissions import is_manager_or_admin, manager_required, staff_required
from core.utils import auth_required, get_restaurant_ids, parse_date


def _employee_filter(request):
    """None for managers (all staff), own user id otherwise."""
    return None if is_manager_or_admin(request.user) else request.user.pk


def _day(request):
    return parse_date(request.GET.get('date')) or business_today()


@auth_required
@staff_required
@require_http_methods(['GET'])
def dashboard(request):
    """Today's status distribution, revenue, month revenue and top items."""
    return JsonResponse(reports.dashboard_summary(
        get_restaurant_ids(request), _day(request), employee_id=_employee_filter(request),
    ))


@auth_required
@staff_required
@require_http_methods(['GET'])
def income(request):
    return JsonResponse(reports.income_analysis(
        get_restaurant_ids(request), _day(request), employee_id=_employee_filter(request),
    ))


@auth_required
@staff_required
@require_http_methods(['GET'])
def income_breakdown(request):
    """Per-order, per-item profit. ?date=YYYY-MM-DD and/or ?order_id= narrow it down."""
    order_id = request.GET.get('order_id')
    if order_id and not order_id.isdigit():
        return JsonResponse({'error': 'Invalid order_id'}, status=400)
    results = reports.profit_breakdown(
        get_restaurant_ids(request),
        day=parse_date(request.GET.get('date')),
        order_id=int(order_id) if order_id else None,
        employee_id=_employee_filter(request),
    )
    return JsonResponse({'results': results})


@auth_required
@staff_required
@require_http_methods(['GET'])
def sales_daily(request):
    return JsonResponse(reports.daily_sales(
        get_restaurant_ids(request), _day(request), employee_id=_employee_filter(request),
    ))


@auth_required
@staff_required
@require_http_methods(['GET'])
def sales_hourly(request):
    day = _day(request)
    results = reports.hourly_sales(get_restaurant_ids(request), day, employee_id=_employee_filter(request))
    return JsonResponse({'date': day.isoformat(), 'results': results})


@auth_required
@staff_required
@require_http_methods(['GET'])
def order_channels(request):
    results = reports.channel_analysis(
        get_restaurant_ids(request),
        date_from=parse_date(request.GET.get('date_from')),
        date_to=parse_date(request.GET.get('date_to')),
        employee_id=_employee_filter(request),
    )
    return JsonResponse({'results': results})


@auth_required
@manager_required
@require_http_methods(['GET'])
def employee_performance(request):
    results = reports.employee_performance(
        get_restaurant_ids(request),
        date_from=parse_date(request.GET.get('date_from')),
        date_to=parse_date(request.GET.get('date_to')),
    )
    return JsonResponse({'results': results})
