"""Reports URL configuration (Bearer token)."""
from django.urls import path
from core.views import report_views

urlpatterns = [
    path('dashboard/', report_views.dashboard),
    path('income/', report_views.income),
    path('income/breakdown/', report_views.income_breakdown),
    path('sales/daily/', report_views.sales_daily),
    path('sales/hourly/', report_views.sales_hourly),
    path('orders/channels/', report_views.order_channels),
    path('employees/performance/', report_views.employee_performance),
]
