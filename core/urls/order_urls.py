"""Order API URL configuration (Bearer token)."""
from django.urls import path
from core.views.order_views import (
    order_list,
    order_detail,
    order_status_update,
    order_payment_update,
    active_orders,
    order_snapshot,
)

urlpatterns = [
    path('', order_list),
    path('active/', active_orders),
    path('snapshot/', order_snapshot),
    path('<int:pk>/', order_detail),
    path('<int:pk>/status/', order_status_update),
    path('<int:pk>/payment/', order_payment_update),
]
