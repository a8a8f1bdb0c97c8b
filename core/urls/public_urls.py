"""Public API URL configuration (no auth)."""
from django.urls import path
from core.views.public_views import (
    public_restaurant_by_slug,
    public_restaurant_menu,
    public_order_create,
)

urlpatterns = [
    path('restaurant/<slug:slug>/', public_restaurant_by_slug),
    path('restaurant/<slug:slug>/menu/', public_restaurant_menu),
    path('<slug:slug>/orders/', public_order_create),
]
