"""Auth URL configuration."""
from django.urls import path
from core.views.auth_views import login, logout, me

urlpatterns = [
    path('login/', login),
    path('logout/', logout),
    path('me/', me),
]
