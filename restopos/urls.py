from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def root_view(request):
    """Root URL: simple API info so / is not the admin login."""
    return JsonResponse({
        'name': 'RestoPOS API',
        'api': '/api/',
        'admin': '/admin/',
        'live': '/ws/orders/<restaurant_id>/',
    })


urlpatterns = [
    path('', root_view),
    path('api/', include('core.urls')),
    path('admin/', admin.site.urls),
]
