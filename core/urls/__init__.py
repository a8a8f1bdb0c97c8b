# URL packages - include auth_urls, order_urls, report_urls, public_urls.
from django.urls import path, include

urlpatterns = [
    path('auth/', include('core.urls.auth_urls')),
    path('orders/', include('core.urls.order_urls')),
    path('reports/', include('core.urls.report_urls')),
    path('public/', include('core.urls.public_urls')),
]
