"""
ASGI config for restopos project.

HTTP goes to Django; websocket connections go to the live order feed
(see core.live.routing).
"""

import os

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'restopos.settings')

from django.core.asgi import get_asgi_application

django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter
from core.live.routing import websocket_urlpatterns

application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': URLRouter(websocket_urlpatterns),
})
