"""ASGI entry point for the Barberly project."""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'barberly.settings')

application = get_asgi_application()
