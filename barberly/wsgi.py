"""WSGI entry point for the Barberly project."""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'barberly.settings')

application = get_wsgi_application()
