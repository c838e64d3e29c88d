"""
WSGI config for the Sandbox App Builder.

SSE responses are long-lived; run under a threaded server
(e.g. gunicorn --worker-class gthread) so one stream does not block others.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'builder_site.settings')

application = get_wsgi_application()
