"""WSGI config for the schemaform site."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "schemaform_site.settings")

application = get_wsgi_application()
