"""
Celery Configuration for the Sandbox App Builder

This module configures Celery for async task processing.
Used primarily for:
- Sandbox teardown after a session is no longer needed
- Other long-running housekeeping that should not block a request

Broker: Redis (local development) or a managed Redis in production
"""

import os
from celery import Celery

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'builder_site.settings')

# Create Celery app
app = Celery('builder_site')

# Configure Celery using Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all registered Django apps
app.autodiscover_tasks()
