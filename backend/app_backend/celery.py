"""Celery application for background delivery work."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "app_backend.settings.settings")

app = Celery("app_backend")

# All CELERY_* Django settings configure the app (broker, beat schedule, eager mode)
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
