import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('labportal')

# All CELERY_* settings come from Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

# Picks up laboratory/tasks.py
app.autodiscover_tasks()
