"""Celery application configuration for asynchronous task processing."""

import os

from celery import Celery
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Initialize Celery
celery_app = Celery(
    "reclaim_tasks",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1200,  # 20 minutes hard limit
    task_soft_time_limit=1140,  # 19 minutes soft limit (sends warning)
    result_expires=3600,  # Keep results for 1 hour
    task_always_eager=os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() == "true",
)

# Tasks are registered via @celery_app.task decorators in their respective modules
celery_app.conf.imports = (
    "tasks.invoice_tasks",
    "tasks.mail_tasks",
    "tasks.fulfillment_tasks",
)
