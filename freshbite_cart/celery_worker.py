# freshbite_cart/celery_worker.py
from celery import Celery

from freshbite_cart.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery(
    "freshbite_cart",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks must be imported explicitly so the worker registers them
celery_app.conf.imports = (
    "freshbite_cart.tasks.expire",
)

celery_app.conf.beat_schedule = {
    "purge-expired-carts-hourly": {
        "task": "freshbite_cart.tasks.expire.purge_expired_carts_task",
        "schedule": 60.0 * 60,
    },
}

celery_app.conf.timezone = "UTC"
