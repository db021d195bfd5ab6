import os
from typing import Any, Dict

from celery import Celery
from dotenv import load_dotenv
load_dotenv()

VERIFY_BATCH_TASK = "citeresolve.tasks.verify_citation_batch"
COLLECT_PAPERS_TASK = "citeresolve.tasks.collect_papers"

app = Celery(
    "citeresolve",
    broker=os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/0"),
    include=["citeresolve.tasks"],
)

app.conf.update(
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
)

app.conf.task_routes = {
    VERIFY_BATCH_TASK: {"queue": "citations"},
    COLLECT_PAPERS_TASK: {"queue": "discovery"},
}


class CeleryTaskQueue:
    """Fire-and-forget task queue backed by the Celery broker."""

    def __init__(self, task_name: str = VERIFY_BATCH_TASK, celery_app: Celery = app) -> None:
        self.task_name = task_name
        self.app = celery_app

    def enqueue(self, payload: Dict[str, Any]) -> None:
        self.app.send_task(self.task_name, args=[payload])
