# citeresolve/tasks.py
from __future__ import annotations

import logging
from typing import Any, Dict

from .celery_app import COLLECT_PAPERS_TASK, VERIFY_BATCH_TASK, app
from .errors import PersistenceError
from . import service

logger = logging.getLogger(__name__)
if not logger.handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@app.task(name=VERIFY_BATCH_TASK, bind=True, acks_late=True,
          autoretry_for=(PersistenceError,), retry_backoff=30, retry_jitter=True,
          retry_kwargs={"max_retries": 3})
def verify_citation_batch(self, payload: Dict[str, Any]) -> Dict[str, int]:
    """Worker side of queue_verification: verify each citation and store its result."""
    if not isinstance(payload, dict) or not payload.get("correlation_id"):
        logger.warning("verify_citation_batch: payload without correlation_id; dropping")
        return {"processed": 0, "skipped": 0, "failed": 0}
    counts = service.get_verifier().process_batch(payload)
    logger.info("verify_citation_batch done", extra={"correlation_id": payload["correlation_id"], **counts})
    return counts


@app.task(name=COLLECT_PAPERS_TASK, bind=True, acks_late=True)
def collect_papers(self, topic: str, field: str = "general", academic_level: str = "undergraduate") -> Dict[str, Any]:
    """Pre-warm the discovery cache for a topic."""
    papers = service.collect_papers_for_topic(topic, field, academic_level)
    logger.info("collect_papers done", extra={"topic": topic, "count": len(papers)})
    return {"topic": topic, "count": len(papers)}
