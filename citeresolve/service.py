"""
Default wiring for the public operations.

``CITERESOLVE_BACKEND=dynamo`` keeps the cache (L1 memory + L2 ``api_cache`` table)
and the record store (``citations`` table) in DynamoDB; anything else uses
in-process stores. Batch verification needs the dynamo backend, since the worker
writes results where the caller later polls for them.
"""
from __future__ import annotations

import functools
import os
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from .cache import Cache, LayeredCache, MemoryCache
from .celery_app import CeleryTaskQueue
from .discovery import PaperCollector
from .models import RawRecord, VerificationResult
from .runtime_config import RUNTIME_CONFIG
from .sources import build_default_adapters
from .store import MemoryRecordStore, RecordStore
from .verification import CitationVerifier

load_dotenv()


def _backend() -> str:
    return os.environ.get("CITERESOLVE_BACKEND", "memory").strip().lower()


@functools.lru_cache(maxsize=1)
def get_cache() -> Cache:
    if _backend() == "dynamo":
        from .dynamo.api_cache_repo import ApiCacheRepo
        return LayeredCache(MemoryCache(), ApiCacheRepo())
    return MemoryCache()


@functools.lru_cache(maxsize=1)
def get_store() -> RecordStore:
    if _backend() == "dynamo":
        from .dynamo.citations_repo import CitationsRepo
        return CitationsRepo()
    return MemoryRecordStore()


@functools.lru_cache(maxsize=1)
def get_verifier() -> CitationVerifier:
    return CitationVerifier(
        build_default_adapters(RUNTIME_CONFIG),
        get_cache(),
        get_store(),
        queue=CeleryTaskQueue(),
        config=RUNTIME_CONFIG.verification,
    )


@functools.lru_cache(maxsize=1)
def get_collector() -> PaperCollector:
    return PaperCollector(build_default_adapters(RUNTIME_CONFIG), get_cache(), config=RUNTIME_CONFIG.discovery)


def verify_citation(raw_text: str, correlation_id: Optional[str] = None) -> VerificationResult:
    return get_verifier().verify_citation(raw_text, correlation_id)


def queue_verification(raw_citations: Sequence[str], correlation_id: str) -> None:
    get_verifier().queue_verification(raw_citations, correlation_id)


def get_queued_result(raw_text: str, correlation_id: str) -> Optional[VerificationResult]:
    return get_verifier().get_queued_result(raw_text, correlation_id)


def collect_papers_for_topic(topic: str, field: str, academic_level: str) -> List[RawRecord]:
    return get_collector().collect_papers_for_topic(topic, field, academic_level)
