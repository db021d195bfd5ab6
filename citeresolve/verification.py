"""
Citation verification orchestrator.

One request walks Parsing -> CacheCheck -> Searching -> Scoring -> Resolved:

* the raw text is normalized; a query with no identifier, no title and no
  author+year pair fails straight away with "insufficient data";
* the identity key (doi > pmid > arxiv > text hash) is looked up in the cache and
  a hit is returned as Verified with confidence 1.0 and source "cache";
* adapters are called one at a time in an order derived from the identifiers the
  query carries (``adapter_order``), stopping as soon as one record reaches the
  early-exit score; a failing or slow adapter only contributes zero records;
* the best candidate is accepted when it clears ``confidence_threshold(query)``,
  in which case it is upserted into the record store and cached.

Batch verification goes through a task queue: ``queue_verification`` enqueues a
payload, the worker calls ``process_batch`` and results are read back with
``get_queued_result``.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .cache import (
    Cache,
    batch_result_key,
    decode_json,
    encode_json,
    query_identity_key,
    verification_cache_key,
)
from .errors import AdapterError, PersistenceError
from .logging_setup import get_logger, log_event
from .models import (
    REASON_INSUFFICIENT_DATA,
    REASON_INTERNAL_ERROR,
    REASON_NO_CONFIDENT_MATCH,
    CitationRecord,
    Failed,
    RawRecord,
    StructuredQuery,
    Verified,
    VerificationResult,
    result_from_dict,
)
from .normalizer import parse_citation
from .runtime_config import RUNTIME_CONFIG, VerificationConfig
from .scoring import confidence_threshold, score_candidates
from .sources.base import SourceAdapter
from .store import RecordStore, citation_record_from_match

logger = get_logger(__name__)

DEFAULT_ORDER = ("crossref", "semantic_scholar", "openalex", "pubmed")
IDENTIFIER_PRIORITY = (
    ("doi", ("crossref", "semantic_scholar", "openalex")),
    ("pubmed_id", ("pubmed", "semantic_scholar")),
    ("arxiv_id", ("semantic_scholar", "openalex", "arxiv")),
)
MERGE_FILL_FIELDS = (
    "title", "authors", "year", "journal", "volume", "issue", "pages",
    "doi", "pubmed_id", "arxiv_id", "abstract", "url",
)


class TaskQueue(Protocol):
    def enqueue(self, payload: Dict[str, Any]) -> None:
        ...


def adapter_order(query: StructuredQuery, available: Optional[Iterable[str]] = None) -> List[str]:
    """
    Deterministic adapter priority for ``query``: identifier-specific sources first
    (doi, then pmid, then arxiv), then the default order. Duplicates keep their first
    position; names not in ``available`` are dropped.
    """
    wanted: List[str] = []
    for attr, names in IDENTIFIER_PRIORITY:
        if getattr(query, attr):
            wanted.extend(names)
    wanted.extend(DEFAULT_ORDER)

    allowed = set(available) if available is not None else None
    out: List[str] = []
    for name in wanted:
        if name in out:
            continue
        if allowed is not None and name not in allowed:
            continue
        out.append(name)
    return out


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _merge_into(existing: CitationRecord, record: CitationRecord) -> CitationRecord:
    """Re-key ``record`` onto ``existing``, keeping stored values the new match lacks."""
    kept = {f: getattr(existing, f) for f in MERGE_FILL_FIELDS if not getattr(record, f)}
    return dataclasses.replace(
        record, citation_key=existing.citation_key, citation_id=existing.citation_id, **kept
    )


class CitationVerifier:
    def __init__(
        self,
        adapters: Mapping[str, SourceAdapter],
        cache: Cache,
        store: RecordStore,
        *,
        queue: Optional[TaskQueue] = None,
        config: Optional[VerificationConfig] = None,
        max_workers: int = 8,
    ) -> None:
        self.adapters = dict(adapters)
        self.cache = cache
        self.store = store
        self.queue = queue
        self.config = config or RUNTIME_CONFIG.verification
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="verify")

    def close(self) -> None:
        # in-flight adapter calls are left to finish on their own
        self._executor.shutdown(wait=False)

    # -----------------------
    # Synchronous path
    # -----------------------
    def verify_citation(self, raw_text: str, correlation_id: Optional[str] = None) -> VerificationResult:
        started = time.monotonic()
        try:
            return self._verify(raw_text, correlation_id, started)
        except Exception as e:
            log_event(logger, logging.ERROR, "verification aborted", exc_info=True,
                      correlation_id=correlation_id, error=str(e))
            return Failed(
                elapsed_ms=_elapsed_ms(started),
                reason=REASON_INTERNAL_ERROR,
                errors=[f"{type(e).__name__}: {e}"],
            )

    def _verify(self, raw_text: str, correlation_id: Optional[str], started: float) -> VerificationResult:
        query = parse_citation(raw_text)
        if query.is_empty:
            log_event(logger, logging.INFO, "citation has nothing searchable",
                      correlation_id=correlation_id, format=query.format)
            return Failed(elapsed_ms=_elapsed_ms(started), reason=REASON_INSUFFICIENT_DATA)

        identity = query_identity_key(query)
        cached = self._cache_lookup(identity)
        if cached is not None:
            log_event(logger, logging.INFO, "citation cache hit",
                      correlation_id=correlation_id, citation_key=cached.citation_key)
            return Verified(record=cached, confidence=1.0, source="cache", elapsed_ms=_elapsed_ms(started))

        responses, errors = self._search(query, correlation_id)
        candidates = score_candidates(query, responses)
        raw_responses = {name: [r.to_dict() for r in recs] for name, recs in responses.items()}
        threshold = confidence_threshold(query)
        best = candidates[0] if candidates else None

        if best is not None and best.confidence >= threshold:
            record = citation_record_from_match(best.record, confidence=best.confidence, source=best.source)
            record = self._persist(record, identity, correlation_id)
            log_event(logger, logging.INFO, "citation verified", correlation_id=correlation_id,
                      source=best.source, confidence=best.confidence, threshold=threshold)
            return Verified(
                record=record,
                confidence=best.confidence,
                source=best.source,
                raw_responses=raw_responses,
                elapsed_ms=_elapsed_ms(started),
            )

        log_event(logger, logging.INFO, "no confident match", correlation_id=correlation_id,
                  best=(best.confidence if best else None), threshold=threshold, candidates=len(candidates))
        return Failed(
            suggestions=candidates[: self.config.max_suggestions],
            raw_responses=raw_responses,
            elapsed_ms=_elapsed_ms(started),
            reason=REASON_NO_CONFIDENT_MATCH,
            errors=errors,
        )

    def _search(self, query: StructuredQuery, correlation_id: Optional[str]):
        responses: Dict[str, List[RawRecord]] = {}
        errors: List[str] = []
        for name in adapter_order(query, self.adapters):
            records = self._call_adapter(name, query, errors, correlation_id)
            if not records:
                continue
            responses[name] = records
            top = score_candidates(query, {name: records})[0].confidence
            if top >= self.config.early_exit_score:
                log_event(logger, logging.INFO, "early exit on strong match",
                          correlation_id=correlation_id, source=name, score=top)
                break
        return responses, errors

    def _call_adapter(self, name: str, query: StructuredQuery, errors: List[str],
                      correlation_id: Optional[str]) -> List[RawRecord]:
        adapter = self.adapters[name]
        future = self._executor.submit(adapter.search, query)
        try:
            return list(future.result(timeout=self.config.adapter_timeout_seconds) or [])
        except FuturesTimeout:
            future.cancel()
            errors.append(f"{name}: timed out after {self.config.adapter_timeout_seconds}s")
            log_event(logger, logging.WARNING, "adapter timed out", source=name,
                      correlation_id=correlation_id, query_format=query.format)
        except AdapterError as e:
            errors.append(str(e))
            log_event(logger, logging.WARNING, "adapter failed", source=name, status=e.status,
                      correlation_id=correlation_id, error=e.message, query_format=query.format)
        except Exception as e:
            errors.append(f"{name}: {e}")
            log_event(logger, logging.WARNING, "adapter raised", source=name, exc_info=True,
                      correlation_id=correlation_id, error=str(e), query_format=query.format)
        return []

    # -----------------------
    # Cache / store
    # -----------------------
    def _cache_lookup(self, identity: str) -> Optional[CitationRecord]:
        try:
            blob = self.cache.get(verification_cache_key(identity))
        except Exception as e:
            log_event(logger, logging.WARNING, "cache read failed", identity=identity, error=str(e))
            return None
        if blob is None:
            return None
        try:
            payload = decode_json(blob) or {}
            return CitationRecord.from_dict(payload.get("data") or {})
        except (ValueError, AttributeError) as e:
            log_event(logger, logging.WARNING, "cache entry unreadable", identity=identity, error=str(e))
            return None

    def _persist(self, record: CitationRecord, identity: str, correlation_id: Optional[str]) -> CitationRecord:
        """Upsert then cache. Failures are logged and never downgrade the result."""
        try:
            existing = None
            if record.doi or record.pubmed_id or record.arxiv_id:
                existing = self.store.find_by_identifier(
                    doi=record.doi, pubmed_id=record.pubmed_id, arxiv_id=record.arxiv_id
                )
            if existing is not None and existing.citation_key != record.citation_key:
                record = _merge_into(existing, record)
            record = self.store.upsert(record)
        except Exception as e:
            log_event(logger, logging.ERROR, "record store write failed", exc_info=True,
                      correlation_id=correlation_id, citation_key=record.citation_key, error=str(e))

        payload = encode_json({"citation_id": record.citation_id, "data": record.to_dict()})
        for key in dict.fromkeys((verification_cache_key(identity), verification_cache_key(record.citation_key))):
            try:
                self.cache.put(key, payload, self.config.cache_ttl_seconds)
            except Exception as e:
                log_event(logger, logging.ERROR, "cache write failed", exc_info=True,
                          correlation_id=correlation_id, cache_key=key, error=str(e))
        return record

    # -----------------------
    # Batch path
    # -----------------------
    def queue_verification(self, raw_citations: Sequence[str], correlation_id: str) -> None:
        if self.queue is None:
            raise RuntimeError("no task queue configured for batch verification")
        citations = [str(c) for c in raw_citations if c is not None and str(c).strip()]
        if not citations:
            return
        self.queue.enqueue({"citations": citations, "correlation_id": correlation_id})
        log_event(logger, logging.INFO, "batch verification queued",
                  correlation_id=correlation_id, count=len(citations))

    def process_batch(self, payload: Mapping[str, Any]) -> Dict[str, int]:
        """
        Worker side of ``queue_verification``. Items whose result is already stored
        are skipped, so re-running a batch only redoes what is missing. Raises
        ``PersistenceError`` after the whole batch if any result could not be stored.
        """
        correlation_id = str(payload.get("correlation_id") or "")
        counts = {"processed": 0, "skipped": 0, "failed": 0}
        for raw in payload.get("citations") or []:
            key = batch_result_key(correlation_id, raw)
            try:
                if self.cache.get(key) is not None:
                    counts["skipped"] += 1
                    continue
                result = self.verify_citation(raw, correlation_id=correlation_id)
                self.cache.put(key, encode_json(result.to_dict()), self.config.batch_result_ttl_seconds)
                counts["processed"] += 1
            except Exception as e:
                counts["failed"] += 1
                log_event(logger, logging.ERROR, "batch item failed", exc_info=True,
                          correlation_id=correlation_id, error=str(e))
        log_event(logger, logging.INFO, "batch verification done", correlation_id=correlation_id, **counts)
        if counts["failed"]:
            raise PersistenceError(f"{counts['failed']} batch result(s) not stored for {correlation_id}")
        return counts

    def get_queued_result(self, raw_text: str, correlation_id: str) -> Optional[VerificationResult]:
        blob = self.cache.get(batch_result_key(correlation_id, raw_text))
        if blob is None:
            return None
        return result_from_dict(decode_json(blob) or {})
