from __future__ import annotations

import logging
import re
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from typing import Dict, List, Mapping, Optional

from .cache import Cache, decode_json, discovery_cache_key, encode_json
from .errors import AdapterError
from .logging_setup import get_logger, log_event
from .models import RawRecord, ScoredCandidate
from .runtime_config import RUNTIME_CONFIG, DiscoveryConfig
from .scoring import quality_score, sort_candidates
from .sources.base import SourceAdapter

logger = get_logger(__name__)

# fan-out order; results are merged in this order, whatever finishes first
SOURCE_ORDER = ("semantic_scholar", "openalex", "arxiv", "pubmed", "crossref")
MEDICAL_FIELDS = (
    "medicine", "health", "biology", "biochemistry", "pharmacology",
    "nursing", "public health", "epidemiology", "medical",
)
TOPIC_STOPWORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "into", "using", "use",
    "system", "study", "research", "analysis", "development", "challenges",
    "technical", "technological", "based",
})
S2_COOLDOWN_KEY = "discovery:cooldown:semantic_scholar"
S2_COOLDOWN_SECONDS = 15 * 60

_NON_ALNUM_SPACE = re.compile(r"[^a-z0-9\s]+")
_WS = re.compile(r"\s+")


def is_medical_field(field: Optional[str]) -> bool:
    f = (field or "").lower()
    return any(m in f for m in MEDICAL_FIELDS)


def build_search_queries(topic: str) -> List[str]:
    """Progressively simpler queries: topic, cleaned topic, then 10/6/4 keywords."""
    topic = (topic or "").strip()
    if not topic:
        return []
    clean = _WS.sub(" ", _NON_ALNUM_SPACE.sub(" ", topic.lower())).strip()

    keywords: List[str] = []
    for w in clean.split(" "):
        if len(w) < 3 or w in TOPIC_STOPWORDS or w in keywords:
            continue
        keywords.append(w)

    queries = [topic, clean]
    if keywords:
        queries.extend(" ".join(keywords[:n]) for n in (10, 6, 4))
    out: List[str] = []
    for q in queries:
        if q and q.strip() and q not in out:
            out.append(q)
    return out


def dedup_title_key(title: Optional[str]) -> str:
    return _WS.sub(" ", _NON_ALNUM_SPACE.sub("", (title or "").lower())).strip()


def _rank(c: ScoredCandidate):
    return (c.confidence, c.record.citation_count or 0)


def deduplicate_and_rank(
    records: List[RawRecord],
    *,
    min_quality: float = 0.3,
    max_papers: int = 20,
    current_year: Optional[int] = None,
) -> List[ScoredCandidate]:
    """
    Keep the highest-quality record per normalized title, drop anything under
    ``min_quality``, sort best first and truncate to ``max_papers``.
    """
    best: Dict[str, ScoredCandidate] = {}
    for rec in records:
        key = dedup_title_key(rec.title)
        if not key:
            continue
        cand = ScoredCandidate(record=rec, confidence=quality_score(rec, current_year), source=rec.source_name)
        held = best.get(key)
        if held is None or _rank(cand) > _rank(held):
            best[key] = cand
    kept = [c for c in best.values() if c.confidence >= min_quality]
    return sort_candidates(kept)[:max_papers]


class PaperCollector:
    def __init__(
        self,
        adapters: Mapping[str, SourceAdapter],
        cache: Cache,
        *,
        config: Optional[DiscoveryConfig] = None,
    ) -> None:
        self.adapters = dict(adapters)
        self.cache = cache
        self.config = config or RUNTIME_CONFIG.discovery

    def collect_papers_for_topic(self, topic: str, field: str, academic_level: str) -> List[RawRecord]:
        return [c.record for c in self.collect_ranked(topic, field, academic_level)]

    def collect_ranked(self, topic: str, field: str, academic_level: str) -> List[ScoredCandidate]:
        if not (topic or "").strip():
            return []
        key = discovery_cache_key(topic, field, academic_level)
        cached = self._cache_get(key)
        if cached is not None:
            log_event(logger, logging.INFO, "paper collection cache hit", topic=topic, count=len(cached))
            return cached

        started = time.monotonic()
        records = self._fan_out(topic, field)
        ranked = deduplicate_and_rank(
            records, min_quality=self.config.min_quality, max_papers=self.config.max_papers
        )
        log_event(logger, logging.INFO, "papers collected", topic=topic, field=field,
                  academic_level=academic_level, raw=len(records), kept=len(ranked),
                  elapsed_ms=int((time.monotonic() - started) * 1000))
        if ranked:
            try:
                self.cache.put(key, encode_json([c.to_dict() for c in ranked]), self.config.cache_ttl_seconds)
            except Exception as e:
                log_event(logger, logging.ERROR, "paper collection cache write failed", exc_info=True,
                          topic=topic, error=str(e))
        return ranked

    def sources_for(self, field: str) -> List[str]:
        names = [n for n in SOURCE_ORDER if n in self.adapters]
        names += [n for n in self.adapters if n not in names]
        if not is_medical_field(field):
            names = [n for n in names if n != "pubmed"]
        if "semantic_scholar" in names and self._s2_cooling_down():
            log_event(logger, logging.INFO, "semantic scholar rate-limited; skipping this cycle")
            names.remove("semantic_scholar")
        return names

    def _collect_from(self, name: str, queries: List[str]) -> List[RawRecord]:
        adapter = self.adapters[name]
        limit = self.config.limit_for(name)
        out: List[RawRecord] = []
        for q in queries:
            out.extend(adapter.search_topic(q, limit))
            if len(out) >= limit:
                break
        return out[:limit]

    def _fan_out(self, topic: str, field: str) -> List[RawRecord]:
        queries = build_search_queries(topic)
        names = self.sources_for(field)
        if not names or not queries:
            return []

        results: Dict[str, List[RawRecord]] = {}
        ex = ThreadPoolExecutor(max_workers=max(1, min(self.config.max_workers, len(names))),
                                thread_name_prefix="discover")
        try:
            futs: Dict[Future, str] = {ex.submit(self._collect_from, n, queries): n for n in names}
            try:
                for fut in as_completed(futs, timeout=self.config.adapter_timeout_seconds):
                    self._take(futs[fut], fut, results)
            except FuturesTimeout:
                for fut, name in futs.items():
                    if fut.done():
                        if name not in results:
                            self._take(name, fut, results)
                        continue
                    fut.cancel()
                    log_event(logger, logging.WARNING, "source timed out", source=name,
                              timeout=self.config.adapter_timeout_seconds)
        finally:
            # stragglers finish in the background
            ex.shutdown(wait=False)

        merged: List[RawRecord] = []
        for name in names:
            merged.extend(results.get(name, []))
        return merged

    def _take(self, name: str, fut: Future, results: Dict[str, List[RawRecord]]) -> None:
        try:
            results[name] = fut.result()
        except Exception as e:
            results[name] = []
            self._source_failed(name, e)

    def _source_failed(self, name: str, err: Exception) -> None:
        status = err.status if isinstance(err, AdapterError) else None
        log_event(logger, logging.WARNING, "source collection failed", source=name, status=status, error=str(err))
        if name == "semantic_scholar" and status == 429:
            try:
                self.cache.put(S2_COOLDOWN_KEY, b"1", S2_COOLDOWN_SECONDS)
            except Exception as e:
                log_event(logger, logging.WARNING, "cooldown marker write failed", error=str(e))

    def _s2_cooling_down(self) -> bool:
        try:
            return self.cache.get(S2_COOLDOWN_KEY) is not None
        except Exception as e:
            log_event(logger, logging.WARNING, "cooldown marker read failed", error=str(e))
            return False

    def _cache_get(self, key: str) -> Optional[List[ScoredCandidate]]:
        try:
            blob = self.cache.get(key)
        except Exception as e:
            log_event(logger, logging.WARNING, "paper collection cache read failed", error=str(e))
            return None
        if blob is None:
            return None
        try:
            return [ScoredCandidate.from_dict(d) for d in (decode_json(blob) or [])]
        except (ValueError, AttributeError, TypeError) as e:
            log_event(logger, logging.WARNING, "paper collection cache entry unreadable", error=str(e))
            return None
