from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple

from .models import StructuredQuery
from .normalizer import normalize_arxiv_id, normalize_doi
from .scoring import normalize_title, split_name


class Cache(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        ...


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def encode_json(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str).encode("utf-8")


def decode_json(blob: Optional[bytes]) -> Optional[Any]:
    if blob is None:
        return None
    if isinstance(blob, (bytearray, memoryview)):
        blob = bytes(blob)
    return json.loads(blob.decode("utf-8"))


# -----------------------
# Key derivation
# -----------------------
def identity_key(
    *,
    doi: Optional[str] = None,
    pubmed_id: Optional[str] = None,
    arxiv_id: Optional[str] = None,
    title: Optional[str] = None,
    authors: Iterable[str] = (),
    year: Optional[int] = None,
) -> str:
    """doi > pmid > arxiv > hash(normalized title + author last names + year)."""
    d = normalize_doi(doi)
    if d:
        return f"doi:{d}"
    if pubmed_id and str(pubmed_id).strip():
        return f"pmid:{str(pubmed_id).strip()}"
    a = normalize_arxiv_id(arxiv_id)
    if a:
        return f"arxiv:{a}"
    last_names = [split_name(x)[1] for x in authors if x]
    blob = "|".join([normalize_title(title), ",".join(n for n in last_names if n), str(year or "")])
    return f"text:{_md5(blob)}"


def query_identity_key(query: StructuredQuery) -> str:
    return identity_key(
        doi=query.doi,
        pubmed_id=query.pubmed_id,
        arxiv_id=query.arxiv_id,
        title=query.title,
        authors=query.authors,
        year=query.year,
    )


def verification_cache_key(identity: str) -> str:
    return f"citation:{_md5(identity)}"


def batch_result_key(correlation_id: str, raw_text: str) -> str:
    return f"citation:verified:{correlation_id}:{_md5(raw_text or '')}"


def discovery_cache_key(topic: str, field: str, academic_level: str) -> str:
    return f"papers:{_md5(f'{topic}_{field}_{academic_level}')}"


# -----------------------
# Implementations
# -----------------------
class MemoryCache:
    """
    Thread-safe in-process cache with per-entry TTL. Expired entries are removed
    when a lookup finds them, never by a sweeper.
    """
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[bytes, float]] = {}

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            hit = self._items.get(key)
            if hit is None:
                return None
            value, expires_at = hit
            if expires_at <= self._clock():
                del self._items[key]
                return None
            return value

    def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with self._lock:
            self._items[key] = (bytes(value), self._clock() + int(ttl_seconds))

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class LayeredCache:
    """In-process L1 in front of a durable L2 (e.g. the DynamoDB api_cache table)."""
    def __init__(self, l1: Cache, l2: Cache, *, l1_ttl_seconds: int = 300) -> None:
        self.l1 = l1
        self.l2 = l2
        self.l1_ttl_seconds = l1_ttl_seconds

    def get(self, key: str) -> Optional[bytes]:
        hit = self.l1.get(key)
        if hit is not None:
            return hit
        hit = self.l2.get(key)
        if hit is not None:
            self.l1.put(key, hit, self.l1_ttl_seconds)
        return hit

    def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self.l2.put(key, value, ttl_seconds)
        self.l1.put(key, value, min(ttl_seconds, self.l1_ttl_seconds))
