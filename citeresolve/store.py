from __future__ import annotations

import dataclasses
import datetime as dt
import hashlib
import threading
from typing import Dict, Optional, Protocol

from .cache import identity_key
from .models import CitationRecord, RawRecord
from .normalizer import normalize_arxiv_id, normalize_doi


class RecordStore(Protocol):
    def find_by_identifier(
        self,
        *,
        doi: Optional[str] = None,
        pubmed_id: Optional[str] = None,
        arxiv_id: Optional[str] = None,
    ) -> Optional[CitationRecord]:
        ...

    def upsert(self, data: CitationRecord) -> CitationRecord:
        ...


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def citation_id_for(citation_key: str) -> str:
    return hashlib.sha1(citation_key.encode("utf-8")).hexdigest()[:20]


def citation_record_from_match(record: RawRecord, *, confidence: float, source: str) -> CitationRecord:
    """Build the canonical record for a confident match."""
    key = identity_key(
        doi=record.doi,
        pubmed_id=record.pubmed_id,
        arxiv_id=record.arxiv_id,
        title=record.title,
        authors=record.authors,
        year=record.year,
    )
    now = _now_iso()
    return CitationRecord(
        citation_id=citation_id_for(key),
        citation_key=key,
        title=record.title,
        authors=list(record.authors),
        year=record.year,
        journal=record.venue,
        volume=record.volume,
        issue=record.issue,
        pages=record.pages,
        doi=normalize_doi(record.doi),
        pubmed_id=record.pubmed_id,
        arxiv_id=record.arxiv_id,
        abstract=record.abstract,
        url=record.url,
        source_api=source,
        confidence_score=float(confidence),
        verification_status="verified",
        created_at=now,
        updated_at=now,
        last_verified_at=now,
    )


class MemoryRecordStore:
    """Thread-safe in-process record store, keyed by citation_key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, CitationRecord] = {}
        self._by_ident: Dict[str, str] = {}

    @staticmethod
    def _ident_keys(rec: CitationRecord):
        if rec.doi:
            yield f"doi:{normalize_doi(rec.doi)}"
        if rec.pubmed_id:
            yield f"pmid:{rec.pubmed_id}"
        if rec.arxiv_id:
            yield f"arxiv:{normalize_arxiv_id(rec.arxiv_id)}"

    def find_by_identifier(self, *, doi=None, pubmed_id=None, arxiv_id=None) -> Optional[CitationRecord]:
        probes = []
        if doi:
            probes.append(f"doi:{normalize_doi(doi)}")
        if pubmed_id:
            probes.append(f"pmid:{pubmed_id}")
        if arxiv_id:
            probes.append(f"arxiv:{normalize_arxiv_id(arxiv_id)}")
        with self._lock:
            for probe in probes:
                key = self._by_ident.get(probe)
                if key and key in self._records:
                    return dataclasses.replace(self._records[key])
        return None

    def upsert(self, data: CitationRecord) -> CitationRecord:
        now = _now_iso()
        with self._lock:
            existing = self._records.get(data.citation_key)
            merged = dataclasses.replace(
                data,
                citation_id=existing.citation_id if existing else (data.citation_id or citation_id_for(data.citation_key)),
                created_at=existing.created_at if existing else (data.created_at or now),
                updated_at=now,
                last_verified_at=data.last_verified_at or now,
            )
            self._records[data.citation_key] = merged
            for ident in self._ident_keys(merged):
                self._by_ident[ident] = data.citation_key
            return dataclasses.replace(merged)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
