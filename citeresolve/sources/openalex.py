from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

from ..models import RawRecord
from ..normalizer import normalize_doi
from .base import SourceAdapter

OPENALEX_BASE = "https://api.openalex.org"
OPENALEX_MAILTO = os.environ.get("OPENALEX_EMAIL") or os.environ.get("OPENALEX_MAILTO") or "changeme@example.com"

_FILTER_UNSAFE = re.compile(r"[,:|]+")


def _strip_prefix(value: Optional[str], prefix: str) -> Optional[str]:
    if not value:
        return None
    v = str(value)
    return v[len(prefix):] if v.startswith(prefix) else v


def abstract_from_inverted_index(index: Optional[Dict[str, List[int]]]) -> Optional[str]:
    """Rebuild abstract text from OpenAlex's ``abstract_inverted_index``."""
    if not index:
        return None
    positions = []
    for word, idxs in index.items():
        for i in idxs or []:
            positions.append((int(i), word))
    if not positions:
        return None
    positions.sort()
    return " ".join(w for _, w in positions)


def _pages(biblio: Dict[str, Any]) -> Optional[str]:
    first, last = biblio.get("first_page"), biblio.get("last_page")
    if first and last and first != last:
        return f"{first}-{last}"
    return first or None


def normalize(work: Dict[str, Any]) -> Optional[RawRecord]:
    title = work.get("display_name") or work.get("title")
    doi = normalize_doi(work.get("doi"))
    if not title and not doi:
        return None
    source = ((work.get("primary_location") or {}).get("source") or {})
    venue = source.get("display_name") or ((work.get("host_venue") or {}).get("display_name"))
    ids = work.get("ids") or {}
    biblio = work.get("biblio") or {}
    authors = [
        ((a.get("author") or {}).get("display_name") or a.get("raw_author_name") or "").strip()
        for a in (work.get("authorships") or [])
    ]
    year = work.get("publication_year")
    return RawRecord(
        title=" ".join(str(title).split()) if title else None,
        authors=[a for a in authors if a],
        year=int(year) if year else None,
        venue=venue or None,
        doi=doi,
        url=((work.get("primary_location") or {}).get("landing_page_url")) or work.get("id"),
        abstract=abstract_from_inverted_index(work.get("abstract_inverted_index")),
        citation_count=int(work.get("cited_by_count") or 0),
        is_open_access=bool((work.get("open_access") or {}).get("is_oa")),
        source_name=OpenAlexAdapter.name,
        source_record_id=_strip_prefix(work.get("id"), "https://openalex.org/") or "",
        pubmed_id=_strip_prefix(ids.get("pmid"), "https://pubmed.ncbi.nlm.nih.gov/"),
        volume=biblio.get("volume") or None,
        issue=biblio.get("issue") or None,
        pages=_pages(biblio),
    )


class OpenAlexAdapter(SourceAdapter):
    """Open scholarly index."""
    name = "openalex"
    base_url = OPENALEX_BASE
    default_min_interval = 0.1

    def _works(self, **params: Any) -> List[RawRecord]:
        params = {k: v for k, v in params.items() if v is not None}
        params.setdefault("mailto", OPENALEX_MAILTO)
        data = self._get_json(f"{self.base_url}/works", params=params)
        return self._normalize_all((data or {}).get("results"), normalize)

    def search_by_doi(self, doi: str) -> List[RawRecord]:
        d = normalize_doi(doi)
        if not d:
            return []
        return self._works(filter=f"doi:https://doi.org/{d}", per_page=1)

    def search_by_pubmed_id(self, pubmed_id: str) -> List[RawRecord]:
        return self._works(filter=f"pmid:{pubmed_id}", per_page=1)

    def search_by_title(self, title: str, authors: List[str], year: Optional[int]) -> List[RawRecord]:
        filters = [f"title.search:{_FILTER_UNSAFE.sub(' ', title).strip()}"]
        if year is not None:
            filters.append(f"publication_year:{int(year) - 1}-{int(year) + 1}")
        return self._works(filter=",".join(filters), per_page=10)

    def search_by_author_year(self, author: str, year: int) -> List[RawRecord]:
        name = _FILTER_UNSAFE.sub(" ", author).strip()
        return self._works(filter=f"raw_author_name.search:{name},publication_year:{int(year)}", per_page=10)

    def search_topic(self, topic: str, limit: int) -> List[RawRecord]:
        return self._works(search=topic, per_page=limit)
