from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from ..models import RawRecord
from ..normalizer import normalize_arxiv_id, normalize_doi
from .base import SourceAdapter

S2_BASE = "https://api.semanticscholar.org/graph/v1"
S2_FIELDS = ",".join([
    "paperId", "title", "authors", "year", "venue", "journal", "citationCount",
    "abstract", "url", "externalIds", "isOpenAccess",
])


def normalize(paper: Dict[str, Any]) -> Optional[RawRecord]:
    title = paper.get("title")
    if not title:
        return None
    ext = paper.get("externalIds") or {}
    journal = paper.get("journal") or {}
    year = paper.get("year")
    return RawRecord(
        title=" ".join(str(title).split()),
        authors=[a.get("name", "").strip() for a in (paper.get("authors") or []) if a.get("name")],
        year=int(year) if year else None,
        venue=(paper.get("venue") or journal.get("name") or None),
        doi=normalize_doi(ext.get("DOI")),
        url=paper.get("url"),
        abstract=paper.get("abstract") or None,
        citation_count=int(paper.get("citationCount") or 0),
        is_open_access=bool(paper.get("isOpenAccess")),
        source_name=SemanticScholarAdapter.name,
        source_record_id=str(paper.get("paperId") or ""),
        pubmed_id=str(ext["PubMed"]) if ext.get("PubMed") else None,
        arxiv_id=ext.get("ArXiv") or None,
        volume=(str(journal["volume"]).strip() if journal.get("volume") else None),
        pages=(str(journal["pages"]).strip() if journal.get("pages") else None),
    )


class SemanticScholarAdapter(SourceAdapter):
    """Citation-graph service (Semantic Scholar Graph API v1)."""
    name = "semantic_scholar"
    base_url = S2_BASE
    default_min_interval = 1.0

    def __init__(self, *, api_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        key = api_key if api_key is not None else os.environ.get("S2_API_KEY")
        if key:
            self.session.headers.update({"x-api-key": key})

    def _paper(self, paper_ref: str) -> List[RawRecord]:
        data = self._get_json(f"{self.base_url}/paper/{paper_ref}", params={"fields": S2_FIELDS})
        rec = normalize(data) if isinstance(data, dict) else None
        return [rec] if rec else []

    def _search(self, query: str, limit: int, year: Optional[str] = None) -> List[RawRecord]:
        params: Dict[str, Any] = {"query": query, "limit": max(1, min(int(limit), 100)), "fields": S2_FIELDS}
        if year:
            params["year"] = year
        data = self._get_json(f"{self.base_url}/paper/search", params=params)
        return self._normalize_all((data or {}).get("data"), normalize)

    def search_by_doi(self, doi: str) -> List[RawRecord]:
        d = normalize_doi(doi)
        return self._paper(f"DOI:{d}") if d else []

    def search_by_pubmed_id(self, pubmed_id: str) -> List[RawRecord]:
        return self._paper(f"PMID:{pubmed_id}")

    def search_by_arxiv_id(self, arxiv_id: str) -> List[RawRecord]:
        a = normalize_arxiv_id(arxiv_id)
        return self._paper(f"ARXIV:{a}") if a else []

    def search_by_title(self, title: str, authors: List[str], year: Optional[int]) -> List[RawRecord]:
        window = f"{int(year) - 1}-{int(year) + 1}" if year is not None else None
        return self._search(title, 10, window)

    def search_by_author_year(self, author: str, year: int) -> List[RawRecord]:
        return self._search(author, 10, str(int(year)))

    def search_topic(self, topic: str, limit: int) -> List[RawRecord]:
        return self._search(topic, limit)
