from __future__ import annotations

import html
import os
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from ..models import RawRecord
from ..normalizer import normalize_doi
from .base import SourceAdapter

CROSSREF_BASE = "https://api.crossref.org/works"
SELECT_FIELDS = ",".join([
    "DOI", "title", "issued", "published-print", "published-online", "journal-issue",
    "author", "container-title", "volume", "issue", "page", "abstract", "URL",
    "is-referenced-by-count", "license", "type",
])

_TAG_RE = re.compile(r"<[^>]+>")


def _mailto() -> str:
    # Prefer dedicated CROSSREF_MAILTO; fallback to OPENALEX_EMAIL
    return os.environ.get("CROSSREF_MAILTO") or os.environ.get("OPENALEX_EMAIL") or "devnull@example.com"


def _year_window(year: Optional[int], slack: int = 1) -> Optional[Tuple[str, str]]:
    """(from, until) YYYY-MM-DD window around ``year``."""
    if year is None:
        return None
    try:
        y = int(year)
    except (TypeError, ValueError):
        return None
    return (f"{y - slack}-01-01", f"{y + slack}-12-31")


def _first_year_from_date_parts(blob: Optional[dict]) -> Optional[int]:
    if not blob:
        return None
    try:
        parts = blob.get("date-parts") or []
        if parts and isinstance(parts[0], list) and parts[0] and parts[0][0] is not None:
            return int(parts[0][0])
    except (TypeError, ValueError):
        return None
    return None


def _safe_get_issued_year(item: dict) -> Optional[int]:
    """
    Prefer the journal issue's print year when available; fall back to Crossref's
    canonical published/issued dates.
    """
    journal_issue = item.get("journal-issue") or {}
    for blob in (
        journal_issue.get("published-print"),
        journal_issue.get("published-online"),
        item.get("published-print"),
        item.get("issued"),
        item.get("published-online"),
    ):
        year = _first_year_from_date_parts(blob)
        if year is not None:
            return year
    return None


def _first(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return None
    s = " ".join(html.unescape(str(value)).split())
    return s or None


def _author_names(authors: Optional[List[Dict[str, Any]]]) -> List[str]:
    out: List[str] = []
    for a in authors or []:
        given = (a.get("given") or "").strip()
        family = (a.get("family") or "").strip()
        if family:
            out.append(f"{given} {family}".strip())
        elif a.get("name"):
            out.append(str(a["name"]).strip())
    return out


def _strip_jats(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    cleaned = " ".join(_TAG_RE.sub(" ", html.unescape(text)).split())
    if cleaned.lower().startswith("abstract "):
        cleaned = cleaned[len("abstract "):]
    return cleaned or None


def normalize(item: Dict[str, Any]) -> Optional[RawRecord]:
    """Crossref ``message`` / ``items[]`` work -> RawRecord."""
    doi = normalize_doi(item.get("DOI"))
    title = _first(item.get("title"))
    if not title and not doi:
        return None
    return RawRecord(
        title=title,
        authors=_author_names(item.get("author")),
        year=_safe_get_issued_year(item),
        venue=_first(item.get("container-title")),
        doi=doi,
        url=item.get("URL") or (f"https://doi.org/{doi}" if doi else None),
        abstract=_strip_jats(item.get("abstract")),
        citation_count=int(item.get("is-referenced-by-count") or 0),
        is_open_access=False,
        source_name=CrossrefAdapter.name,
        source_record_id=doi or "",
        volume=_first(item.get("volume")),
        issue=_first(item.get("issue")),
        pages=_first(item.get("page")),
    )


class CrossrefAdapter(SourceAdapter):
    """DOI registry."""
    name = "crossref"
    base_url = CROSSREF_BASE
    default_min_interval = 0.1

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params = {"select": SELECT_FIELDS, "mailto": _mailto()}
        params.update({k: v for k, v in extra.items() if v is not None})
        return params

    def _items(self, params: Dict[str, Any]) -> List[RawRecord]:
        data = self._get_json(self.base_url, params=params)
        items = ((data or {}).get("message") or {}).get("items") or []
        return self._normalize_all(items, normalize)

    def search_by_doi(self, doi: str) -> List[RawRecord]:
        d = normalize_doi(doi)
        if not d:
            return []
        data = self._get_json(f"{self.base_url}/{quote(d, safe='/')}", params={"mailto": _mailto()})
        message = (data or {}).get("message")
        rec = normalize(message) if isinstance(message, dict) else None
        return [rec] if rec else []

    def search_by_title(self, title: str, authors: List[str], year: Optional[int]) -> List[RawRecord]:
        params = self._params(**{"query.bibliographic": title, "rows": 10})
        a = next((a for a in authors if a and a.strip()), None)
        if a:
            params["query.author"] = a
        ywin = _year_window(year)
        if ywin:
            params["filter"] = f"from-pub-date:{ywin[0]},until-pub-date:{ywin[1]}"
        return self._items(params)

    def search_by_author_year(self, author: str, year: int) -> List[RawRecord]:
        ywin = _year_window(year, slack=0)
        params = self._params(**{"query.author": author, "rows": 10})
        if ywin:
            params["filter"] = f"from-pub-date:{ywin[0]},until-pub-date:{ywin[1]}"
        return self._items(params)

    def search_topic(self, topic: str, limit: int) -> List[RawRecord]:
        params = self._params(query=topic, rows=limit, sort="relevance", order="desc")
        return self._items(params)
