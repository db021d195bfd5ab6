from __future__ import annotations

import re
from typing import List, Optional

from lxml import etree

from ..errors import AdapterError
from ..models import RawRecord
from ..normalizer import normalize_doi
from .base import SourceAdapter

ARXIV_BASE = "https://export.arxiv.org/api/query"
NS = {"atom": "http://www.w3.org/2005/Atom", "arxiv": "http://arxiv.org/schemas/atom"}

_ABS_ID_RE = re.compile(r"arxiv\.org/abs/(.+)$")
_QUERY_UNSAFE = re.compile(r"[\"():]+")


def _text(entry: etree._Element, path: str) -> Optional[str]:
    el = entry.find(path, NS)
    if el is None or el.text is None:
        return None
    s = " ".join(el.text.split())
    return s or None


def normalize(entry: etree._Element) -> Optional[RawRecord]:
    """One Atom ``entry`` -> RawRecord."""
    entry_id = _text(entry, "atom:id") or ""
    m = _ABS_ID_RE.search(entry_id)
    if not m:
        # error feeds use http://arxiv.org/api/errors#... ids
        return None
    title = _text(entry, "atom:title")
    if not title:
        return None
    published = _text(entry, "atom:published") or ""
    url = None
    for link in entry.findall("atom:link", NS):
        if link.get("rel") == "alternate":
            url = link.get("href")
            break
    return RawRecord(
        title=title,
        authors=[n for n in (_text(a, "atom:name") for a in entry.findall("atom:author", NS)) if n],
        year=int(published[:4]) if published[:4].isdigit() else None,
        venue=_text(entry, "arxiv:journal_ref"),
        doi=normalize_doi(_text(entry, "arxiv:doi")),
        url=url or entry_id,
        abstract=_text(entry, "atom:summary"),
        citation_count=0,
        is_open_access=True,
        source_name=ArxivAdapter.name,
        source_record_id=m.group(1),
        arxiv_id=m.group(1),
    )


def parse_feed(xml: bytes) -> List[RawRecord]:
    try:
        root = etree.fromstring(xml, parser=etree.XMLParser(resolve_entities=False, no_network=True))
    except etree.XMLSyntaxError as e:
        raise AdapterError(ArxivAdapter.name, f"malformed Atom feed: {e}") from e
    out: List[RawRecord] = []
    for entry in root.findall("atom:entry", NS):
        rec = normalize(entry)
        if rec is not None:
            out.append(rec)
    return out


def _clean(text: str) -> str:
    return " ".join(_QUERY_UNSAFE.sub(" ", text).split())


class ArxivAdapter(SourceAdapter):
    """arXiv preprint server (Atom export API)."""
    name = "arxiv"
    base_url = ARXIV_BASE
    default_min_interval = 3.0

    def _query(self, **params) -> List[RawRecord]:
        body = self._get_bytes(self.base_url, params=params)
        return parse_feed(body) if body else []

    def search_by_arxiv_id(self, arxiv_id: str) -> List[RawRecord]:
        return self._query(id_list=arxiv_id.strip(), max_results=1)

    def search_by_title(self, title: str, authors: List[str], year: Optional[int]) -> List[RawRecord]:
        q = f'ti:"{_clean(title)}"'
        names = [_clean(a) for a in authors[:2] if a]
        if names:
            q += " AND (" + " OR ".join(f'au:"{n}"' for n in names) + ")"
        return self._query(search_query=q, max_results=10, sortBy="relevance", sortOrder="descending")

    def search_topic(self, topic: str, limit: int) -> List[RawRecord]:
        words = _clean(topic).split()[:8]
        if not words:
            return []
        q = " AND ".join(f"all:{w}" for w in words)
        return self._query(search_query=q, max_results=limit, sortBy="relevance", sortOrder="descending")
