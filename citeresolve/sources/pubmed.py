from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

from lxml import etree

from ..errors import AdapterError
from ..models import RawRecord
from ..normalizer import normalize_doi
from ..scoring import split_name
from .base import SourceAdapter

EUTILS_BASE = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

_YEAR_RE = re.compile(r"\b(1[89]|20)\d{2}\b")


def _text(el: Optional[etree._Element]) -> Optional[str]:
    if el is None:
        return None
    s = " ".join("".join(el.itertext()).split())
    return s or None


def _year(article: etree._Element) -> Optional[int]:
    for path in (
        "./MedlineCitation/Article/Journal/JournalIssue/PubDate/Year",
        "./MedlineCitation/Article/ArticleDate/Year",
        "./MedlineCitation/Article/Journal/JournalIssue/PubDate/MedlineDate",
    ):
        txt = _text(article.find(path))
        if txt:
            m = _YEAR_RE.search(txt)
            if m:
                return int(m.group(0))
    return None


def _authors(article: etree._Element) -> List[str]:
    out: List[str] = []
    for au in article.findall("./MedlineCitation/Article/AuthorList/Author"):
        last = _text(au.find("LastName"))
        if last:
            first = _text(au.find("ForeName")) or _text(au.find("Initials")) or ""
            out.append(f"{first} {last}".strip())
            continue
        collective = _text(au.find("CollectiveName"))
        if collective:
            out.append(collective)
    return out


def normalize(article: etree._Element) -> Optional[RawRecord]:
    """One ``PubmedArticle`` element from efetch -> RawRecord."""
    pmid = _text(article.find("./MedlineCitation/PMID"))
    art = article.find("./MedlineCitation/Article")
    if not pmid or art is None:
        return None
    ids = {
        (el.get("IdType") or "").lower(): _text(el)
        for el in article.findall("./PubmedData/ArticleIdList/ArticleId")
    }
    abstract_parts = [_text(p) for p in art.findall("./Abstract/AbstractText")]
    abstract = " ".join(p for p in abstract_parts if p) or None
    title = _text(art.find("ArticleTitle"))
    return RawRecord(
        title=title.rstrip(".") if title else None,
        authors=_authors(article),
        year=_year(article),
        venue=_text(art.find("./Journal/Title")),
        doi=normalize_doi(ids.get("doi")),
        url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
        abstract=abstract,
        citation_count=0,
        is_open_access=bool(ids.get("pmc")),
        source_name=PubMedAdapter.name,
        source_record_id=pmid,
        pubmed_id=pmid,
        volume=_text(art.find("./Journal/JournalIssue/Volume")),
        issue=_text(art.find("./Journal/JournalIssue/Issue")),
        pages=_text(art.find("./Pagination/MedlinePgn")),
    )


def parse_efetch(xml: bytes) -> List[RawRecord]:
    try:
        root = etree.fromstring(xml, parser=etree.XMLParser(resolve_entities=False, no_network=True))
    except etree.XMLSyntaxError as e:
        raise AdapterError(PubMedAdapter.name, f"malformed efetch XML: {e}") from e
    out: List[RawRecord] = []
    for article in root.iter("PubmedArticle"):
        rec = normalize(article)
        if rec is not None:
            out.append(rec)
    return out


class PubMedAdapter(SourceAdapter):
    """Biomedical index (NCBI E-utilities: esearch JSON, then efetch XML)."""
    name = "pubmed"
    base_url = EUTILS_BASE
    default_min_interval = 0.34

    def __init__(self, *, api_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key if api_key is not None else os.environ.get("NCBI_API_KEY")

    def _common(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"db": "pubmed", "tool": "citeresolve"}
        email = os.environ.get("CROSSREF_MAILTO") or os.environ.get("OPENALEX_EMAIL")
        if email:
            params["email"] = email
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def _esearch(self, term: str, retmax: int) -> List[str]:
        params = {**self._common(), "term": term, "retmode": "json", "retmax": retmax, "sort": "relevance"}
        data = self._get_json(f"{self.base_url}/esearch.fcgi", params=params)
        return [str(i) for i in (((data or {}).get("esearchresult") or {}).get("idlist") or [])]

    def _efetch(self, ids: List[str]) -> List[RawRecord]:
        if not ids:
            return []
        params = {**self._common(), "id": ",".join(ids), "retmode": "xml", "rettype": "abstract"}
        body = self._get_bytes(f"{self.base_url}/efetch.fcgi", params=params)
        return parse_efetch(body) if body else []

    def search_by_pubmed_id(self, pubmed_id: str) -> List[RawRecord]:
        return self._efetch([str(pubmed_id).strip()])

    def search_by_doi(self, doi: str) -> List[RawRecord]:
        d = normalize_doi(doi)
        return self._efetch(self._esearch(f'"{d}"[DOI]', 1)) if d else []

    def search_by_title(self, title: str, authors: List[str], year: Optional[int]) -> List[RawRecord]:
        term = f"{title}[Title]"
        if authors:
            last = split_name(authors[0])[1]
            if last:
                term += f" AND {last}[Author]"
        return self._efetch(self._esearch(term, 10))

    def search_by_author_year(self, author: str, year: int) -> List[RawRecord]:
        return self._efetch(self._esearch(f"{author}[Author] AND {int(year)}[PDAT]", 10))

    def search_topic(self, topic: str, limit: int) -> List[RawRecord]:
        return self._efetch(self._esearch(topic, limit))
