"""
Free-text citation normalizer.

``parse_citation`` turns one raw citation string (an inline marker such as
``(Smith et al., 2019)``, a full APA/MLA reference-list entry, a bare DOI, a
``[CITE: ...]`` block emitted by a writing assistant, ...) into a
``StructuredQuery``. It never raises: anything it cannot recognise is left unset.

Identifiers are looked for first, anywhere in the text, and removed before the
structural patterns run so that a trailing ``https://doi.org/...`` does not get
swallowed into a journal or title.
"""
from __future__ import annotations

import csv
import html
import re
from typing import Any, Dict, List, Optional, Tuple

from .models import StructuredQuery

_YEAR = r"(?:1[89]|20)\d{2}"
_YEAR_RE = re.compile(rf"\b({_YEAR})[a-z]?\b")

_DOI_RE = re.compile(r"10\.\d{4,9}(?:\.\d+)*/[^\s\"<>]+")
_DOI_CONTEXT_RE = r"(?:https?://(?:dx\.)?doi\.org/|doi:\s*)?"
_PMID_LABEL_RE = re.compile(r"\bPMID:?\s*(\d{7,8})\b", re.IGNORECASE)
_PMID_URL_RE = re.compile(r"pubmed\.ncbi\.nlm\.nih\.gov/(\d{7,8})\b", re.IGNORECASE)
_PMID_BARE_RE = re.compile(r"^\s*(\d{7,8})\s*$")
_ARXIV_NEW = r"\d{4}\.\d{4,5}(?:v\d+)?"
_ARXIV_OLD = r"[a-z\-]+(?:\.[A-Z]{2})?/\d{7}(?:v\d+)?"
_ARXIV_LABEL_RE = re.compile(rf"\barxiv:\s*({_ARXIV_NEW}|{_ARXIV_OLD})", re.IGNORECASE)
_ARXIV_URL_RE = re.compile(rf"arxiv\.org/(?:abs|pdf)/({_ARXIV_NEW}|{_ARXIV_OLD})(?:\.pdf)?", re.IGNORECASE)
_ARXIV_BARE_RE = re.compile(rf"^\s*({_ARXIV_NEW})\s*$")

_NUMBERED_RE = re.compile(r"^\[\s*(\d{1,4})(?:\s*[,\-–]\s*\d{1,4})*\s*\]$")
_CITE_BLOCK_RE = re.compile(r"^\[?\s*(?:UNVERIFIED_)?CITE:\s*(?P<body>.+?)\s*\]?$", re.IGNORECASE | re.DOTALL)

_PAREN_AUTHOR_YEAR_RE = re.compile(rf"^\(\s*(?P<authors>[^()]+?),?\s+(?P<year>{_YEAR})[a-z]?\s*\)\.?$")
_NARRATIVE_AUTHOR_YEAR_RE = re.compile(rf"^(?P<authors>[^()\d]+?)\s*\(\s*(?P<year>{_YEAR})[a-z]?\s*\)\.?$")
_BARE_AUTHOR_YEAR_RE = re.compile(rf"^(?P<authors>[^()\d]+?),?\s+(?P<year>{_YEAR})[a-z]?\.?$")

_APA_FULL_RE = re.compile(
    rf"^(?P<authors>[^()]+?)\s*\((?P<year>{_YEAR})[a-z]?(?:,\s*[A-Za-z]+(?:\s+\d{{1,2}})?)?\)\.\s*"
    r"(?P<title>.+?)[.?!]"
    r"(?:\s+(?P<journal>[^,.]+?)"
    r"(?:,\s*(?P<volume>\d+))?"
    r"(?:\s*\((?P<issue>[^)]+)\))?"
    r"(?:,\s*(?P<pages>[A-Za-z]?\d+(?:\s*[-–]\s*[A-Za-z]?\d+)?))?)?"
    r"\.?\s*$"
)
_MLA_FULL_RE = re.compile(
    r"^(?P<authors>[^\"“”]+?)\.\s*[\"“](?P<title>.+?)[.,]?[\"”]\s*"
    r"(?P<journal>[^,]+?),\s*"
    r"(?:vol\.\s*(?P<volume>\w+),\s*)?"
    r"(?:no\.\s*(?P<issue>\w+),\s*)?"
    rf"(?:[A-Za-z.]+\s+)?(?P<year>{_YEAR}),?\s*"
    r"(?:pp?\.\s*(?P<pages>\w+(?:\s*[-–]\s*\w+)?))?"
    r".*$",
    re.IGNORECASE,
)

_ET_AL_RE = re.compile(r"\bet\s*al\b\.?", re.IGNORECASE)
_AUTHOR_SPLIT_RE = re.compile(r"\s*(?:;|&|\band\b|,)\s*", re.IGNORECASE)
_INITIALS_RE = re.compile(r"^(?:[A-Z]\.?[\s\-]*){1,3}$")
_GIVEN_NAME_RE = re.compile(r"^[A-Z][a-z]+(?:[\s\-]+[A-Z]\.?)*$")
_QUOTED_TITLE_RE = re.compile(r"[\"“]([^\"“”]{3,})[\"”]")
_ITALIC_TITLE_RE = re.compile(r"<i>([^<]+)</i>", re.IGNORECASE)
_LEADING_AUTHORS_RE = re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z]\.)?,?\s*(?:(?:and|&)\s*)?)+")
_WS_RE = re.compile(r"\s+")

SURNAME_PARTICLES = frozenset({"van", "von", "der", "den", "de", "da", "del", "la", "le", "di"})
_CONNECTORS = SURNAME_PARTICLES | {"and", "&", "et", "al", "al."}


def normalize_doi(doi: Optional[str]) -> Optional[str]:
    if not doi:
        return None
    d = doi.strip().lower()
    for pref in ("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/", "doi:"):
        if d.startswith(pref):
            d = d[len(pref):]
    d = d.strip()
    return d or None


def normalize_arxiv_id(arxiv_id: Optional[str]) -> Optional[str]:
    """Version-less, lowercase arXiv id (``2101.00001v2`` -> ``2101.00001``)."""
    if not arxiv_id:
        return None
    a = arxiv_id.strip().lower()
    if a.startswith("arxiv:"):
        a = a[len("arxiv:"):].strip()
    a = re.sub(r"v\d+$", "", a)
    return a or None


def _trim_doi(doi: str) -> str:
    doi = doi.rstrip(".,;:'\"]}")
    # a closing paren is part of the DOI only when balanced, e.g. 10.1016/S0140-6736(20)30183-5
    while doi.endswith(")") and doi.count(")") > doi.count("("):
        doi = doi[:-1].rstrip(".,;:")
    return doi


def _clean(text: str) -> str:
    return _WS_RE.sub(" ", html.unescape(text or "")).strip()


def _extract_identifiers(text: str) -> Tuple[Dict[str, str], str]:
    """Return found identifiers and the text with them removed."""
    found: Dict[str, str] = {}
    rest = text

    m = _DOI_RE.search(rest)
    if m:
        doi = _trim_doi(m.group(0))
        found["doi"] = doi
        rest = re.sub(_DOI_CONTEXT_RE + re.escape(doi), " ", rest, flags=re.IGNORECASE)

    m = _PMID_LABEL_RE.search(rest) or _PMID_URL_RE.search(rest)
    if m:
        found["pubmed_id"] = m.group(1)
        rest = rest.replace(m.group(0), " ")
    elif not found:
        m = _PMID_BARE_RE.match(rest)
        if m:
            found["pubmed_id"] = m.group(1)
            rest = ""

    m = _ARXIV_LABEL_RE.search(rest) or _ARXIV_URL_RE.search(rest)
    if m:
        found["arxiv_id"] = m.group(1)
        rest = rest.replace(m.group(0), " ")
    elif not found:
        m = _ARXIV_BARE_RE.match(rest)
        if m:
            found["arxiv_id"] = m.group(1)
            rest = ""

    if found:
        rest = re.sub(r"(?i)\b(?:doi|pmid|arxiv)\s*:?\s*$", "", _clean(rest))
        rest = rest.strip(" .,;")
    return found, _clean(rest)


def _fold_initials(parts: List[str]) -> List[str]:
    """Attach initial-only fragments to the surname before them ("Smith", "J." -> "J. Smith")."""
    out: List[str] = []
    for part in parts:
        if out and _INITIALS_RE.match(part) and not _INITIALS_RE.match(out[-1]):
            out[-1] = f"{part.strip()} {out[-1]}"
        else:
            out.append(part)
    return out


def split_authors(author_clause: str) -> Tuple[List[str], bool]:
    """Split an author clause into names. Returns (authors, has_et_al)."""
    if not author_clause:
        return [], False
    has_et_al = bool(_ET_AL_RE.search(author_clause))
    clause = _ET_AL_RE.sub(" ", author_clause)
    parts = [p.strip(" .,") if not _INITIALS_RE.match(p.strip(" ,")) else p.strip(" ,")
             for p in _AUTHOR_SPLIT_RE.split(clause)]
    parts = [p for p in parts if p]
    return _fold_initials(parts), has_et_al


def _split_mla_authors(author_clause: str) -> Tuple[List[str], bool]:
    has_et_al = bool(_ET_AL_RE.search(author_clause))
    clause = _ET_AL_RE.sub(" ", author_clause).strip(" ,.")
    pieces = [p.strip(" ,.") for p in re.split(r",?\s+and\s+", clause) if p.strip(" ,.")]
    authors: List[str] = []
    for idx, piece in enumerate(pieces):
        if idx == 0 and "," in piece:
            last, first = piece.split(",", 1)
            authors.append(f"{first.strip()} {last.strip()}".strip())
        else:
            authors.extend(a.strip() for a in piece.split(",") if a.strip())
    return authors, has_et_al


def _looks_like_author_clause(clause: str) -> bool:
    words = [w for w in re.split(r"[\s,;]+", _ET_AL_RE.sub(" ", clause)) if w]
    if not words or len(words) > 10:
        return False
    if not (words[0][:1].isupper() or words[0].lower() in SURNAME_PARTICLES):
        return False
    if not any(w[:1].isupper() for w in words):
        return False
    for w in words:
        if w.lower() in _CONNECTORS:
            continue
        if not (w[:1].isupper() or w[:1] in "'’"):
            return False
    return True


def _year(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _strip_or_none(value: Optional[str], chars: str = " .,") -> Optional[str]:
    if value is None:
        return None
    v = value.strip(chars)
    return v or None


def _parse_author_year(text: str) -> Optional[Dict[str, Any]]:
    for fmt, rx in (
        ("author_year", _PAREN_AUTHOR_YEAR_RE),
        ("author_year", _NARRATIVE_AUTHOR_YEAR_RE),
        ("author_year", _BARE_AUTHOR_YEAR_RE),
    ):
        m = rx.match(text)
        if not m:
            continue
        clause = m.group("authors").strip(" ,")
        if not _looks_like_author_clause(clause):
            continue
        authors, et_al = split_authors(clause)
        if not authors:
            continue
        return {"format": fmt, "authors": authors, "has_et_al": et_al, "year": _year(m.group("year"))}
    return None


def _parse_cite_block(text: str) -> Optional[Dict[str, Any]]:
    m = _CITE_BLOCK_RE.match(text)
    if not m:
        return None
    body = m.group("body").replace("“", '"').replace("”", '"')
    try:
        fields = next(csv.reader([body], skipinitialspace=True))
    except (csv.Error, StopIteration):
        fields = body.split(",")
    fields = [f.strip() for f in fields]

    year_idx = next((i for i, f in enumerate(fields) if re.fullmatch(rf"{_YEAR}[a-z]?", f)), None)
    if year_idx is None:
        author_fields, rest = fields[:1], fields[1:]
        year = None
    else:
        author_fields, rest = fields[:year_idx], fields[year_idx + 1:]
        year = _year(fields[year_idx][:4])

    authors, et_al = split_authors(", ".join(f for f in author_fields if f))
    out: Dict[str, Any] = {"format": "structured", "authors": authors, "has_et_al": et_al, "year": year}
    if rest:
        out["title"] = _strip_or_none(rest[0], " .\"")
    if len(rest) > 1:
        doi_m = _DOI_RE.search(rest[1])
        if doi_m:
            out["doi"] = _trim_doi(doi_m.group(0))
    return out


def _pair_given_names(parts: List[str]) -> List[str]:
    """Join "Surname, Given" pairs ("Smith", "John" -> "John Smith")."""
    if len(parts) < 2 or len(parts) % 2 or not all(_GIVEN_NAME_RE.match(g) for g in parts[1::2]):
        return parts
    return [f"{given} {surname}" for surname, given in zip(parts[0::2], parts[1::2])]


def _parse_apa(text: str) -> Optional[Dict[str, Any]]:
    m = _APA_FULL_RE.match(text)
    if not m:
        return None
    authors, et_al = split_authors(m.group("authors"))
    authors = _pair_given_names(authors)
    if not authors:
        return None
    return {
        "format": "apa",
        "authors": authors,
        "has_et_al": et_al,
        "year": _year(m.group("year")),
        "title": _strip_or_none(m.group("title")),
        "journal": _strip_or_none(m.group("journal")),
        "volume": m.group("volume"),
        "issue": _strip_or_none(m.group("issue")),
        "pages": _strip_or_none(m.group("pages")),
    }


def _parse_mla(text: str) -> Optional[Dict[str, Any]]:
    m = _MLA_FULL_RE.match(text)
    if not m:
        return None
    authors, et_al = _split_mla_authors(m.group("authors"))
    return {
        "format": "mla",
        "authors": authors,
        "has_et_al": et_al,
        "year": _year(m.group("year")),
        "title": _strip_or_none(m.group("title"), " .,\""),
        "journal": _strip_or_none(m.group("journal")),
        "volume": m.group("volume"),
        "issue": m.group("issue"),
        "pages": _strip_or_none(m.group("pages")),
    }


def _parse_fallback(text: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {"format": "unknown"}
    ym = _YEAR_RE.search(text)
    if ym:
        out["year"] = int(ym.group(1))
    tm = _QUOTED_TITLE_RE.search(text) or _ITALIC_TITLE_RE.search(text)
    if tm:
        out["title"] = _strip_or_none(tm.group(1))
    if ym or tm:
        am = _LEADING_AUTHORS_RE.match(text)
        if am:
            authors, et_al = split_authors(am.group(0))
            out["authors"] = authors
            out["has_et_al"] = et_al
    elif len(text.split()) >= 3 and not text.startswith("["):
        # nothing structural left; treat the whole string as a title
        out["format"] = "title"
        out["title"] = text.strip(" .")
    return out


def parse_citation(raw: Optional[str]) -> StructuredQuery:
    """Parse one free-text citation into a ``StructuredQuery``. Never raises."""
    raw = raw if isinstance(raw, str) else ("" if raw is None else str(raw))
    text = _clean(raw)
    if not text:
        return StructuredQuery(raw=raw)

    m = _NUMBERED_RE.match(text)
    if m:
        return StructuredQuery(raw=raw, format="numbered", reference_number=int(m.group(1)))

    cite = _CITE_BLOCK_RE.match(text)
    if cite:
        parsed = _parse_cite_block(text) or {}
        ids: Dict[str, str] = {}
        if "doi" not in parsed:
            ids, _ = _extract_identifiers(cite.group("body"))
        return _build(raw, {**parsed, **ids})

    ids, rest = _extract_identifiers(text)
    parsed: Optional[Dict[str, Any]] = None
    if rest:
        parsed = _parse_author_year(rest) or _parse_apa(rest) or _parse_mla(rest)
        if parsed is None and not ids:
            parsed = _parse_fallback(rest)
        elif parsed is None:
            parsed = {k: v for k, v in _parse_fallback(rest).items() if k != "title" or '"' in rest}
            parsed.pop("format", None)

    fields: Dict[str, Any] = dict(parsed or {})
    fields.update(ids)
    if ids and fields.get("format") in (None, "unknown"):
        fields["format"] = "doi" if "doi" in ids else ("pubmed" if "pubmed_id" in ids else "arxiv")
    return _build(raw, fields)


def _build(raw: str, fields: Dict[str, Any]) -> StructuredQuery:
    return StructuredQuery(
        raw=raw,
        authors=tuple(a for a in (fields.get("authors") or []) if a),
        year=fields.get("year"),
        title=fields.get("title") or None,
        doi=fields.get("doi") or None,
        pubmed_id=fields.get("pubmed_id") or None,
        arxiv_id=fields.get("arxiv_id") or None,
        journal=fields.get("journal") or None,
        pages=fields.get("pages") or None,
        volume=fields.get("volume") or None,
        issue=fields.get("issue") or None,
        has_et_al=bool(fields.get("has_et_al")),
        format=fields.get("format") or "unknown",
    )
