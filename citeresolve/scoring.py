from __future__ import annotations

import datetime as dt
import math
import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from .models import RawRecord, ScoredCandidate, StructuredQuery
from .normalizer import SURNAME_PARTICLES, normalize_doi

# -----------------------
# Match-score weights
# -----------------------
WEIGHT_TITLE = 0.30
WEIGHT_AUTHORS = 0.25
WEIGHT_YEAR = 0.15
WEIGHT_VENUE = 0.15
WEIGHT_PAGES = 0.10
WEIGHT_VOLUME = 0.05

THRESHOLD_IDENTIFIER = 0.85
THRESHOLD_TITLE_AUTHORS = 0.70
THRESHOLD_TITLE_ONLY = 0.60
THRESHOLD_AUTHOR_YEAR_ET_AL = 0.40
THRESHOLD_AUTHOR_YEAR = 0.50
THRESHOLD_DEFAULT = 0.60

TITLE_STOPWORDS = frozenset({"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for"})

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NON_NAME = re.compile(r"[^a-z\s\-']+")
_DASHES = re.compile(r"\s*[\-‐-―]+\s*")


# -----------------------
# Normalization helpers
# -----------------------
def _asciify(s: str) -> str:
    s2 = unicodedata.normalize("NFKD", s)
    return "".join(ch for ch in s2 if not unicodedata.combining(ch))


def normalize_title(text: Optional[str], *, drop_stopwords: bool = True) -> str:
    """Lowercase, strip punctuation and (optionally) stopwords."""
    if not text:
        return ""
    tokens = _NON_ALNUM.sub(" ", _asciify(text).lower()).split()
    if drop_stopwords:
        tokens = [t for t in tokens if t not in TITLE_STOPWORDS]
    return " ".join(tokens)


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """1 - Levenshtein/maxLen over normalized strings; 0.0 when either side is empty."""
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0.0
    return float(Levenshtein.normalized_similarity(na, nb))


def split_name(name: str) -> Tuple[str, str]:
    """Return (first, last), lowercase ascii. Handles "Last, First" and "First Last"."""
    if not name:
        return "", ""
    n = _asciify(name)
    if "," in n:
        last, first = n.lower().split(",", 1)
    else:
        tokens = n.replace(".", ". ").split()
        if not tokens:
            return "", ""
        # lowercase particles belong to the surname: "Hugo de Vries" -> ("hugo", "de vries")
        cut = len(tokens) - 1
        while cut > 0 and tokens[cut - 1] in SURNAME_PARTICLES:
            cut -= 1
        last, first = " ".join(tokens[cut:]).lower(), " ".join(tokens[:cut]).lower()
    last = _NON_NAME.sub("", last).strip()
    first = _NON_NAME.sub(" ", first).strip()
    return first, last


def authors_match(query_author: str, candidate_author: str) -> bool:
    qf, ql = split_name(query_author)
    cf, cl = split_name(candidate_author)
    if not ql or ql != cl:
        return False
    if not qf or not cf:
        return True
    qfirst, cfirst = qf.split()[0], cf.split()[0]
    if len(qfirst) == 1 or len(cfirst) == 1:
        return qfirst[0] == cfirst[0]
    return qfirst == cfirst


def author_overlap(query_authors: Iterable[str], candidate_authors: Iterable[str]) -> float:
    """Fraction of query authors that match a distinct candidate author."""
    qa = [a for a in query_authors if a]
    ca = [a for a in candidate_authors if a]
    if not qa or not ca:
        return 0.0
    used = set()
    matched = 0
    for q in qa:
        for idx, c in enumerate(ca):
            if idx in used:
                continue
            if authors_match(q, c):
                used.add(idx)
                matched += 1
                break
    return matched / len(qa)


def _exact(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return _DASHES.sub("-", str(a).strip().lower()) == _DASHES.sub("-", str(b).strip().lower())


# -----------------------
# Verification mode
# -----------------------
def match_score(query: StructuredQuery, record: RawRecord) -> float:
    qd, rd = normalize_doi(query.doi), normalize_doi(record.doi)
    if qd and rd and qd == rd:
        return 1.0

    score = 0.0
    if query.title and record.title:
        score += WEIGHT_TITLE * string_similarity(query.title, record.title)
    if query.authors and record.authors:
        score += WEIGHT_AUTHORS * author_overlap(query.authors, record.authors)
    if query.year is not None and record.year is not None:
        diff = abs(int(query.year) - int(record.year))
        if diff == 0:
            score += WEIGHT_YEAR
        elif diff == 1:
            score += WEIGHT_YEAR / 2
    if query.journal and record.venue:
        score += WEIGHT_VENUE * string_similarity(query.journal, record.venue)
    if _exact(query.pages, record.pages):
        score += WEIGHT_PAGES
    if _exact(query.volume, record.volume):
        score += WEIGHT_VOLUME
    return round(min(1.0, score), 4)


def confidence_threshold(query: StructuredQuery) -> float:
    if query.has_identifier:
        return THRESHOLD_IDENTIFIER
    if query.title and query.authors:
        return THRESHOLD_TITLE_AUTHORS
    if query.title:
        return THRESHOLD_TITLE_ONLY
    if query.has_author_year and query.has_et_al:
        return THRESHOLD_AUTHOR_YEAR_ET_AL
    if query.has_author_year:
        return THRESHOLD_AUTHOR_YEAR
    return THRESHOLD_DEFAULT


def sort_candidates(candidates: Iterable[ScoredCandidate]) -> List[ScoredCandidate]:
    """Descending confidence; ties go to the more-cited record. Stable otherwise."""
    return sorted(candidates, key=lambda c: (-c.confidence, -(c.record.citation_count or 0)))


def score_candidates(query: StructuredQuery, records_by_source: Mapping[str, List[RawRecord]]) -> List[ScoredCandidate]:
    """Score every record against the query, best first."""
    return sort_candidates(
        ScoredCandidate(record=rec, confidence=match_score(query, rec), source=source)
        for source, records in records_by_source.items()
        for rec in records
    )


# -----------------------
# Discovery mode (intrinsic quality)
# -----------------------
@dataclass(frozen=True)
class QualityWeights:
    base: float = 0.0
    citations: float = 0.0
    citation_saturation: int = 100
    recency: float = 0.0
    open_access: float = 0.0
    venue: float = 0.0
    doi: float = 0.0
    abstract: float = 0.0


QUALITY_WEIGHTS: Dict[str, QualityWeights] = {
    "crossref": QualityWeights(citations=0.5, citation_saturation=50, doi=0.2, recency=0.2, venue=0.1),
    "openalex": QualityWeights(citations=0.4, citation_saturation=100, open_access=0.2, recency=0.2, venue=0.2),
    "semantic_scholar": QualityWeights(
        citations=0.4, citation_saturation=100, recency=0.2, abstract=0.2, open_access=0.1, venue=0.1
    ),
    # preprints rarely carry citation counts; free full text earns the base
    "arxiv": QualityWeights(
        base=0.2, citations=0.3, citation_saturation=50, recency=0.2, doi=0.1, abstract=0.1, venue=0.1
    ),
    "pubmed": QualityWeights(base=0.3, abstract=0.3, recency=0.2, doi=0.2),
}
DEFAULT_QUALITY_WEIGHTS = QualityWeights(
    citations=0.4, citation_saturation=100, recency=0.2, open_access=0.1, venue=0.15, doi=0.15
)


def citation_credit(count: Optional[int], saturation: int) -> float:
    """log-scaled citation count in [0, 1], reaching 1 at ``saturation`` citations."""
    if not count or count <= 0 or saturation <= 0:
        return 0.0
    return min(1.0, math.log1p(count) / math.log1p(saturation))


def recency_credit(year: Optional[int], current_year: int) -> float:
    if year is None:
        return 0.0
    age = current_year - int(year)
    if age <= 5:
        return 1.0
    if age <= 10:
        return 0.5
    return 0.0


def quality_score(record: RawRecord, current_year: Optional[int] = None) -> float:
    w = QUALITY_WEIGHTS.get(record.source_name, DEFAULT_QUALITY_WEIGHTS)
    year_now = current_year or dt.datetime.now(dt.timezone.utc).year
    score = w.base
    score += w.citations * citation_credit(record.citation_count, w.citation_saturation)
    score += w.recency * recency_credit(record.year, year_now)
    if record.is_open_access:
        score += w.open_access
    if record.venue:
        score += w.venue
    if record.doi:
        score += w.doi
    if record.abstract:
        score += w.abstract
    return round(max(0.0, min(1.0, score)), 4)
