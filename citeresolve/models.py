from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass(frozen=True)
class StructuredQuery:
    """
    Structured form of one free-text citation, as produced by the normalizer.
    Immutable; unmatched fields stay None / empty.
    """
    raw: str = ""
    authors: Tuple[str, ...] = ()
    year: Optional[int] = None
    title: Optional[str] = None
    doi: Optional[str] = None
    pubmed_id: Optional[str] = None
    arxiv_id: Optional[str] = None
    journal: Optional[str] = None
    pages: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    has_et_al: bool = False
    format: str = "unknown"
    reference_number: Optional[int] = None

    @property
    def has_identifier(self) -> bool:
        return bool(self.doi or self.pubmed_id or self.arxiv_id)

    @property
    def has_author_year(self) -> bool:
        return bool(self.authors) and self.year is not None

    @property
    def is_empty(self) -> bool:
        return not (self.has_identifier or self.title or self.has_author_year)

    @property
    def first_author(self) -> Optional[str]:
        return self.authors[0] if self.authors else None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["authors"] = list(self.authors)
        return out


@dataclass
class RawRecord:
    """One candidate record returned by a source adapter, in the shared shape."""
    title: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    doi: Optional[str] = None
    url: Optional[str] = None
    abstract: Optional[str] = None
    citation_count: int = 0
    is_open_access: bool = False
    source_name: str = ""
    source_record_id: str = ""
    pubmed_id: Optional[str] = None
    arxiv_id: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawRecord":
        return cls(
            title=_opt_str(data.get("title")),
            authors=[str(a) for a in (data.get("authors") or []) if a],
            year=_opt_int(data.get("year")),
            venue=_opt_str(data.get("venue")),
            doi=_opt_str(data.get("doi")),
            url=_opt_str(data.get("url")),
            abstract=_opt_str(data.get("abstract")),
            citation_count=_opt_int(data.get("citation_count")) or 0,
            is_open_access=bool(data.get("is_open_access")),
            source_name=str(data.get("source_name") or ""),
            source_record_id=str(data.get("source_record_id") or ""),
            pubmed_id=_opt_str(data.get("pubmed_id")),
            arxiv_id=_opt_str(data.get("arxiv_id")),
            volume=_opt_str(data.get("volume")),
            issue=_opt_str(data.get("issue")),
            pages=_opt_str(data.get("pages")),
        )


@dataclass
class ScoredCandidate:
    record: RawRecord
    confidence: float
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {"record": self.record.to_dict(), "confidence": self.confidence, "source": self.source}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoredCandidate":
        return cls(
            record=RawRecord.from_dict(data.get("record") or {}),
            confidence=float(data.get("confidence") or 0.0),
            source=str(data.get("source") or ""),
        )


@dataclass
class CitationRecord:
    """Canonical, deduplicated publication as kept by the record store."""
    citation_id: str
    citation_key: str
    title: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    journal: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    pubmed_id: Optional[str] = None
    arxiv_id: Optional[str] = None
    abstract: Optional[str] = None
    url: Optional[str] = None
    source_api: Optional[str] = None
    confidence_score: float = 0.0
    verification_status: str = "verified"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_verified_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CitationRecord":
        conf = data.get("confidence_score")
        return cls(
            citation_id=str(data.get("citation_id") or ""),
            citation_key=str(data.get("citation_key") or ""),
            title=_opt_str(data.get("title")),
            authors=[str(a) for a in (data.get("authors") or []) if a],
            year=_opt_int(data.get("year")),
            journal=_opt_str(data.get("journal")),
            volume=_opt_str(data.get("volume")),
            issue=_opt_str(data.get("issue")),
            pages=_opt_str(data.get("pages")),
            doi=_opt_str(data.get("doi")),
            pubmed_id=_opt_str(data.get("pubmed_id")),
            arxiv_id=_opt_str(data.get("arxiv_id")),
            abstract=_opt_str(data.get("abstract")),
            url=_opt_str(data.get("url")),
            source_api=_opt_str(data.get("source_api")),
            confidence_score=float(conf) if conf is not None else 0.0,
            verification_status=str(data.get("verification_status") or "verified"),
            created_at=_opt_str(data.get("created_at")),
            updated_at=_opt_str(data.get("updated_at")),
            last_verified_at=_opt_str(data.get("last_verified_at")),
        )


REASON_INSUFFICIENT_DATA = "insufficient data"
REASON_NO_CONFIDENT_MATCH = "no confident match"
REASON_INTERNAL_ERROR = "internal error"


@dataclass
class Verified:
    record: CitationRecord
    confidence: float
    source: str
    raw_responses: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    elapsed_ms: int = 0

    success = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "verified",
            "success": True,
            "record": self.record.to_dict(),
            "confidence": self.confidence,
            "source": self.source,
            "raw_responses": self.raw_responses,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class Failed:
    suggestions: List[ScoredCandidate] = field(default_factory=list)
    raw_responses: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    elapsed_ms: int = 0
    reason: str = REASON_NO_CONFIDENT_MATCH
    errors: List[str] = field(default_factory=list)

    success = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "failed",
            "success": False,
            "reason": self.reason,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "raw_responses": self.raw_responses,
            "elapsed_ms": self.elapsed_ms,
            "errors": list(self.errors),
        }


VerificationResult = Union[Verified, Failed]


def result_from_dict(data: Dict[str, Any]) -> VerificationResult:
    if data.get("status") == "verified":
        return Verified(
            record=CitationRecord.from_dict(data.get("record") or {}),
            confidence=float(data.get("confidence") or 0.0),
            source=str(data.get("source") or ""),
            raw_responses=dict(data.get("raw_responses") or {}),
            elapsed_ms=int(data.get("elapsed_ms") or 0),
        )
    return Failed(
        suggestions=[ScoredCandidate.from_dict(s) for s in (data.get("suggestions") or [])],
        raw_responses=dict(data.get("raw_responses") or {}),
        elapsed_ms=int(data.get("elapsed_ms") or 0),
        reason=str(data.get("reason") or REASON_NO_CONFIDENT_MATCH),
        errors=[str(e) for e in (data.get("errors") or [])],
    )
