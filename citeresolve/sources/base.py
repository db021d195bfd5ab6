from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter, Retry

from ..errors import AdapterError
from ..logging_setup import get_logger, log_event
from ..models import RawRecord, StructuredQuery

logger = get_logger(__name__)

HTTP_TIMEOUT = 30
HTTP_RETRIES = Retry(
    total=3, backoff_factor=0.6,
    status_forcelist=(429, 500, 502, 503, 504),
    allowed_methods=("GET",),
    raise_on_status=False,
)
DEFAULT_USER_AGENT = "citeresolve/0.3"


def make_session(user_agent: Optional[str] = None, retries: Retry = HTTP_RETRIES) -> requests.Session:
    s = requests.Session()
    s.mount("https://", HTTPAdapter(max_retries=retries))
    s.mount("http://", HTTPAdapter(max_retries=retries))
    s.headers.update({"User-Agent": user_agent or DEFAULT_USER_AGENT})
    return s


class SourceAdapter:
    """
    One bibliographic authority behind the uniform ``search(query) -> list[RawRecord]``
    contract. "No results" is ``[]``; transport failures raise ``AdapterError`` (or a
    ``requests`` exception) and the orchestrators decide what to do with them.

    Subclasses implement whichever ``search_by_*`` lookups their API supports and a
    ``normalize`` function that maps the native payload onto ``RawRecord``.
    """
    name = "base"
    base_url = ""
    default_min_interval = 0.0

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
        min_interval: Optional[float] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.session = session or make_session(user_agent)
        self.timeout = timeout
        self.min_interval = self.default_min_interval if min_interval is None else float(min_interval)
        self._rate_lock = threading.Lock()
        self._last_call = 0.0

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"

    # --- public contract ---
    def search(self, query: StructuredQuery) -> List[RawRecord]:
        if query.doi:
            hits = self.search_by_doi(query.doi)
            if hits:
                return hits
        if query.pubmed_id:
            hits = self.search_by_pubmed_id(query.pubmed_id)
            if hits:
                return hits
        if query.arxiv_id:
            hits = self.search_by_arxiv_id(query.arxiv_id)
            if hits:
                return hits
        if query.title:
            hits = self.search_by_title(query.title, list(query.authors), query.year)
            if hits:
                return hits
        if query.authors and query.year is not None:
            return self.search_by_author_year(query.authors[0], query.year)
        return []

    def search_topic(self, topic: str, limit: int) -> List[RawRecord]:
        return []

    # --- per-lookup hooks ---
    def search_by_doi(self, doi: str) -> List[RawRecord]:
        return []

    def search_by_pubmed_id(self, pubmed_id: str) -> List[RawRecord]:
        return []

    def search_by_arxiv_id(self, arxiv_id: str) -> List[RawRecord]:
        return []

    def search_by_title(self, title: str, authors: List[str], year: Optional[int]) -> List[RawRecord]:
        return []

    def search_by_author_year(self, author: str, year: int) -> List[RawRecord]:
        return []

    # --- HTTP helpers ---
    def _throttle(self) -> None:
        if self.min_interval <= 0:
            return
        with self._rate_lock:
            wait = self._last_call + self.min_interval - time.monotonic()
            if wait > 0:
                time.sleep(wait)
            self._last_call = time.monotonic()

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None,
             headers: Optional[Dict[str, str]] = None) -> Optional[requests.Response]:
        self._throttle()
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise AdapterError(self.name, f"request failed: {e}") from e
        if resp.status_code == 404:
            log_event(logger, logging.DEBUG, "source returned 404", source=self.name, url=url)
            return None
        if resp.status_code >= 400:
            raise AdapterError(self.name, f"HTTP {resp.status_code}", status=resp.status_code)
        return resp

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                  headers: Optional[Dict[str, str]] = None) -> Optional[Any]:
        resp = self._get(url, params=params, headers=headers)
        if resp is None:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise AdapterError(self.name, "malformed JSON response") from e

    def _get_bytes(self, url: str, params: Optional[Dict[str, Any]] = None,
                   headers: Optional[Dict[str, str]] = None) -> Optional[bytes]:
        resp = self._get(url, params=params, headers=headers)
        return resp.content if resp is not None else None

    def _normalize_all(self, items, normalize) -> List[RawRecord]:
        out: List[RawRecord] = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            rec = normalize(item)
            if rec is not None:
                out.append(rec)
        return out
