import time
import unittest

from citeresolve.cache import MemoryCache, encode_json, verification_cache_key
from citeresolve.errors import AdapterError
from citeresolve.models import (
    REASON_INSUFFICIENT_DATA,
    REASON_INTERNAL_ERROR,
    REASON_NO_CONFIDENT_MATCH,
    CitationRecord,
    Failed,
    RawRecord,
    Verified,
)
from citeresolve.normalizer import parse_citation
from citeresolve.runtime_config import VerificationConfig
from citeresolve.store import MemoryRecordStore
from citeresolve.verification import CitationVerifier, adapter_order


class _FakeAdapter:
    def __init__(self, name, records=None, error=None, delay=0.0):
        self.name = name
        self.records = list(records or [])
        self.error = error
        self.delay = delay
        self.calls = []

    def search(self, query):
        self.calls.append(query)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.records)


class _BrokenStore:
    def find_by_identifier(self, **kwargs):
        raise RuntimeError("store down")

    def upsert(self, data):
        raise RuntimeError("store down")


class _BrokenCache(MemoryCache):
    def get(self, key):
        raise RuntimeError("cache down")


PAPER = RawRecord(
    title="Deep Learning for Citation Matching",
    authors=["John Smith", "Kim Lee"],
    year=2020,
    venue="Journal of Testing",
    doi="10.1000/xyz123",
    source_name="crossref",
)


def _verifier(adapters, *, cache=None, store=None, queue=None, **config):
    cfg = VerificationConfig(**{"adapter_timeout_seconds": 2.0, **config})
    return CitationVerifier(
        {a.name: a for a in adapters},
        cache if cache is not None else MemoryCache(),
        store if store is not None else MemoryRecordStore(),
        queue=queue,
        config=cfg,
        max_workers=4,
    )


class AdapterOrderTests(unittest.TestCase):
    def test_default_order_without_identifiers(self) -> None:
        self.assertEqual(
            adapter_order(parse_citation("(Smith, 2020)")),
            ["crossref", "semantic_scholar", "openalex", "pubmed"],
        )

    def test_pmid_puts_pubmed_first(self) -> None:
        self.assertEqual(
            adapter_order(parse_citation("PMID: 12345678")),
            ["pubmed", "semantic_scholar", "crossref", "openalex"],
        )

    def test_arxiv_id_includes_arxiv(self) -> None:
        order = adapter_order(parse_citation("arXiv:2101.00001"))
        self.assertEqual(order[:3], ["semantic_scholar", "openalex", "arxiv"])

    def test_unavailable_sources_are_dropped(self) -> None:
        order = adapter_order(parse_citation("10.1000/xyz"), available=["openalex", "pubmed"])
        self.assertEqual(order, ["openalex", "pubmed"])


class VerifyCitationTests(unittest.TestCase):
    def test_insufficient_data_calls_no_adapter(self) -> None:
        crossref = _FakeAdapter("crossref", [PAPER])
        result = _verifier([crossref]).verify_citation("[12]")
        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, REASON_INSUFFICIENT_DATA)
        self.assertEqual(crossref.calls, [])

    def test_cache_hit_skips_adapters(self) -> None:
        cache = MemoryCache()
        record = CitationRecord(citation_id="abc", citation_key="doi:10.1000/xyz123", title="Cached")
        cache.put(
            verification_cache_key("doi:10.1000/xyz123"),
            encode_json({"citation_id": "abc", "data": record.to_dict()}),
            60,
        )
        crossref = _FakeAdapter("crossref", [PAPER])

        result = _verifier([crossref], cache=cache).verify_citation("10.1000/xyz123")

        self.assertIsInstance(result, Verified)
        self.assertEqual(result.confidence, 1.0)
        self.assertEqual(result.source, "cache")
        self.assertEqual(result.record.title, "Cached")
        self.assertEqual(crossref.calls, [])

    def test_doi_match_is_verified_persisted_and_cached(self) -> None:
        store = MemoryRecordStore()
        crossref = _FakeAdapter("crossref", [PAPER])
        verifier = _verifier([crossref], store=store)

        first = verifier.verify_citation("https://doi.org/10.1000/XYZ123")
        self.assertIsInstance(first, Verified)
        self.assertEqual(first.source, "crossref")
        self.assertEqual(first.confidence, 1.0)
        self.assertEqual(first.record.doi, "10.1000/xyz123")
        self.assertEqual(first.record.citation_key, "doi:10.1000/xyz123")
        self.assertIn("crossref", first.raw_responses)
        self.assertEqual(len(store), 1)

        second = verifier.verify_citation("10.1000/xyz123")
        self.assertIsInstance(second, Verified)
        self.assertEqual(second.source, "cache")
        self.assertEqual(len(crossref.calls), 1)

    def test_early_exit_stops_after_strong_match(self) -> None:
        crossref = _FakeAdapter("crossref", [PAPER])
        s2 = _FakeAdapter("semantic_scholar", [PAPER])
        _verifier([crossref, s2]).verify_citation("10.1000/xyz123")
        self.assertEqual(len(crossref.calls), 1)
        self.assertEqual(s2.calls, [])

    def test_weak_results_keep_searching(self) -> None:
        weak = RawRecord(title="Something else", authors=["Ann Other"], year=2001, source_name="crossref")
        crossref = _FakeAdapter("crossref", [weak])
        s2 = _FakeAdapter("semantic_scholar", [])
        openalex = _FakeAdapter("openalex", [])
        _verifier([crossref, s2, openalex]).verify_citation("(Smith, 2020)")
        self.assertEqual(len(s2.calls), 1)
        self.assertEqual(len(openalex.calls), 1)

    def test_failing_adapter_does_not_abort_search(self) -> None:
        crossref = _FakeAdapter("crossref", error=AdapterError("crossref", "HTTP 500", status=500))
        s2 = _FakeAdapter("semantic_scholar", [PAPER])
        result = _verifier([crossref, s2]).verify_citation("10.1000/xyz123")
        self.assertIsInstance(result, Verified)
        self.assertEqual(result.source, "semantic_scholar")

    def test_all_adapters_failing_reports_errors(self) -> None:
        crossref = _FakeAdapter("crossref", error=AdapterError("crossref", "HTTP 503", status=503))
        s2 = _FakeAdapter("semantic_scholar", error=ValueError("bad payload"))
        result = _verifier([crossref, s2]).verify_citation("(Smith, 2020)")
        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, REASON_NO_CONFIDENT_MATCH)
        self.assertEqual(result.suggestions, [])
        self.assertEqual(len(result.errors), 2)
        self.assertIn("crossref: HTTP 503", result.errors)

    def test_slow_adapter_times_out(self) -> None:
        slow = _FakeAdapter("crossref", [PAPER], delay=0.5)
        s2 = _FakeAdapter("semantic_scholar", [PAPER])
        result = _verifier([slow, s2], adapter_timeout_seconds=0.05).verify_citation("10.1000/xyz123")
        self.assertIsInstance(result, Verified)
        self.assertEqual(result.source, "semantic_scholar")

    def test_below_threshold_returns_suggestions(self) -> None:
        # title + authors query: threshold 0.70; candidate scores 0.625
        near = RawRecord(
            title="Deep Learning for Citation Matching",
            authors=["John Smith"],
            year=2021,
            source_name="openalex",
        )
        worse = RawRecord(title="Unrelated", authors=["Ann Other"], year=1999, source_name="openalex")
        openalex = _FakeAdapter("openalex", [worse, near])
        raw = 'Smith, J. (2020). Deep learning for citation matching.'

        result = _verifier([openalex]).verify_citation(raw)

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, REASON_NO_CONFIDENT_MATCH)
        self.assertEqual(result.suggestions[0].record, near)
        self.assertAlmostEqual(result.suggestions[0].confidence, 0.625)
        self.assertGreater(result.suggestions[0].confidence, result.suggestions[1].confidence)

    def test_different_full_first_name_is_not_verified(self) -> None:
        # title, year and journal agree (0.60); the author term must not add credit
        other = RawRecord(
            title="Deep Learning for Citation Matching",
            authors=["Jane Smith"],
            year=2020,
            venue="Journal of Testing",
            source_name="crossref",
        )
        raw = "Smith, John (2020). Deep learning for citation matching. Journal of Testing."

        result = _verifier([_FakeAdapter("crossref", [other])]).verify_citation(raw)

        self.assertIsInstance(result, Failed)
        self.assertAlmostEqual(result.suggestions[0].confidence, 0.6)

    def test_surname_with_particle_is_searched(self) -> None:
        paper = RawRecord(title="Species and Varieties", authors=["Hugo de Vries"], year=2018,
                          source_name="crossref")
        crossref = _FakeAdapter("crossref", [paper])

        result = _verifier([crossref]).verify_citation("de Vries (2018)")

        self.assertEqual(len(crossref.calls), 1)
        self.assertEqual(crossref.calls[0].authors, ("de Vries",))
        self.assertAlmostEqual(result.suggestions[0].confidence, 0.4)

    def test_suggestions_are_capped(self) -> None:
        records = [
            RawRecord(title=f"Paper {i}", authors=["John Smith"], year=2010 + i, source_name="crossref")
            for i in range(8)
        ]
        crossref = _FakeAdapter("crossref", records)
        result = _verifier([crossref], max_suggestions=3).verify_citation("(Nobody, 1950)")
        self.assertEqual(len(result.suggestions), 3)

    def test_store_failure_still_verifies(self) -> None:
        crossref = _FakeAdapter("crossref", [PAPER])
        result = _verifier([crossref], store=_BrokenStore()).verify_citation("10.1000/xyz123")
        self.assertIsInstance(result, Verified)
        self.assertEqual(result.record.doi, "10.1000/xyz123")

    def test_cache_read_failure_falls_through_to_search(self) -> None:
        crossref = _FakeAdapter("crossref", [PAPER])
        result = _verifier([crossref], cache=_BrokenCache()).verify_citation("10.1000/xyz123")
        self.assertIsInstance(result, Verified)
        self.assertEqual(result.source, "crossref")

    def test_unexpected_error_becomes_internal_error(self) -> None:
        verifier = _verifier([_FakeAdapter("crossref", [PAPER])])
        verifier._search = None  # any crash inside the pipeline
        result = verifier.verify_citation("10.1000/xyz123")
        self.assertIsInstance(result, Failed)
        self.assertEqual(result.reason, REASON_INTERNAL_ERROR)
        self.assertTrue(result.errors)

    def test_existing_record_keeps_its_key(self) -> None:
        store = MemoryRecordStore()
        with_pmid = RawRecord(
            title=PAPER.title, authors=PAPER.authors, year=2020, venue=PAPER.venue,
            doi="10.1000/xyz123", pubmed_id="12345678", source_name="crossref",
        )
        first = _verifier([_FakeAdapter("crossref", [with_pmid])], store=store).verify_citation("10.1000/xyz123")

        # same paper found again without its DOI
        no_doi = RawRecord(
            title=PAPER.title, authors=PAPER.authors, year=2020, venue=PAPER.venue,
            pubmed_id="12345678", source_name="pubmed",
        )
        raw = "Smith, J. (2020). Deep learning for citation matching. Journal of Testing, 12(3), 45-67."
        second = _verifier([_FakeAdapter("pubmed", [no_doi])], store=store).verify_citation(raw)

        self.assertIsInstance(second, Verified)
        self.assertEqual(second.confidence, 0.85)
        self.assertEqual(second.record.citation_key, first.record.citation_key)
        self.assertEqual(second.record.citation_id, first.record.citation_id)
        self.assertEqual(second.record.doi, "10.1000/xyz123")
        self.assertEqual(len(store), 1)


if __name__ == "__main__":
    unittest.main()
