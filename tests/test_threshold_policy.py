import unittest

from citeresolve.models import StructuredQuery
from citeresolve.normalizer import parse_citation
from citeresolve.scoring import confidence_threshold


class ConfidenceThresholdTests(unittest.TestCase):
    def test_identifier_requires_high_confidence(self) -> None:
        self.assertEqual(confidence_threshold(StructuredQuery(doi="10.1/x", title="t", authors=("A",))), 0.85)
        self.assertEqual(confidence_threshold(StructuredQuery(pubmed_id="12345678")), 0.85)
        self.assertEqual(confidence_threshold(StructuredQuery(arxiv_id="2101.00001")), 0.85)

    def test_title_and_authors(self) -> None:
        self.assertEqual(confidence_threshold(StructuredQuery(title="t", authors=("A",))), 0.70)

    def test_title_only(self) -> None:
        self.assertEqual(confidence_threshold(StructuredQuery(title="t")), 0.60)

    def test_author_year_is_more_lenient_than_title_only(self) -> None:
        self.assertEqual(confidence_threshold(parse_citation("(Smith, 2020)")), 0.50)
        self.assertEqual(confidence_threshold(parse_citation("Jones et al., 2019")), 0.40)

    def test_default_when_nothing_usable(self) -> None:
        self.assertEqual(confidence_threshold(StructuredQuery(authors=("A",))), 0.60)
        self.assertEqual(confidence_threshold(StructuredQuery()), 0.60)


if __name__ == "__main__":
    unittest.main()
