import math
import unittest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from citeresolve.dynamo.citations_repo import CitationsRepo, _from_dynamo_value, _to_dynamo_value
from citeresolve.models import CitationRecord


def _make_repo() -> tuple:
    """Create a CitationsRepo with a mocked DynamoDB table."""
    with patch("citeresolve.dynamo.citations_repo.get_dynamo_resource") as mock_ddb:
        table = MagicMock()
        mock_ddb.return_value.Table.return_value = table
        repo = CitationsRepo()
    return repo, table


class DynamoConversionTests(unittest.TestCase):
    def test_converts_nested_floats_to_decimals(self) -> None:
        payload = {
            "score": 0.75,
            "meta": {"weights": [0.1, 0.2], "ok": True},
            "vals": (1.5, "x"),
        }
        out = _to_dynamo_value(payload)
        self.assertEqual(out["score"], Decimal("0.75"))
        self.assertEqual(out["meta"]["weights"], [Decimal("0.1"), Decimal("0.2")])
        self.assertIs(out["meta"]["ok"], True)
        self.assertEqual(out["vals"], [Decimal("1.5"), "x"])

    def test_non_finite_floats_are_dropped_to_none(self) -> None:
        payload = {"a": math.nan, "b": math.inf, "c": -math.inf}
        out = _to_dynamo_value(payload)
        self.assertIsNone(out["a"])
        self.assertIsNone(out["b"])
        self.assertIsNone(out["c"])

    def test_decimals_come_back_as_int_or_float(self) -> None:
        out = _from_dynamo_value({"year": Decimal("2020"), "confidence_score": Decimal("0.92")})
        self.assertEqual(out, {"year": 2020, "confidence_score": 0.92})
        self.assertIsInstance(out["year"], int)


class CitationsRepoTests(unittest.TestCase):
    def test_upsert_is_single_update_keeping_created_at(self) -> None:
        repo, table = _make_repo()
        table.update_item.return_value = {
            "Attributes": {
                "citation_key": "doi:10.1000/xyz",
                "citation_id": "abc",
                "doi": "10.1000/xyz",
                "year": Decimal("2020"),
                "confidence_score": Decimal("1"),
                "created_at": "2024-01-01T00:00:00+00:00",
            }
        }
        record = CitationRecord(
            citation_id="abc",
            citation_key="doi:10.1000/xyz",
            title="A paper",
            year=2020,
            doi="HTTPS://DOI.ORG/10.1000/XYZ",
            confidence_score=1.0,
            source_api="crossref",
        )

        out = repo.upsert(record)

        table.update_item.assert_called_once()
        kwargs = table.update_item.call_args.kwargs
        self.assertEqual(kwargs["Key"], {"citation_key": "doi:10.1000/xyz"})
        self.assertIn("created_at = if_not_exists(created_at, :created)", kwargs["UpdateExpression"])
        self.assertEqual(kwargs["ReturnValues"], "ALL_NEW")

        names = kwargs["ExpressionAttributeNames"]
        values = kwargs["ExpressionAttributeValues"]
        by_field = {field: values.get(":v" + alias[2:]) for alias, field in names.items()}
        self.assertEqual(by_field["doi"], "10.1000/xyz")
        self.assertEqual(by_field["confidence_score"], Decimal("1.0"))
        self.assertIsNone(by_field["pubmed_id"])

        self.assertEqual(out.created_at, "2024-01-01T00:00:00+00:00")
        self.assertEqual(out.year, 2020)

    def test_upsert_removes_empty_index_attributes(self) -> None:
        repo, table = _make_repo()
        table.update_item.return_value = {}
        record = CitationRecord(citation_id="x", citation_key="pmid:12345678", pubmed_id="12345678")

        out = repo.upsert(record)

        expr = table.update_item.call_args.kwargs["UpdateExpression"]
        names = table.update_item.call_args.kwargs["ExpressionAttributeNames"]
        doi_alias = next(alias for alias, field in names.items() if field == "doi")
        pmid_alias = next(alias for alias, field in names.items() if field == "pubmed_id")
        self.assertIn(" REMOVE ", expr)
        self.assertIn(doi_alias, expr.split(" REMOVE ", 1)[1].split(", "))
        self.assertIn(f"{pmid_alias} = ", expr)
        self.assertIs(out, record)

    def test_find_by_identifier_probes_indexes_in_order(self) -> None:
        repo, table = _make_repo()
        table.query.side_effect = [
            {"Items": []},
            {"Items": [{"citation_key": "doi:10.1000/xyz", "citation_id": "abc", "pubmed_id": "12345678"}]},
        ]

        hit = repo.find_by_identifier(doi="10.1000/XYZ", pubmed_id="12345678")

        self.assertEqual(hit.citation_key, "doi:10.1000/xyz")
        indexes = [c.kwargs["IndexName"] for c in table.query.call_args_list]
        self.assertEqual(indexes, ["by_doi", "by_pubmed_id"])

    def test_find_by_identifier_without_ids_does_not_query(self) -> None:
        repo, table = _make_repo()
        self.assertIsNone(repo.find_by_identifier())
        table.query.assert_not_called()


if __name__ == "__main__":
    unittest.main()
